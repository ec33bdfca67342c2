"""
CargoFlow Observability

Structured logging for ledger writes, confidential-field admission and
decryption brokering. Every log line carries the layer that produced it and
the correlation id of the ledger transaction it belongs to.

Architecture:
    ┌─────────────────────────────────────────────────────────┐
    │                    Application Code                      │
    │     logger.info("msg", tracking_id=x, event_id=n)        │
    └───────────────────────┬─────────────────────────────────┘
                            │
    ┌───────────────────────▼─────────────────────────────────┐
    │                      CargoLogger                         │
    │      layer, operation, error code, correlation id        │
    └───────────────────────┬─────────────────────────────────┘
                            │
    ┌───────────────────────▼─────────────────────────────────┐
    │            "cargoflow" logger (stdlib logging)           │
    │            StructuredHandler │ TextHandler               │
    └─────────────────────────────────────────────────────────┘

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import contextvars
import functools
import json
import logging
import sys
import threading
import time
import traceback
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional, TypeVar

from cargoflow.errors import CargoFlowError

# Context variable for transaction-scoped data
correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)

ROOT_LOGGER_NAME = "cargoflow"


class LogLevel(Enum):
    """Log severity levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class LogFormat(Enum):
    JSON = "json"
    TEXT = "text"


class CargoLayer(Enum):
    """System layers for categorization."""
    VALIDATION = "validation"
    CONFIDENTIAL = "confidential"
    RECORDS = "records"
    LIFECYCLE = "lifecycle"
    QUERIES = "queries"
    LEDGER = "ledger"
    EVENTS = "events"
    CLIENT = "client"
    CONFIG = "config"
    CLI = "cli"


@dataclass
class LogEvent:
    """Structured log event."""
    timestamp: str
    level: str
    logger: str
    message: str
    correlation_id: str = ""
    layer: str = ""
    operation: str = ""
    duration_ms: Optional[float] = None
    error_code: str = ""
    context: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, excluding empty values."""
        d = asdict(self)
        return {k: v for k, v in d.items() if v is not None and v != "" and v != {}}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_record(cls, record: logging.LogRecord) -> "LogEvent":
        event = cls(
            timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            level=record.levelname.lower(),
            logger=record.name,
            message=record.getMessage(),
            correlation_id=correlation_id_var.get(),
            layer=getattr(record, "layer", ""),
            operation=getattr(record, "operation", ""),
            duration_ms=getattr(record, "duration_ms", None),
            error_code=getattr(record, "error_code", ""),
            context=getattr(record, "context", {}),
        )
        if record.exc_info:
            event.exception = "".join(traceback.format_exception(*record.exc_info))
        return event


class StructuredHandler(logging.Handler):
    """Logging handler that outputs one JSON object per line."""

    def __init__(self, stream: Any = None):
        super().__init__()
        self.stream = stream

    def format_event(self, event: LogEvent) -> str:
        return event.to_json()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            stream = self.stream or sys.stderr
            stream.write(self.format_event(LogEvent.from_record(record)) + "\n")
            stream.flush()
        except Exception:
            self.handleError(record)


class TextHandler(StructuredHandler):
    """Human-readable variant: ``LEVEL layer message key=value ...``."""

    def format_event(self, event: LogEvent) -> str:
        parts = [event.level.upper(), event.layer or "-", event.message]
        if event.error_code:
            parts.append(f"error_code={event.error_code}")
        if event.duration_ms is not None:
            parts.append(f"duration_ms={event.duration_ms:.2f}")
        parts.extend(f"{k}={v}" for k, v in sorted(event.context.items()))
        return " ".join(parts)


_configure_lock = threading.Lock()


def configure_logging(
    level: str = LogLevel.INFO.value,
    log_format: str = LogFormat.JSON.value,
    stream: Any = None,
) -> logging.Logger:
    """(Re)install the single package handler on the ``cargoflow`` logger."""
    root = logging.getLogger(ROOT_LOGGER_NAME)
    handler_cls = TextHandler if LogFormat(log_format) == LogFormat.TEXT else StructuredHandler
    with _configure_lock:
        for h in list(root.handlers):
            if isinstance(h, StructuredHandler):
                root.removeHandler(h)
        root.addHandler(handler_cls(stream))
        root.setLevel(getattr(logging, LogLevel(level).value.upper()))
    return root


def _ensure_configured() -> None:
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if not any(isinstance(h, StructuredHandler) for h in root.handlers):
        configure_logging()


class CargoLogger:
    """
    Structured logger for CargoFlow components.

    Includes the correlation id and layer in every log event. Levels and
    handlers are inherited from the package logger set up by
    ``configure_logging``.
    """

    def __init__(self, name: str, layer: CargoLayer):
        self.name = name
        self.layer = layer
        self._logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{layer.value}.{name}")
        _ensure_configured()

    def _log(
        self,
        level: int,
        message: str,
        operation: str = "",
        error_code: str = "",
        duration_ms: Optional[float] = None,
        exc_info: bool = False,
        **context: Any,
    ) -> None:
        extra = {
            "layer": self.layer.value,
            "operation": operation,
            "error_code": error_code,
            "duration_ms": duration_ms,
            "context": context,
        }
        self._logger.log(level, message, extra=extra, exc_info=exc_info)

    def debug(self, message: str, **context: Any) -> None:
        self._log(logging.DEBUG, message, **context)

    def info(self, message: str, **context: Any) -> None:
        self._log(logging.INFO, message, **context)

    def warning(self, message: str, **context: Any) -> None:
        self._log(logging.WARNING, message, **context)

    def error(
        self,
        message: str,
        error_code: str = "",
        exc_info: bool = False,
        **context: Any,
    ) -> None:
        self._log(logging.ERROR, message, error_code=error_code, exc_info=exc_info, **context)

    def operation(
        self,
        name: str,
        duration_ms: float,
        success: bool = True,
        error_code: str = "",
        **context: Any,
    ) -> None:
        """Log an operation completion. Rejections log at warning level."""
        level = logging.INFO if success else logging.WARNING
        status = "completed" if success else "rejected"
        self._log(
            level,
            f"Operation {name} {status}",
            operation=name,
            error_code=error_code,
            duration_ms=duration_ms,
            **context,
        )


def generate_correlation_id() -> str:
    return f"corr-{uuid.uuid4().hex[:12]}"


def set_correlation_id(correlation_id: str) -> contextvars.Token:
    """Set the correlation ID for the current context."""
    return correlation_id_var.set(correlation_id)


def reset_correlation_id(token: contextvars.Token) -> None:
    correlation_id_var.reset(token)


def get_correlation_id() -> str:
    """Get the current correlation ID, creating one if unset."""
    cid = correlation_id_var.get()
    if not cid:
        cid = generate_correlation_id()
        correlation_id_var.set(cid)
    return cid


def get_logger(name: str, layer: CargoLayer) -> CargoLogger:
    """Get a logger for a CargoFlow component."""
    return CargoLogger(name, layer)


T = TypeVar("T")


def timed_operation(
    logger: CargoLogger,
    operation_name: str,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator for timing and logging operations.

    A ``CargoFlowError`` marks the operation as rejected and records its code.
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            start = time.monotonic()
            success = True
            error_code = ""
            try:
                return func(*args, **kwargs)
            except CargoFlowError as e:
                success = False
                error_code = e.code
                raise
            except Exception:
                success = False
                error_code = "INTERNAL"
                raise
            finally:
                duration_ms = (time.monotonic() - start) * 1000
                logger.operation(operation_name, duration_ms, success, error_code=error_code)
        return wrapper
    return decorator
