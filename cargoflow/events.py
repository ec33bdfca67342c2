"""
CargoFlow Notification Infrastructure

The append-only notification stream the record store writes to and external
indexers read from. Every notification names the affected tracking id and the
acting identity, so a per-shipment timeline can be rebuilt without replaying
all records.

Architecture
────────────

    ┌──────────────────────────────────────────────────────────────────┐
    │                    NOTIFICATION INFRASTRUCTURE                    │
    │                                                                   │
    │  Notifications          NotificationLog        EventBus           │
    │  ├─ ShipmentCreated     ├─ Append-only         ├─ Typed subs      │
    │  ├─ CargoEventAdded     ├─ Per-shipment        ├─ Priorities      │
    │  ├─ StatusUpdated       │  streams             ├─ Filters         │
    │  ├─ CreatorReassigned   └─ Global position     └─ Error isolation │
    │  └─ AnomalyReported                                               │
    │                                                                   │
    └──────────────────────────────────────────────────────────────────┘

Notifications are committed by the ledger host only when the write that
produced them succeeds; a rejected write publishes nothing.

Usage
─────

    bus = tracker.bus

    @bus.subscribe(StatusUpdated)
    def on_status(n: StatusUpdated):
        print(n.tracking_id, n.old_status.label, "->", n.new_status.label)

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import hashlib
import json
import threading
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set, Type

from cargoflow.canonical import jcs_canonicalize
from cargoflow.models import ShipmentStatus
from cargoflow.observability import CargoLayer, get_logger

logger = get_logger("events", CargoLayer.EVENTS)


# ════════════════════════════════════════════════════════════════════════════
# NOTIFICATION BASE
# ════════════════════════════════════════════════════════════════════════════


@dataclass
class Notification:
    """
    Base class for ledger notifications.

    ``timestamp`` is ledger time (integer unix seconds), not wall time.
    """

    notification_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: int = 0
    correlation_id: Optional[str] = None
    tracking_id: str = ""

    @property
    def notification_type(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["notification_type"] = self.notification_type
        return data

    def to_json(self) -> str:
        """Serialize for display/transport (not for digest computation)."""
        return json.dumps(self.to_dict(), default=str, sort_keys=True)

    def digest(self) -> str:
        """Deterministic digest of the notification content."""
        return hashlib.sha256(jcs_canonicalize(self.to_dict())).hexdigest()


# ════════════════════════════════════════════════════════════════════════════
# SHIPMENT NOTIFICATIONS
# ════════════════════════════════════════════════════════════════════════════


@dataclass
class ShipmentCreated(Notification):
    creator: str = ""
    origin: str = ""
    destination: str = ""
    estimated_delivery: int = 0


@dataclass
class CargoEventAdded(Notification):
    event_id: int = 0
    caller: str = ""
    location: str = ""
    status: ShipmentStatus = ShipmentStatus.CREATED


@dataclass
class StatusUpdated(Notification):
    event_id: int = 0
    caller: str = ""
    old_status: ShipmentStatus = ShipmentStatus.CREATED
    new_status: ShipmentStatus = ShipmentStatus.CREATED


@dataclass
class CreatorReassigned(Notification):
    previous_creator: str = ""
    new_creator: str = ""


@dataclass
class AnomalyReported(Notification):
    event_id: int = 0
    caller: str = ""
    description: str = ""


# ════════════════════════════════════════════════════════════════════════════
# EVENT BUS
# ════════════════════════════════════════════════════════════════════════════


NotificationHandler = Callable[[Notification], None]


@dataclass
class HandlerRegistration:
    handler: NotificationHandler
    notification_types: Set[Type[Notification]]
    priority: int = 0
    filter_func: Optional[Callable[[Notification], bool]] = None


class NotificationHandlerError(Exception):
    """A subscriber raised while handling a notification."""
    def __init__(self, notification: Notification, handler: NotificationHandler, cause: Exception):
        self.notification = notification
        self.handler = handler
        self.cause = cause
        name = getattr(handler, "__name__", repr(handler))
        super().__init__(f"Handler {name} failed for {notification.notification_type}: {cause}")


class EventBus:
    """
    Synchronous in-memory pub/sub for committed notifications.

    Subscriber failures never propagate back into the ledger write that
    produced the notification; they are counted and passed to ``on_error``.

    Example:
        bus = EventBus()

        @bus.subscribe(ShipmentCreated, CargoEventAdded)
        def index(n):
            ...
    """

    def __init__(self, on_error: Optional[Callable[[NotificationHandlerError], None]] = None):
        self._handlers: List[HandlerRegistration] = []
        self._lock = threading.RLock()
        self._on_error = on_error
        self._published_count = 0
        self._handled_count = 0
        self._error_count = 0

    def subscribe(
        self,
        *notification_types: Type[Notification],
        priority: int = 0,
        filter_func: Optional[Callable[[Notification], bool]] = None,
    ) -> Callable[[NotificationHandler], NotificationHandler]:
        """
        Decorator to subscribe a handler.

        Args:
            notification_types: Types to receive (none = every notification)
            priority: Higher runs earlier
            filter_func: Optional predicate on the notification
        """
        def decorator(handler: NotificationHandler) -> NotificationHandler:
            registration = HandlerRegistration(
                handler=handler,
                notification_types=set(notification_types) if notification_types else {Notification},
                priority=priority,
                filter_func=filter_func,
            )
            with self._lock:
                self._handlers.append(registration)
                self._handlers.sort(key=lambda r: -r.priority)
            return handler
        return decorator

    def unsubscribe(self, handler: NotificationHandler) -> bool:
        with self._lock:
            original_len = len(self._handlers)
            self._handlers = [r for r in self._handlers if r.handler != handler]
            return len(self._handlers) < original_len

    def publish(self, notification: Notification) -> None:
        """Deliver to matching subscribers in priority order."""
        with self._lock:
            self._published_count += 1
            to_call = [
                r for r in self._handlers
                if any(isinstance(notification, t) for t in r.notification_types)
                and (r.filter_func is None or r.filter_func(notification))
            ]

        # Call handlers outside the lock
        for registration in to_call:
            self._call_handler(registration.handler, notification)

    def _call_handler(self, handler: NotificationHandler, notification: Notification) -> None:
        try:
            handler(notification)
            with self._lock:
                self._handled_count += 1
        except Exception as e:
            with self._lock:
                self._error_count += 1
            error = NotificationHandlerError(notification, handler, e)
            logger.warning(
                "Notification handler failed",
                notification_type=notification.notification_type,
                tracking_id=notification.tracking_id,
                error=str(e),
            )
            if self._on_error:
                self._on_error(error)

    @property
    def metrics(self) -> Dict[str, int]:
        with self._lock:
            return {
                "published_count": self._published_count,
                "handled_count": self._handled_count,
                "error_count": self._error_count,
                "handler_count": len(self._handlers),
            }


# ════════════════════════════════════════════════════════════════════════════
# NOTIFICATION LOG
# ════════════════════════════════════════════════════════════════════════════


@dataclass
class NotificationRecord:
    """A committed notification."""
    position: int
    notification: Notification
    tracking_id: str
    version: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "position": self.position,
            "notification": self.notification.to_dict(),
            "tracking_id": self.tracking_id,
            "version": self.version,
        }


class NotificationLog:
    """
    Append-only notification store, one stream per tracking id plus a global
    position across all streams.
    """

    def __init__(self):
        self._records: List[NotificationRecord] = []
        self._streams: Dict[str, List[NotificationRecord]] = {}
        self._position = 0
        self._lock = threading.RLock()

    def append(self, notifications: List[Notification]) -> List[NotificationRecord]:
        """Append notifications, each to the stream of its tracking id."""
        with self._lock:
            records = []
            for notification in notifications:
                stream = self._streams.setdefault(notification.tracking_id, [])
                self._position += 1
                record = NotificationRecord(
                    position=self._position,
                    notification=notification,
                    tracking_id=notification.tracking_id,
                    version=len(stream) + 1,
                )
                self._records.append(record)
                stream.append(record)
                records.append(record)
            return records

    def read_stream(
        self,
        tracking_id: str,
        from_version: int = 0,
        to_version: Optional[int] = None,
    ) -> List[Notification]:
        with self._lock:
            stream = self._streams.get(tracking_id, [])
            end = len(stream) if to_version is None else to_version
            return [r.notification for r in stream[from_version:end]]

    def read_all(self, from_position: int = 0, max_count: int = 1000) -> List[NotificationRecord]:
        with self._lock:
            return self._records[from_position:from_position + max_count]

    def stream_version(self, tracking_id: str) -> int:
        with self._lock:
            return len(self._streams.get(tracking_id, ()))

    def tracking_ids(self) -> List[str]:
        with self._lock:
            return list(self._streams.keys())

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    @property
    def current_position(self) -> int:
        with self._lock:
            return self._position
