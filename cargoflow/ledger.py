"""
Ledger host.

Stands in for the execution environment the record store runs on: a global
clock, one write at a time, and an append-only notification stream that only
ever sees the notifications of writes that succeeded.

    with ledger.write("create_shipment") as tx:
        ...                       # validate, then mutate
        tx.emit(ShipmentCreated(...))
    # committed to ledger.log, then published on ledger.bus

A write that raises leaves no notification, and (when a confidential service is
enlisted) no admitted ciphertext or capability grant behind.
"""

from __future__ import annotations

import threading
import time
from contextlib import ExitStack, contextmanager
from typing import Iterator, List, Optional, Protocol

from cargoflow.events import EventBus, Notification, NotificationLog
from cargoflow.hardening import ReentrancyGuard
from cargoflow.observability import (
    CargoLayer,
    correlation_id_var,
    generate_correlation_id,
    get_logger,
    reset_correlation_id,
    set_correlation_id,
)

logger = get_logger("ledger", CargoLayer.LEDGER)

DEFAULT_GENESIS_TIMESTAMP = 1_700_000_000


class Clock(Protocol):
    def now(self) -> int: ...


class SystemClock:
    """Integer unix seconds."""

    def now(self) -> int:
        return int(time.time())


class ManualClock:
    """Deterministic clock for tests and demos. Never moves backwards."""

    def __init__(self, start: int = DEFAULT_GENESIS_TIMESTAMP):
        self._now = start
        self._lock = threading.Lock()

    def now(self) -> int:
        with self._lock:
            return self._now

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError("clock cannot move backwards")
        with self._lock:
            self._now += seconds
            return self._now

    def set(self, timestamp: int) -> None:
        with self._lock:
            if timestamp < self._now:
                raise ValueError("clock cannot move backwards")
            self._now = timestamp


class LedgerHost:
    """
    Serialises writes and owns the notification stream.

    ``confidential`` is any object with a ``transaction()`` context manager
    (see ``LocalConfidentialService``); it is enlisted in every write.
    """

    def __init__(
        self,
        clock: Optional[Clock] = None,
        confidential: Optional[object] = None,
        log: Optional[NotificationLog] = None,
        bus: Optional[EventBus] = None,
    ):
        self.clock = clock or SystemClock()
        self.confidential = confidential
        self.log = log or NotificationLog()
        self.bus = bus or EventBus()
        self._lock = threading.RLock()
        self._guard = ReentrancyGuard("ledger")
        self._pending: Optional[List[Notification]] = None
        self._tx_now: Optional[int] = None

    def now(self) -> int:
        """Ledger time; fixed for the duration of a write."""
        if self._tx_now is not None:
            return self._tx_now
        return self.clock.now()

    @property
    def in_write(self) -> bool:
        return self._guard.locked

    @contextmanager
    def write(self, operation: str = "") -> Iterator["LedgerHost"]:
        """One serialised, non-reentrant, all-or-nothing write."""
        with self._lock:
            with self._guard.enter(operation):
                with self._transaction(operation):
                    yield self

    @contextmanager
    def _transaction(self, operation: str) -> Iterator["LedgerHost"]:
        token = set_correlation_id(generate_correlation_id())
        try:
            self._pending = []
            self._tx_now = self.clock.now()
            try:
                with ExitStack() as stack:
                    if self.confidential is not None:
                        stack.enter_context(self.confidential.transaction())
                    yield self
                pending = self._pending
            finally:
                self._pending = None
                self._tx_now = None

            records = self.log.append(pending)
            logger.debug(
                "Committed write",
                operation=operation,
                notifications=len(records),
                position=self.log.current_position,
            )
            for notification in pending:
                self.bus.publish(notification)
        finally:
            reset_correlation_id(token)

    def emit(self, notification: Notification) -> Notification:
        """Buffer a notification for commit at the end of the current write."""
        if self._pending is None:
            raise RuntimeError("notifications can only be emitted inside a ledger write")
        notification.timestamp = self._tx_now if self._tx_now is not None else self.clock.now()
        notification.correlation_id = correlation_id_var.get() or None
        self._pending.append(notification)
        return notification
