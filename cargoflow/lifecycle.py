"""
CargoFlow Status Transition Engine

Shipment lifecycle state machine:

    CREATED → IN_TRANSIT → CUSTOMS_CLEARANCE → ARRIVED → DELIVERED

Transitions are single-step and forward-only. The current status is the
status of the most recently appended event, or CREATED for a shipment with
no events. A status update is additionally gated by a minimum dwell time,
measured from shipment creation by default, or from the last status change
when ``ledger.dwell_anchor`` is ``previous_status_change``.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence, Set

from cargoflow.errors import InvalidTransition, NoOp, TooSoon
from cargoflow.events import StatusUpdated
from cargoflow.hardening import InvariantChecker, require_status
from cargoflow.models import CargoEvent, Shipment, ShipmentStatus
from cargoflow.observability import CargoLayer, get_logger, timed_operation

if TYPE_CHECKING:
    from cargoflow.records import ShipmentRecordStore

logger = get_logger("lifecycle", CargoLayer.LIFECYCLE)

DWELL_FROM_CREATION = "creation"
DWELL_FROM_PREVIOUS_STATUS_CHANGE = "previous_status_change"


VALID_TRANSITIONS: Dict[ShipmentStatus, Set[ShipmentStatus]] = {
    ShipmentStatus.CREATED: {ShipmentStatus.IN_TRANSIT},
    ShipmentStatus.IN_TRANSIT: {ShipmentStatus.CUSTOMS_CLEARANCE},
    ShipmentStatus.CUSTOMS_CLEARANCE: {ShipmentStatus.ARRIVED},
    ShipmentStatus.ARRIVED: {ShipmentStatus.DELIVERED},
    ShipmentStatus.DELIVERED: set(),
}


def is_valid_transition(current: ShipmentStatus, target: ShipmentStatus) -> bool:
    """True only for the four adjacent forward pairs."""
    return target in VALID_TRANSITIONS.get(current, set())


def current_status(events: Sequence[CargoEvent]) -> ShipmentStatus:
    return events[-1].status if events else ShipmentStatus.CREATED


def check_transition(current: ShipmentStatus, target: ShipmentStatus) -> None:
    """Raise ``NoOp`` for a self-transition, ``InvalidTransition`` for any other invalid pair."""
    if current == target:
        raise NoOp(
            f"Shipment is already {current.label}",
            status=current.name,
        )
    InvariantChecker.check_state_transition(current, target, VALID_TRANSITIONS, InvalidTransition)


def last_status_change_at(shipment: Shipment, events: Sequence[CargoEvent]) -> int:
    """Timestamp of the latest event that changed the status, else creation time."""
    anchor = shipment.created_at
    previous = ShipmentStatus.CREATED
    for event in events:
        if event.status != previous:
            anchor = event.timestamp
        previous = event.status
    return anchor


@dataclass(frozen=True)
class StatusChange:
    """Result of a successful status update."""
    tracking_id: str
    event_id: int
    old_status: ShipmentStatus
    new_status: ShipmentStatus
    timestamp: int


class StatusTransitionEngine:
    """
    Applies status updates to a record store.

    Check order for ``update_status``: not found, forbidden, unknown status,
    no-op, invalid transition, too soon. Nothing is written unless every check passes.
    """

    def __init__(
        self,
        store: "ShipmentRecordStore",
        min_dwell_seconds: int = 3600,
        dwell_anchor: str = DWELL_FROM_CREATION,
    ):
        if dwell_anchor not in (DWELL_FROM_CREATION, DWELL_FROM_PREVIOUS_STATUS_CHANGE):
            raise ValueError(f"unknown dwell anchor: {dwell_anchor}")
        self.store = store
        self.min_dwell_seconds = min_dwell_seconds
        self.dwell_anchor = dwell_anchor

    def dwell_anchor_for(self, shipment: Shipment, events: Sequence[CargoEvent]) -> int:
        if self.dwell_anchor == DWELL_FROM_PREVIOUS_STATUS_CHANGE:
            return last_status_change_at(shipment, events)
        return shipment.created_at

    def earliest_update_at(self, tracking_id: str) -> int:
        """Earliest ledger time at which the next status update is accepted."""
        shipment = self.store.require_shipment(tracking_id)
        events = self.store.events_snapshot(tracking_id)
        return self.dwell_anchor_for(shipment, events) + self.min_dwell_seconds

    def check_dwell(self, shipment: Shipment, events: Sequence[CargoEvent], now: int) -> None:
        anchor = self.dwell_anchor_for(shipment, events)
        ready_at = anchor + self.min_dwell_seconds
        if now < ready_at:
            raise TooSoon(
                "Too soon to update status",
                tracking_id=shipment.tracking_id,
                ready_at=ready_at,
                now=now,
            )

    @timed_operation(logger, "update_status")
    def update_status(
        self,
        tracking_id: str,
        new_status: ShipmentStatus,
        caller: str,
    ) -> StatusChange:
        store = self.store
        with store.ledger.write("update_status") as tx:
            shipment = store.require_shipment(tracking_id)
            store.require_creator(shipment, caller)
            new_status = require_status(new_status)
            events = store.events_snapshot(tracking_id)
            old_status = current_status(events)
            check_transition(old_status, new_status)
            now = tx.now()
            self.check_dwell(shipment, events, now)

            location = events[-1].location if events else shipment.origin
            event = store.append_locked(
                shipment,
                location=location,
                status=new_status,
                description=f"Status updated to {new_status.label}",
                caller=caller,
            )
            tx.emit(StatusUpdated(
                tracking_id=tracking_id,
                event_id=event.event_id,
                caller=caller.lower(),
                old_status=old_status,
                new_status=new_status,
            ))

        logger.info(
            "Status updated",
            tracking_id=tracking_id,
            old_status=old_status.label,
            new_status=new_status.label,
            event_id=event.event_id,
        )
        return StatusChange(tracking_id, event.event_id, old_status, new_status, event.timestamp)

    def allowed_next(self, tracking_id: str) -> List[ShipmentStatus]:
        status = current_status(self.store.events_snapshot(tracking_id))
        return sorted(VALID_TRANSITIONS[status])

    def status_of(self, tracking_id: str) -> ShipmentStatus:
        self.store.require_shipment(tracking_id)
        return current_status(self.store.events_snapshot(tracking_id))


def next_status(status: ShipmentStatus) -> Optional[ShipmentStatus]:
    targets = VALID_TRANSITIONS[status]
    return next(iter(targets)) if targets else None
