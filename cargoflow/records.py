"""
CargoFlow Shipment Record Store

Owns the mapping from tracking id to shipment, the per-shipment append-only
event list, the per-shipment event count and the global shipment counter.
Nothing outside this module mutates any of them.

Every write runs inside one ledger write: all checks first, confidential
imports next, in-memory mutation last. A failure at any step leaves the store,
the notification log and the capability list exactly as they were.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from typing import Dict, List, Optional

from cargoflow.errors import (
    AlreadyExists,
    Forbidden,
    InvalidArgument,
    InvalidField,
    NotFound,
)
from cargoflow.events import (
    AnomalyReported,
    CargoEventAdded,
    CreatorReassigned,
    ShipmentCreated,
)
from cargoflow.hardening import (
    DEFAULT_MIN_TRACKING_ID_LENGTH,
    ONE_YEAR_SECONDS,
    AtomicCounter,
    InvariantChecker,
    Validators,
    require_delivery_window,
    require_status,
    require_tracking_id,
)
from cargoflow.identity import is_null_identity
from cargoflow.importer import ConfidentialFieldImporter
from cargoflow.ledger import LedgerHost
from cargoflow.lifecycle import check_transition, current_status
from cargoflow.models import (
    Anomaly,
    CargoEvent,
    EncryptedFields,
    Shipment,
    ShipmentStatus,
)
from cargoflow.observability import CargoLayer, get_logger, timed_operation

logger = get_logger("records", CargoLayer.RECORDS)


def _require_identity(value: str, field_name: str) -> str:
    result = Validators.validate_address(value, field_name)
    result.raise_if_invalid(InvalidArgument)
    return result.sanitized_value


class ShipmentRecordStore:
    """
    Shipment records keyed by tracking id.

    Writes: ``create_shipment``, ``append_event``, ``reassign_creator``.
    Status updates go through ``StatusTransitionEngine``, which uses
    ``append_locked`` from within its own ledger write.
    """

    def __init__(
        self,
        ledger: LedgerHost,
        importer: Optional[ConfidentialFieldImporter] = None,
        min_tracking_id_length: int = DEFAULT_MIN_TRACKING_ID_LENGTH,
        max_delivery_window_seconds: int = ONE_YEAR_SECONDS,
    ):
        self.ledger = ledger
        self.importer = importer
        self.min_tracking_id_length = min_tracking_id_length
        self.max_delivery_window_seconds = max_delivery_window_seconds
        self._shipments: Dict[str, Shipment] = {}
        self._events: Dict[str, List[CargoEvent]] = {}
        self._event_counts: Dict[str, int] = {}
        self._total_shipments = AtomicCounter()
        self._state_lock = threading.RLock()

    @property
    def identity(self) -> Optional[str]:
        return self.importer.store_identity if self.importer else None

    # ------------------------------------------------------------------
    # Lookups shared with the lifecycle and query layers
    # ------------------------------------------------------------------

    def has_shipment(self, tracking_id: str) -> bool:
        with self._state_lock:
            return tracking_id in self._shipments

    def require_shipment(self, tracking_id: str) -> Shipment:
        with self._state_lock:
            shipment = self._shipments.get(tracking_id)
        if shipment is None:
            raise NotFound("Shipment does not exist", tracking_id=tracking_id)
        return shipment

    def require_creator(self, shipment: Shipment, caller: str) -> str:
        caller = _require_identity(caller, "caller")
        if caller != shipment.creator:
            raise Forbidden(
                "Only shipment creator can add events",
                tracking_id=shipment.tracking_id,
                caller=caller,
            )
        return caller

    def events_snapshot(self, tracking_id: str) -> List[CargoEvent]:
        with self._state_lock:
            return list(self._events.get(tracking_id, ()))

    def event_count(self, tracking_id: str) -> int:
        with self._state_lock:
            count = self._event_counts.get(tracking_id, 0)
            InvariantChecker.check_sequence_alignment(
                "event_count", count, len(self._events.get(tracking_id, ()))
            )
            return count

    @property
    def total_shipments(self) -> int:
        return self._total_shipments.get()

    def tracking_ids(self) -> List[str]:
        with self._state_lock:
            return list(self._shipments.keys())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @timed_operation(logger, "create_shipment")
    def create_shipment(
        self,
        tracking_id: str,
        origin: str,
        destination: str,
        estimated_delivery: int,
        caller: str,
    ) -> Shipment:
        with self.ledger.write("create_shipment") as tx:
            require_tracking_id(tracking_id, self.min_tracking_id_length)
            if self.has_shipment(tracking_id):
                raise AlreadyExists("Shipment already exists", tracking_id=tracking_id)
            now = tx.now()
            require_delivery_window(estimated_delivery, now, self.max_delivery_window_seconds)
            for name, value in (("origin", origin), ("destination", destination)):
                if not isinstance(value, str):
                    raise InvalidField(f"{name.capitalize()} must be text", field=name)
            creator = _require_identity(caller, "caller")

            shipment = Shipment(
                tracking_id=tracking_id,
                origin=origin,
                destination=destination,
                created_at=now,
                estimated_delivery=estimated_delivery,
                creator=creator,
            )
            with self._state_lock:
                self._shipments[tracking_id] = shipment
                self._events[tracking_id] = []
                self._event_counts[tracking_id] = 0
                self._total_shipments.increment()

            tx.emit(ShipmentCreated(
                tracking_id=tracking_id,
                creator=creator,
                origin=origin,
                destination=destination,
                estimated_delivery=estimated_delivery,
            ))

        logger.info("Shipment created", tracking_id=tracking_id, creator=creator)
        return shipment

    @timed_operation(logger, "append_event")
    def append_event(
        self,
        tracking_id: str,
        location: str,
        status: ShipmentStatus,
        description: str,
        caller: str,
        fields: Optional[EncryptedFields] = None,
        anomaly: Optional[Anomaly] = None,
    ) -> CargoEvent:
        """Append a timeline event.

        A status different from the current one must be the next lifecycle
        stage. Dwell time is not enforced here; see ``update_status``.
        """
        with self.ledger.write("append_event"):
            shipment = self.require_shipment(tracking_id)
            self.require_creator(shipment, caller)
            status = require_status(status)
            Validators.validate_required(location, "location").raise_if_invalid(InvalidField)
            Validators.validate_required(description, "description").raise_if_invalid(InvalidField)
            if anomaly is not None:
                Validators.validate_required(
                    anomaly.description, "anomaly description"
                ).raise_if_invalid(InvalidField)

            current = current_status(self.events_snapshot(tracking_id))
            if status != current:
                check_transition(current, status)

            event = self.append_locked(
                shipment,
                location=location,
                status=status,
                description=description,
                caller=caller,
                fields=fields,
                anomaly=anomaly,
            )

        logger.info(
            "Cargo event added",
            tracking_id=tracking_id,
            event_id=event.event_id,
            status=status.label,
            has_weight=event.encrypted_weight is not None,
            contents_length=len(event.encrypted_contents),
        )
        return event

    def append_locked(
        self,
        shipment: Shipment,
        location: str,
        status: ShipmentStatus,
        description: str,
        caller: str,
        fields: Optional[EncryptedFields] = None,
        anomaly: Optional[Anomaly] = None,
    ) -> CargoEvent:
        """Append within an open ledger write. Checks are the caller's job."""
        if not self.ledger.in_write:
            raise RuntimeError("append_locked requires an open ledger write")
        tracking_id = shipment.tracking_id
        caller = caller.lower()

        with self._state_lock:
            events = self._events[tracking_id]
            count = self._event_counts[tracking_id]
            InvariantChecker.check_sequence_alignment("event_count", count, len(events))
            carried_weight = events[0].encrypted_weight if events else None

        if fields is not None and self.importer is None:
            raise InvalidField("Encrypted fields require a confidential service", field="fields")
        if self.importer is not None:
            weight, contents = self.importer.import_fields(fields, caller, carried_weight)
        else:
            weight, contents = carried_weight, ()

        event = CargoEvent(
            event_id=count,
            timestamp=self.ledger.now(),
            location=location,
            status=status,
            description=description,
            encrypted_weight=weight,
            encrypted_contents=contents,
            has_anomaly=anomaly is not None,
            anomaly_description=anomaly.description if anomaly is not None else "",
        )
        with self._state_lock:
            events.append(event)
            self._event_counts[tracking_id] = count + 1

        self.ledger.emit(CargoEventAdded(
            tracking_id=tracking_id,
            event_id=event.event_id,
            caller=caller,
            location=location,
            status=status,
        ))
        if anomaly is not None:
            self.ledger.emit(AnomalyReported(
                tracking_id=tracking_id,
                event_id=event.event_id,
                caller=caller,
                description=anomaly.description,
            ))
        return event

    @timed_operation(logger, "reassign_creator")
    def reassign_creator(self, tracking_id: str, new_owner: str, caller: str) -> None:
        """Hand write authority to ``new_owner``. Capabilities are untouched."""
        with self.ledger.write("reassign_creator") as tx:
            shipment = self.require_shipment(tracking_id)
            caller = self.require_creator(shipment, caller)
            if not isinstance(new_owner, str) or is_null_identity(new_owner):
                raise InvalidArgument("New owner cannot be the null identity", field="new_owner")
            new_owner = _require_identity(new_owner, "new_owner")
            if new_owner == caller:
                raise InvalidArgument("New owner must differ from current creator", field="new_owner")

            with self._state_lock:
                self._shipments[tracking_id] = replace(shipment, creator=new_owner)

            tx.emit(CreatorReassigned(
                tracking_id=tracking_id,
                previous_creator=caller,
                new_creator=new_owner,
            ))

        logger.info("Creator reassigned", tracking_id=tracking_id, new_creator=new_owner)
