"""
CargoFlow tracker.

The exposed surface of one record store: the four writes, the read
projections, and access to the confidential service and notification stream
they are wired to.

    tracker = CargoTracker(clock=ManualClock())
    tracker.create_shipment("CARGO-001", "Shanghai", "LA", now + 7 * DAY, alice)
    tracker.append_event("CARGO-001", "Shanghai", ShipmentStatus.CREATED, "Loaded", alice,
                         fields=client.encrypt_fields(weight_kg=2500))
    tracker.update_status("CARGO-001", ShipmentStatus.IN_TRANSIT, alice)

``caller`` may be an ``Account`` or an identity string.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from typing import List, Optional, Tuple, Union

from cargoflow.config import CargoFlowConfig, get_config
from cargoflow.events import EventBus, NotificationLog
from cargoflow.fhe import EncryptedInput, LocalConfidentialService
from cargoflow.identity import Account
from cargoflow.importer import ConfidentialFieldImporter
from cargoflow.ledger import Clock, LedgerHost, SystemClock
from cargoflow.lifecycle import StatusChange, StatusTransitionEngine
from cargoflow.models import (
    Anomaly,
    CargoEvent,
    CargoEventPublic,
    EncryptedFields,
    Shipment,
    ShipmentDetails,
    ShipmentHistory,
    ShipmentStatus,
)
from cargoflow.queries import ShipmentQueries
from cargoflow.records import ShipmentRecordStore
from cargoflow.zkp import CiphertextType

Caller = Union[Account, str]


def identity_of(caller: Caller) -> str:
    return caller.address if isinstance(caller, Account) else caller


class CargoTracker:
    """Wires ledger, confidential service, record store, lifecycle and queries."""

    def __init__(
        self,
        clock: Optional[Clock] = None,
        service: Optional[LocalConfidentialService] = None,
        config: Optional[CargoFlowConfig] = None,
        identity: Optional[str] = None,
        bus: Optional[EventBus] = None,
    ):
        self.config = config or get_config()
        ledger_cfg = self.config.ledger
        confidential_cfg = self.config.confidential

        self.clock = clock or SystemClock()
        self.service = service or LocalConfidentialService(
            clock=self.clock.now,
            max_decrypt_validity_days=confidential_cfg.max_decrypt_validity_days.get(),
        )
        self.identity = (identity or Account.generate(label="record-store").address).lower()

        self.ledger = LedgerHost(clock=self.clock, confidential=self.service, bus=bus)
        self.importer = ConfidentialFieldImporter(
            self.service,
            self.identity,
            max_contents_bytes=confidential_cfg.max_contents_bytes.get(),
            weight_type=CiphertextType.for_bits(confidential_cfg.weight_bits.get()),
        )
        self.store = ShipmentRecordStore(
            self.ledger,
            self.importer,
            min_tracking_id_length=ledger_cfg.min_tracking_id_length.get(),
            max_delivery_window_seconds=ledger_cfg.max_delivery_window_seconds.get(),
        )
        self.lifecycle = StatusTransitionEngine(
            self.store,
            min_dwell_seconds=ledger_cfg.min_dwell_seconds.get(),
            dwell_anchor=ledger_cfg.dwell_anchor.get(),
        )
        self.queries = ShipmentQueries(self.store)

    @property
    def bus(self) -> EventBus:
        return self.ledger.bus

    @property
    def log(self) -> NotificationLog:
        return self.ledger.log

    def now(self) -> int:
        return self.ledger.now()

    def encrypted_input(self, caller: Caller) -> EncryptedInput:
        """Start an encrypted input batch bound to this store and ``caller``."""
        return self.service.create_encrypted_input(self.identity, identity_of(caller))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_shipment(
        self,
        tracking_id: str,
        origin: str,
        destination: str,
        estimated_delivery: int,
        caller: Caller,
    ) -> Shipment:
        return self.store.create_shipment(
            tracking_id, origin, destination, estimated_delivery, identity_of(caller)
        )

    def append_event(
        self,
        tracking_id: str,
        location: str,
        status: ShipmentStatus,
        description: str,
        caller: Caller,
        fields: Optional[EncryptedFields] = None,
        anomaly: Optional[Anomaly] = None,
    ) -> CargoEvent:
        return self.store.append_event(
            tracking_id, location, status, description, identity_of(caller),
            fields=fields, anomaly=anomaly,
        )

    def update_status(self, tracking_id: str, new_status: ShipmentStatus, caller: Caller) -> StatusChange:
        return self.lifecycle.update_status(tracking_id, new_status, identity_of(caller))

    def reassign_creator(self, tracking_id: str, new_owner: Caller, caller: Caller) -> None:
        self.store.reassign_creator(tracking_id, identity_of(new_owner), identity_of(caller))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_shipment(self, tracking_id: str) -> Shipment:
        return self.queries.get_shipment(tracking_id)

    def shipment_exists(self, tracking_id: str) -> bool:
        return self.queries.shipment_exists(tracking_id)

    def get_total_shipments(self) -> int:
        return self.queries.get_total_shipments()

    def get_event_count(self, tracking_id: str) -> int:
        return self.queries.get_event_count(tracking_id)

    def get_current_status(self, tracking_id: str) -> ShipmentStatus:
        return self.queries.get_current_status(tracking_id)

    def get_cargo_event(self, tracking_id: str, index: int) -> CargoEvent:
        return self.queries.get_cargo_event(tracking_id, index)

    def get_cargo_event_public(self, tracking_id: str, index: int) -> CargoEventPublic:
        return self.queries.get_cargo_event_public(tracking_id, index)

    def get_shipment_details(self, tracking_id: str) -> ShipmentDetails:
        return self.queries.get_shipment_details(tracking_id)

    def get_shipment_history(self, tracking_id: str) -> ShipmentHistory:
        return self.queries.get_shipment_history(tracking_id)

    def get_public_timeline(self, tracking_id: str) -> List[CargoEventPublic]:
        return self.queries.get_public_timeline(tracking_id)

    def get_encrypted_weight(self, tracking_id: str, index: int) -> Optional[str]:
        return self.queries.get_encrypted_weight(tracking_id, index)

    def get_contents_length(self, tracking_id: str, index: int) -> int:
        return self.queries.get_contents_length(tracking_id, index)

    def get_encrypted_contents(self, tracking_id: str, index: int) -> Tuple[str, ...]:
        return self.queries.get_encrypted_contents(tracking_id, index)

    def get_encrypted_contents_byte(self, tracking_id: str, index: int, byte_index: int) -> str:
        return self.queries.get_encrypted_contents_byte(tracking_id, index, byte_index)
