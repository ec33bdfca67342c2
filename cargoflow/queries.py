"""Read-only projections over the record store.

Nothing here mutates state. Unknown tracking ids raise ``NotFound``; event and
byte indices past the end raise ``IndexOutOfRange``.
"""

from __future__ import annotations

from typing import List, Optional, Tuple

from cargoflow.errors import IndexOutOfRange
from cargoflow.lifecycle import current_status
from cargoflow.models import (
    CargoEvent,
    CargoEventPublic,
    Shipment,
    ShipmentDetails,
    ShipmentHistory,
    ShipmentStatus,
)
from cargoflow.records import ShipmentRecordStore


class ShipmentQueries:

    def __init__(self, store: ShipmentRecordStore):
        self.store = store

    def _events(self, tracking_id: str) -> List[CargoEvent]:
        self.store.require_shipment(tracking_id)
        return self.store.events_snapshot(tracking_id)

    def _event_at(self, tracking_id: str, index: int) -> CargoEvent:
        events = self._events(tracking_id)
        if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < len(events):
            raise IndexOutOfRange(
                "Invalid event index",
                tracking_id=tracking_id,
                index=index,
                event_count=len(events),
            )
        return events[index]

    def get_shipment(self, tracking_id: str) -> Shipment:
        return self.store.require_shipment(tracking_id)

    def shipment_exists(self, tracking_id: str) -> bool:
        return self.store.has_shipment(tracking_id)

    def get_total_shipments(self) -> int:
        return self.store.total_shipments

    def get_event_count(self, tracking_id: str) -> int:
        self.store.require_shipment(tracking_id)
        return self.store.event_count(tracking_id)

    def get_current_status(self, tracking_id: str) -> ShipmentStatus:
        return current_status(self._events(tracking_id))

    def get_cargo_event(self, tracking_id: str, index: int) -> CargoEvent:
        return self._event_at(tracking_id, index)

    def get_cargo_event_public(self, tracking_id: str, index: int) -> CargoEventPublic:
        return self._event_at(tracking_id, index).to_public()

    def get_shipment_details(self, tracking_id: str) -> ShipmentDetails:
        shipment = self.store.require_shipment(tracking_id)
        events = self.store.events_snapshot(tracking_id)
        return ShipmentDetails(shipment=shipment, events=events, event_count=len(events))

    def get_shipment_history(self, tracking_id: str) -> ShipmentHistory:
        events = self._events(tracking_id)
        return ShipmentHistory(
            locations=[e.location for e in events],
            statuses=[e.status for e in events],
            timestamps=[e.timestamp for e in events],
        )

    def get_public_timeline(self, tracking_id: str) -> List[CargoEventPublic]:
        return [e.to_public() for e in self._events(tracking_id)]

    def get_encrypted_weight(self, tracking_id: str, index: int) -> Optional[str]:
        """Weight handle of event ``index``; ``None`` if no weight was ever supplied."""
        return self._event_at(tracking_id, index).encrypted_weight

    def get_contents_length(self, tracking_id: str, index: int) -> int:
        return len(self._event_at(tracking_id, index).encrypted_contents)

    def get_encrypted_contents(self, tracking_id: str, index: int) -> Tuple[str, ...]:
        return self._event_at(tracking_id, index).encrypted_contents

    def get_encrypted_contents_byte(self, tracking_id: str, index: int, byte_index: int) -> str:
        contents = self._event_at(tracking_id, index).encrypted_contents
        if isinstance(byte_index, bool) or not isinstance(byte_index, int) or not 0 <= byte_index < len(contents):
            raise IndexOutOfRange(
                "Invalid byte index",
                tracking_id=tracking_id,
                index=index,
                byte_index=byte_index,
                contents_length=len(contents),
            )
        return contents[byte_index]
