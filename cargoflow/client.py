"""
Client convenience layer.

What a wallet-side application does around the ledger: stricter tracking id
format, kilogram to gram conversion, byte-wise encryption of free-text
contents, decryption through a signed authorization, and a printable
timeline.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import ROUND_FLOOR, Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Union

from cargoflow.errors import InvalidField, InvalidTrackingId
from cargoflow.fhe import DecryptAuthorization
from cargoflow.hardening import Validators
from cargoflow.identity import Account
from cargoflow.lifecycle import StatusChange
from cargoflow.models import Anomaly, CargoEvent, EncryptedFields, Shipment
from cargoflow.observability import CargoLayer, get_logger
from cargoflow.tracker import CargoTracker

logger = get_logger("client", CargoLayer.CLIENT)

DEFAULT_WEIGHT_BITS = 32
DEFAULT_AUTHORIZATION_DAYS = 10

Number = Union[int, float, str, Decimal]


def kg_to_grams(weight_kg: Number, bits: int = DEFAULT_WEIGHT_BITS) -> int:
    """``floor(kg * 1000)`` computed in decimal, bounded to ``bits`` bits."""
    max_grams = (1 << bits) - 1
    try:
        grams = (Decimal(str(weight_kg)) * 1000).to_integral_value(rounding=ROUND_FLOOR)
    except InvalidOperation as e:
        raise InvalidField(f"Invalid weight: {weight_kg!r}", field="weight") from e
    if not grams.is_finite() or grams < 0 or grams > max_grams:
        raise InvalidField(
            f"Weight must be between 0 and {grams_to_kg(max_grams)} kg",
            field="weight",
            weight_kg=str(weight_kg),
        )
    return int(grams)


def grams_to_kg(grams: int) -> Decimal:
    return Decimal(grams) / 1000


def encode_contents(text: str, max_bytes: int) -> bytes:
    """UTF-8 bytes of ``text``, truncated to ``max_bytes``."""
    return text.encode("utf-8")[:max_bytes]


def decode_contents(values: List[int]) -> str:
    return bytes(values).decode("utf-8", errors="replace")


class CargoClient:
    """One account's view of a tracker."""

    def __init__(self, tracker: CargoTracker, account: Account):
        self.tracker = tracker
        self.account = account
        self._authorization: Optional[DecryptAuthorization] = None

    @property
    def address(self) -> str:
        return self.account.address

    @property
    def max_contents_bytes(self) -> int:
        return self.tracker.importer.max_contents_bytes

    def check_tracking_id(self, tracking_id: str) -> str:
        Validators.validate_tracking_id(
            tracking_id,
            min_length=self.tracker.store.min_tracking_id_length,
            strict_format=True,
        ).raise_if_invalid(InvalidTrackingId)
        return tracking_id

    # ------------------------------------------------------------------
    # Encryption
    # ------------------------------------------------------------------

    def encrypt_fields(
        self,
        weight_kg: Optional[Number] = None,
        contents: Optional[str] = None,
    ) -> Optional[EncryptedFields]:
        """Encrypt weight and contents as two batches, one proof each."""
        weight_handle = weight_proof = None
        contents_handles: tuple = ()
        contents_proof = None

        if weight_kg is not None:
            weight_type = self.tracker.importer.weight_type
            grams = kg_to_grams(weight_kg, weight_type.bits)
            bundle = self.tracker.encrypted_input(self.account).add(weight_type, grams).encrypt()
            weight_handle, weight_proof = bundle.handles[0], bundle.input_proof

        if contents:
            raw = encode_contents(contents, self.max_contents_bytes)
            builder = self.tracker.encrypted_input(self.account)
            for b in raw:
                builder.add8(b)
            bundle = builder.encrypt()
            contents_handles, contents_proof = tuple(bundle.handles), bundle.input_proof

        if weight_handle is None and not contents_handles:
            return None
        return EncryptedFields(
            weight_handle=weight_handle,
            weight_proof=weight_proof,
            contents_handles=contents_handles,
            contents_proof=contents_proof,
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_shipment(
        self,
        tracking_id: str,
        origin: str,
        destination: str,
        estimated_delivery: int,
    ) -> Shipment:
        self.check_tracking_id(tracking_id)
        return self.tracker.create_shipment(tracking_id, origin, destination, estimated_delivery, self.account)

    def add_event(
        self,
        tracking_id: str,
        location: str,
        status: Any,
        description: str,
        weight_kg: Optional[Number] = None,
        contents: Optional[str] = None,
        anomaly: Optional[str] = None,
    ) -> CargoEvent:
        fields = self.encrypt_fields(weight_kg, contents)
        return self.tracker.append_event(
            tracking_id,
            location,
            status,
            description,
            self.account,
            fields=fields,
            anomaly=Anomaly(anomaly) if anomaly is not None else None,
        )

    def update_status(self, tracking_id: str, status: Any) -> StatusChange:
        return self.tracker.update_status(tracking_id, status, self.account)

    def transfer(self, tracking_id: str, new_owner: Union[Account, str]) -> None:
        self.tracker.reassign_creator(tracking_id, new_owner, self.account)

    # ------------------------------------------------------------------
    # Decryption
    # ------------------------------------------------------------------

    def authorize(self, duration_days: int = DEFAULT_AUTHORIZATION_DAYS) -> DecryptAuthorization:
        """Sign (or reuse) a decrypt authorization for this tracker's store."""
        now = self.tracker.now()
        current = self._authorization
        if current is not None and current.start_timestamp <= now <= current.expires_at:
            return current
        self._authorization = DecryptAuthorization.create(
            self.account, [self.tracker.identity], now, duration_days
        )
        return self._authorization

    def decrypt_weight_grams(self, tracking_id: str, index: int) -> int:
        """Decrypted weight of event ``index``; 0 when the event carries none."""
        handle = self.tracker.get_encrypted_weight(tracking_id, index)
        if handle is None:
            return 0
        return self.tracker.service.decrypt_on_behalf_of(handle, self.address, self.authorize())

    def decrypt_weight_kg(self, tracking_id: str, index: int) -> Decimal:
        return grams_to_kg(self.decrypt_weight_grams(tracking_id, index))

    def decrypt_contents(self, tracking_id: str, index: int) -> str:
        handles = self.tracker.get_encrypted_contents(tracking_id, index)
        if not handles:
            return ""
        values = self.tracker.service.decrypt_many_on_behalf_of(
            list(handles), self.address, self.authorize()
        )
        return decode_contents(values)

    # ------------------------------------------------------------------
    # Presentation
    # ------------------------------------------------------------------

    def timeline(self, tracking_id: str, decrypt: bool = False) -> List[Dict[str, Any]]:
        rows = []
        for event in self.tracker.get_shipment_details(tracking_id).events:
            row = event.to_public().to_dict()
            row["time"] = datetime.fromtimestamp(event.timestamp, tz=timezone.utc).isoformat()
            if decrypt:
                row["weight_kg"] = str(self.decrypt_weight_kg(tracking_id, event.event_id))
                row["contents"] = self.decrypt_contents(tracking_id, event.event_id)
            rows.append(row)
        return rows

    def format_timeline(self, tracking_id: str, decrypt: bool = False) -> str:
        shipment = self.tracker.get_shipment(tracking_id)
        lines = [f"{shipment.tracking_id}: {shipment.origin} -> {shipment.destination}"]
        for row in self.timeline(tracking_id, decrypt=decrypt):
            line = f"  [{row['event_id']}] {row['time']}  {row['status']:<17}  {row['location']}: {row['description']}"
            if row["has_anomaly"]:
                line += f"  (anomaly: {row['anomaly_description']})"
            if decrypt:
                line += f"  weight={row['weight_kg']} kg contents={row['contents']!r}"
            lines.append(line)
        return "\n".join(lines)
