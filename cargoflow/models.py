"""
CargoFlow data model.

Shipments and their append-only event lists. Ciphertext fields hold opaque
handles issued by the confidential-computation service; nothing here ever
holds a plaintext weight or contents value.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, List, Optional, Sequence, Tuple


class ShipmentStatus(IntEnum):
    """Lifecycle stages, in their only permitted order."""
    CREATED = 0
    IN_TRANSIT = 1
    CUSTOMS_CLEARANCE = 2
    ARRIVED = 3
    DELIVERED = 4

    @property
    def label(self) -> str:
        return _STATUS_LABELS[self]

    @property
    def is_terminal(self) -> bool:
        return self is ShipmentStatus.DELIVERED

    @classmethod
    def parse(cls, value: Any) -> "ShipmentStatus":
        """Accept a member, its integer value, its name or its display label."""
        if isinstance(value, cls):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            return cls(value)
        if isinstance(value, str):
            key = value.strip().upper().replace(" ", "_").replace("-", "_")
            if key in cls.__members__:
                return cls[key]
            for member in cls:
                if member.label.lower() == value.strip().lower():
                    return member
        raise ValueError(f"Unknown shipment status: {value!r}")


_STATUS_LABELS = {
    ShipmentStatus.CREATED: "Created",
    ShipmentStatus.IN_TRANSIT: "In Transit",
    ShipmentStatus.CUSTOMS_CLEARANCE: "Customs Clearance",
    ShipmentStatus.ARRIVED: "Arrived",
    ShipmentStatus.DELIVERED: "Delivered",
}


@dataclass(frozen=True)
class Shipment:
    """One record per tracking id. Only ``creator`` ever changes, by replacement."""
    tracking_id: str
    origin: str
    destination: str
    created_at: int
    estimated_delivery: int
    creator: str
    exists: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tracking_id": self.tracking_id,
            "origin": self.origin,
            "destination": self.destination,
            "created_at": self.created_at,
            "estimated_delivery": self.estimated_delivery,
            "creator": self.creator,
            "exists": self.exists,
        }


@dataclass(frozen=True)
class Anomaly:
    """Out-of-band observation attached to an event (e.g. temperature excursion)."""
    description: str


@dataclass(frozen=True)
class EncryptedFields:
    """
    Candidate confidential payload for one event, as produced by the client.

    ``weight_handle`` is a single euint32 handle; ``contents_handles`` are
    euint8 handles, one per byte of the free-text contents. Each group carries
    its own input proof.
    """
    weight_handle: Optional[str] = None
    weight_proof: Any = None
    contents_handles: Tuple[str, ...] = ()
    contents_proof: Any = None

    @property
    def has_weight(self) -> bool:
        return self.weight_handle is not None

    @property
    def has_contents(self) -> bool:
        return len(self.contents_handles) > 0


@dataclass(frozen=True)
class CargoEvent:
    """An entry in a shipment's append-only event list."""
    event_id: int
    timestamp: int
    location: str
    status: ShipmentStatus
    description: str
    encrypted_weight: Optional[str] = None
    encrypted_contents: Tuple[str, ...] = ()
    has_anomaly: bool = False
    anomaly_description: str = ""

    def to_public(self) -> "CargoEventPublic":
        return CargoEventPublic(
            event_id=self.event_id,
            timestamp=self.timestamp,
            location=self.location,
            status=self.status,
            description=self.description,
            has_anomaly=self.has_anomaly,
            anomaly_description=self.anomaly_description,
        )

    def to_dict(self) -> Dict[str, Any]:
        d = self.to_public().to_dict()
        d["encrypted_weight"] = self.encrypted_weight
        d["encrypted_contents"] = list(self.encrypted_contents)
        return d


@dataclass(frozen=True)
class CargoEventPublic:
    """Plaintext projection of a ``CargoEvent``; no ciphertext handles."""
    event_id: int
    timestamp: int
    location: str
    status: ShipmentStatus
    description: str
    has_anomaly: bool = False
    anomaly_description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "timestamp": self.timestamp,
            "location": self.location,
            "status": self.status.label,
            "description": self.description,
            "has_anomaly": self.has_anomaly,
            "anomaly_description": self.anomaly_description,
        }


@dataclass
class ShipmentDetails:
    shipment: Shipment
    events: List[CargoEvent] = field(default_factory=list)
    event_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "shipment": self.shipment.to_dict(),
            "events": [e.to_dict() for e in self.events],
            "event_count": self.event_count,
        }


@dataclass
class ShipmentHistory:
    """Columnar, index-aligned view of a shipment's events."""
    locations: List[str] = field(default_factory=list)
    statuses: List[ShipmentStatus] = field(default_factory=list)
    timestamps: List[int] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.locations)

    def rows(self) -> Sequence[Tuple[str, ShipmentStatus, int]]:
        return list(zip(self.locations, self.statuses, self.timestamps))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "locations": list(self.locations),
            "statuses": [s.label for s in self.statuses],
            "timestamps": list(self.timestamps),
        }
