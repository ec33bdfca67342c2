"""
CargoFlow: Confidential Cargo Tracking Ledger

A ledger-backed shipment record where operational data (location, status,
timestamps) is public and the cargo payload (weight, free-text contents) is
held as ciphertext handles only designated parties may decrypt.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────────┐
    │                        CARGO TRACKING LEDGER                             │
    │                                                                          │
    │  SURFACE                                                                 │
    │    tracker.py     Writes, reads and wiring for one record store         │
    │    client.py      Wallet-side encryption, decryption and timelines      │
    │    cli.py         Operator command line                                 │
    │                                                                          │
    │  CORE                                                                    │
    │    records.py     Shipments, append-only event lists, counters          │
    │    lifecycle.py   Forward-only status machine with dwell gating         │
    │    queries.py     Read-only projections                                 │
    │    importer.py    Admission of encrypted fields, capability grants      │
    │    hardening.py   Input validation, reentrancy guard, invariants        │
    │                                                                          │
    │  COLLABORATORS                                                          │
    │    ledger.py      Clock, serialised writes, notification commit         │
    │    events.py      Notifications, notification log, event bus            │
    │    fhe.py         Local confidential-computation service               │
    │    zkp.py         Input proofs                                          │
    │    acl.py         Additive decrypt capability list                      │
    │                                                                          │
    └─────────────────────────────────────────────────────────────────────────┘

Design Principles
─────────────────

    All or Nothing: a write either lands completely (record, count,
    capability grants, notifications) or leaves no trace.

    Forward Only: events are appended, never edited; statuses advance one
    stage at a time and never go back.

    Additive Capabilities: decrypt rights are granted, never revoked.

Copyright (c) 2026 Momentum. All rights reserved.
"""

__version__ = "0.3.0"


# Lazy imports to avoid circular dependencies
def __getattr__(name):
    """Lazy import CargoFlow modules on first access."""

    if name in ("CargoTracker",):
        from cargoflow import tracker
        return getattr(tracker, name)

    if name in ("CargoClient", "kg_to_grams"):
        from cargoflow import client
        return getattr(client, name)

    if name in ("ShipmentStatus", "Shipment", "CargoEvent", "CargoEventPublic",
                "EncryptedFields", "Anomaly", "ShipmentDetails", "ShipmentHistory"):
        from cargoflow import models
        return getattr(models, name)

    if name in ("VALID_TRANSITIONS", "is_valid_transition", "StatusTransitionEngine"):
        from cargoflow import lifecycle
        return getattr(lifecycle, name)

    if name in ("ShipmentRecordStore",):
        from cargoflow import records
        return getattr(records, name)

    if name in ("ShipmentQueries",):
        from cargoflow import queries
        return getattr(queries, name)

    if name in ("LedgerHost", "SystemClock", "ManualClock"):
        from cargoflow import ledger
        return getattr(ledger, name)

    if name in ("LocalConfidentialService", "DecryptAuthorization", "EncryptedInput"):
        from cargoflow import fhe
        return getattr(fhe, name)

    if name in ("Account", "NULL_IDENTITY"):
        from cargoflow import identity
        return getattr(identity, name)

    if name in ("validate_tracking_id", "validate_non_empty", "Validators"):
        from cargoflow import hardening
        return getattr(hardening, name)

    if name in ("CargoFlowError", "InvalidArgument", "InvalidTrackingId",
                "InvalidDeliveryWindow", "InvalidField", "AlreadyExists", "NotFound",
                "IndexOutOfRange", "Forbidden", "InvalidTransition", "NoOp", "TooSoon",
                "ProofVerificationError", "Unauthorized", "ReentrancyViolation"):
        from cargoflow import errors
        return getattr(errors, name)

    raise AttributeError(f"module 'cargoflow' has no attribute '{name}'")


__all__ = [
    "__version__",
    # Surface
    "CargoTracker",
    "CargoClient",
    # Model
    "ShipmentStatus",
    "Shipment",
    "CargoEvent",
    "CargoEventPublic",
    "EncryptedFields",
    "Anomaly",
    # Core
    "ShipmentRecordStore",
    "StatusTransitionEngine",
    "ShipmentQueries",
    "is_valid_transition",
    "validate_tracking_id",
    # Collaborators
    "LedgerHost",
    "ManualClock",
    "LocalConfidentialService",
    "DecryptAuthorization",
    "Account",
]
