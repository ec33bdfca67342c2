"""
CargoFlow Error Taxonomy

Every rejected operation surfaces one of the exception kinds below, carrying a
stable machine-readable code and a human-readable reason. Write paths never
swallow these; the caller receives the specific kind.

    CargoFlowError
    ├── InvalidArgument
    │   ├── InvalidTrackingId
    │   ├── InvalidDeliveryWindow
    │   └── InvalidField
    ├── AlreadyExists
    ├── NotFound
    │   └── IndexOutOfRange
    ├── Forbidden
    ├── StatusTransitionError
    │   ├── InvalidTransition
    │   ├── NoOp
    │   └── TooSoon
    ├── ProofVerificationError
    ├── Unauthorized
    └── ReentrancyViolation

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from typing import Any, Dict


class CargoFlowError(Exception):
    """Base exception for all cargo tracking failures."""

    code = "CARGOFLOW_ERROR"

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.context: Dict[str, Any] = context
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "context": dict(self.context),
        }


class InvalidArgument(CargoFlowError):
    """Malformed input rejected before any state mutation."""

    code = "INVALID_ARGUMENT"

    def __init__(self, message: str, field: str = "", **context: Any):
        self.field = field
        super().__init__(message, field=field, **context)


class InvalidTrackingId(InvalidArgument):
    code = "INVALID_TRACKING_ID"


class InvalidDeliveryWindow(InvalidArgument):
    code = "INVALID_DELIVERY_WINDOW"


class InvalidField(InvalidArgument):
    code = "INVALID_FIELD"


class AlreadyExists(CargoFlowError):
    """A shipment with this tracking id was already created."""

    code = "ALREADY_EXISTS"


class NotFound(CargoFlowError):
    """Unknown tracking id."""

    code = "NOT_FOUND"


class IndexOutOfRange(NotFound):
    """Event or byte index past the end of the stored sequence."""

    code = "INDEX_OUT_OF_RANGE"


class Forbidden(CargoFlowError):
    """Caller is not the shipment's creator."""

    code = "FORBIDDEN"


class StatusTransitionError(CargoFlowError):
    code = "STATUS_TRANSITION_ERROR"


class InvalidTransition(StatusTransitionError):
    code = "INVALID_TRANSITION"


class NoOp(StatusTransitionError):
    code = "NO_OP"


class TooSoon(StatusTransitionError):
    code = "TOO_SOON"


class ProofVerificationError(CargoFlowError):
    """Input proof does not attest the submitted ciphertext handles."""

    code = "PROOF_VERIFICATION_FAILED"


class Unauthorized(CargoFlowError):
    """Decrypt request without a valid capability or signature."""

    code = "UNAUTHORIZED"


class ReentrancyViolation(CargoFlowError):
    code = "REENTRANT_CALL"
