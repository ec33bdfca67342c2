"""
CargoFlow Validation and Hardening Module

Pure input checks run before any ledger mutation, plus the small concurrency
primitives the record store relies on:

1. Tracking identifier and required-field validation
2. Delivery window validation
3. Identity (address) validation
4. Atomic counters
5. Scoped reentrancy guard
6. State machine invariant enforcement

Security Model:
    - All inputs are untrusted until validated
    - Validation is side-effect free; a failed check never touches state
    - Guards are acquired and released as one scoped unit

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import re
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Set, Type

from cargoflow.errors import (
    CargoFlowError,
    InvalidArgument,
    InvalidDeliveryWindow,
    InvalidField,
    InvalidTrackingId,
    InvalidTransition,
    ReentrancyViolation,
)
from cargoflow.models import ShipmentStatus


DEFAULT_MIN_TRACKING_ID_LENGTH = 6
ONE_YEAR_SECONDS = 365 * 24 * 3600


class InvariantViolation(Exception):
    """Internal record-store invariant violated."""
    pass


# =============================================================================
# VALIDATION RESULT
# =============================================================================

@dataclass
class ValidationIssue:
    """A single failed check."""
    field: str
    message: str
    value: Any = None


@dataclass
class ValidationResult:
    """Result of a validation operation."""
    is_valid: bool
    errors: List[ValidationIssue] = field(default_factory=list)
    sanitized_value: Any = None

    def raise_if_invalid(self, error_cls: Type[InvalidArgument] = InvalidArgument) -> None:
        """Raise the first failure as ``error_cls``."""
        if not self.is_valid:
            first = self.errors[0]
            raise error_cls(first.message, field=first.field)

    @classmethod
    def success(cls, sanitized_value: Any = None) -> "ValidationResult":
        return cls(is_valid=True, sanitized_value=sanitized_value)

    @classmethod
    def failure(cls, errors: List[ValidationIssue]) -> "ValidationResult":
        return cls(is_valid=False, errors=errors)


# =============================================================================
# PURE CHECKS
# =============================================================================

def validate_tracking_id(
    tracking_id: Any,
    min_length: int = DEFAULT_MIN_TRACKING_ID_LENGTH,
) -> bool:
    """True when ``tracking_id`` is a string of at least ``min_length`` bytes.

    Length is measured on the UTF-8 encoding, the way the ledger stores it.
    No character-set restriction applies here; see ``Validators.TRACKING_ID_PATTERN``
    for the stricter client-side format.
    """
    if not isinstance(tracking_id, str):
        return False
    return len(tracking_id.encode("utf-8")) >= min_length


def validate_non_empty(value: Any) -> bool:
    """True when ``value`` is a non-empty string."""
    return isinstance(value, str) and len(value) > 0


# =============================================================================
# INPUT VALIDATORS
# =============================================================================

class Validators:
    """Collection of input validators returning ``ValidationResult``."""

    TRACKING_ID_PATTERN = re.compile(r'^[A-Z0-9-]+$')
    HEX40_PATTERN = re.compile(r'^0x[a-f0-9]{40}$')
    HANDLE_PATTERN = re.compile(r'^0x[a-f0-9]{64}$')

    MAX_STRING_LENGTH = 4096

    @classmethod
    def validate_string(
        cls,
        value: Any,
        field_name: str,
        min_length: int = 1,
        max_length: Optional[int] = None,
        pattern: Optional[re.Pattern] = None,
    ) -> ValidationResult:
        """Validate a string value."""
        max_length = max_length or cls.MAX_STRING_LENGTH
        errors = []

        if not isinstance(value, str):
            errors.append(ValidationIssue(field_name, f"Expected string, got {type(value).__name__}", value))
            return ValidationResult.failure(errors)

        if len(value) < min_length:
            errors.append(ValidationIssue(field_name, f"Too short (min {min_length} chars)", value))

        if len(value) > max_length:
            errors.append(ValidationIssue(field_name, f"Too long (max {max_length} chars)", value))

        if pattern and not pattern.match(value):
            errors.append(ValidationIssue(field_name, "Does not match required pattern", value))

        if errors:
            return ValidationResult.failure(errors)
        return ValidationResult.success(value)

    @classmethod
    def validate_tracking_id(
        cls,
        value: Any,
        min_length: int = DEFAULT_MIN_TRACKING_ID_LENGTH,
        strict_format: bool = False,
    ) -> ValidationResult:
        """Validate a tracking id.

        The ledger only enforces the minimum length. ``strict_format`` adds the
        client-side rule of uppercase letters, digits and hyphens.
        """
        if not validate_tracking_id(value, min_length):
            return ValidationResult.failure([
                ValidationIssue("tracking_id", "Tracking ID too short", value)
            ])
        if strict_format and not cls.TRACKING_ID_PATTERN.match(value):
            return ValidationResult.failure([
                ValidationIssue(
                    "tracking_id",
                    "Tracking ID can only contain uppercase letters, numbers, and hyphens",
                    value,
                )
            ])
        return ValidationResult.success(value)

    @classmethod
    def validate_required(cls, value: Any, field_name: str) -> ValidationResult:
        """Reject missing or zero-length text fields."""
        if not validate_non_empty(value):
            return ValidationResult.failure([
                ValidationIssue(field_name, f"{field_name.capitalize()} cannot be empty", value)
            ])
        return ValidationResult.success(value)

    @classmethod
    def validate_address(cls, value: Any, field_name: str = "address") -> ValidationResult:
        """Validate an account identity (0x + 40 hex)."""
        result = cls.validate_string(value, field_name, min_length=42, max_length=42)
        if not result.is_valid:
            return result

        lower = result.sanitized_value.lower()
        if not cls.HEX40_PATTERN.match(lower):
            return ValidationResult.failure([
                ValidationIssue(field_name, "Must be a valid identity (0x + 40 hex)", value)
            ])

        return ValidationResult.success(lower)

    @classmethod
    def validate_handle(cls, value: Any, field_name: str = "handle") -> ValidationResult:
        """Validate a ciphertext handle (0x + 64 hex)."""
        if not isinstance(value, str) or not cls.HANDLE_PATTERN.match(value.lower()):
            return ValidationResult.failure([
                ValidationIssue(field_name, "Must be a ciphertext handle (0x + 64 hex)", value)
            ])
        return ValidationResult.success(value.lower())

    @classmethod
    def validate_status(cls, value: Any, field_name: str = "status") -> ValidationResult:
        """Validate a lifecycle stage given as a member, value, name or label."""
        try:
            status = ShipmentStatus.parse(value)
        except ValueError:
            return ValidationResult.failure([
                ValidationIssue(field_name, "Unknown shipment status", value)
            ])
        return ValidationResult.success(status)

    @classmethod
    def validate_delivery_window(
        cls,
        estimated_delivery: Any,
        now: int,
        max_window_seconds: int = ONE_YEAR_SECONDS,
    ) -> ValidationResult:
        """Estimated delivery must lie in ``(now, now + max_window_seconds]``."""
        if isinstance(estimated_delivery, bool) or not isinstance(estimated_delivery, int):
            return ValidationResult.failure([
                ValidationIssue(
                    "estimated_delivery",
                    f"Expected integer timestamp, got {type(estimated_delivery).__name__}",
                    estimated_delivery,
                )
            ])
        if estimated_delivery <= now:
            return ValidationResult.failure([
                ValidationIssue(
                    "estimated_delivery",
                    "Estimated delivery must be in the future",
                    estimated_delivery,
                )
            ])
        if estimated_delivery > now + max_window_seconds:
            return ValidationResult.failure([
                ValidationIssue(
                    "estimated_delivery",
                    "Estimated delivery cannot be more than 1 year in the future",
                    estimated_delivery,
                )
            ])
        return ValidationResult.success(estimated_delivery)


def require_tracking_id(tracking_id: Any, min_length: int = DEFAULT_MIN_TRACKING_ID_LENGTH) -> str:
    Validators.validate_tracking_id(tracking_id, min_length).raise_if_invalid(InvalidTrackingId)
    return tracking_id


def require_delivery_window(estimated_delivery: Any, now: int, max_window_seconds: int) -> int:
    Validators.validate_delivery_window(
        estimated_delivery, now, max_window_seconds
    ).raise_if_invalid(InvalidDeliveryWindow)
    return estimated_delivery


def require_status(status: Any) -> ShipmentStatus:
    result = Validators.validate_status(status)
    result.raise_if_invalid(InvalidField)
    return result.sanitized_value


# =============================================================================
# THREAD SAFETY
# =============================================================================

class AtomicCounter:
    """Thread-safe counter."""

    def __init__(self, initial: int = 0):
        self._value = initial
        self._lock = threading.Lock()

    def increment(self, delta: int = 1) -> int:
        """Atomically increment and return new value."""
        with self._lock:
            self._value += delta
            return self._value

    def get(self) -> int:
        """Get current value."""
        with self._lock:
            return self._value


class ReentrancyGuard:
    """
    Scoped guard rejecting nested entry into guarded operations.

    The flag is checked and set under one lock, and cleared in ``finally`` so
    every exit path, including failures, releases it.
    """

    def __init__(self, name: str = "guard"):
        self.name = name
        self._entered = False
        self._lock = threading.Lock()

    @property
    def locked(self) -> bool:
        with self._lock:
            return self._entered

    @contextmanager
    def enter(self, operation: str = "") -> Iterator[None]:
        with self._lock:
            if self._entered:
                raise ReentrancyViolation(
                    f"Reentrant call into {self.name}",
                    operation=operation,
                )
            self._entered = True
        try:
            yield
        finally:
            with self._lock:
                self._entered = False


# =============================================================================
# STATE MACHINE INVARIANTS
# =============================================================================

class InvariantChecker:
    """Enforces state machine invariants."""

    @staticmethod
    def check_state_transition(
        current_state: Enum,
        target_state: Enum,
        valid_transitions: Dict[Enum, Set[Enum]],
        error_cls: Type[CargoFlowError] = InvalidTransition,
    ) -> None:
        """Verify state transition is valid."""
        valid_targets = valid_transitions.get(current_state, set())
        if target_state not in valid_targets:
            raise error_cls(
                f"Invalid state transition: {current_state.name} -> {target_state.name}",
                valid_targets=sorted(s.name for s in valid_targets),
            )

    @staticmethod
    def check_sequence_alignment(field_name: str, count: int, length: int) -> None:
        """A stored counter must equal the length of the sequence it counts."""
        if count != length:
            raise InvariantViolation(
                f"{field_name} out of step with stored sequence: count={count} length={length}"
            )
