"""Account identities.

An identity is a lowercase ``0x`` + 40 hex string derived from an Ed25519
public key. The same key signs decrypt authorizations, so the confidential
service can tie a signature back to the identity holding a capability.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)


NULL_IDENTITY = "0x" + "0" * 40


def address_from_public_key(pub: bytes) -> str:
    """Derive the identity for a raw 32-byte Ed25519 public key."""
    if len(pub) != 32:
        raise ValueError("ed25519 public key must be 32 bytes")
    return "0x" + hashlib.sha256(pub).hexdigest()[-40:]


def public_key_bytes(key: Ed25519PublicKey) -> bytes:
    return key.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


def verify_ed25519(pub: bytes, signature: bytes, message: bytes) -> bool:
    try:
        Ed25519PublicKey.from_public_bytes(pub).verify(signature, message)
    except (InvalidSignature, ValueError):
        return False
    return True


@dataclass
class Account:
    """A signing identity (wallet)."""

    private_key: Ed25519PrivateKey
    label: str = ""
    _pub: bytes = field(default=b"", repr=False)

    def __post_init__(self):
        if not self._pub:
            self._pub = public_key_bytes(self.private_key.public_key())

    @classmethod
    def generate(cls, label: str = "") -> "Account":
        return cls(Ed25519PrivateKey.generate(), label=label)

    @classmethod
    def from_seed(cls, seed: bytes, label: str = "") -> "Account":
        """Deterministic account from a 32-byte seed (fixtures and demos)."""
        return cls(Ed25519PrivateKey.from_private_bytes(hashlib.sha256(seed).digest()), label=label)

    @property
    def public_key(self) -> bytes:
        return self._pub

    @property
    def address(self) -> str:
        return address_from_public_key(self._pub)

    def sign(self, message: bytes) -> bytes:
        return self.private_key.sign(message)

    def __str__(self) -> str:
        return self.label or self.address


def is_null_identity(identity: Optional[str]) -> bool:
    return not identity or identity.lower() == NULL_IDENTITY
