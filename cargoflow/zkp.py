"""
CargoFlow Input Proof Infrastructure

Proofs of well-formedness for externally encrypted inputs. A submitter
encrypts values client-side against a (contract, submitter) context; the
input verifier attests that every resulting ciphertext handle is a valid
encryption of a value of the declared type, bound to that context. The
ledger admits ciphertexts only against such a proof.

One proof covers a whole batch of handles (proof generation is the
expensive step), so a batch verifies or fails as a unit: the proof must
cover exactly the handle set submitted with it.

Proof Shape:
    statement = canonical JSON of {binding, handles, types}
    signature = Ed25519(input-verifier key, statement)

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from cargoflow.canonical import jcs_canonicalize
from cargoflow.errors import ProofVerificationError
from cargoflow.identity import public_key_bytes, verify_ed25519


# =============================================================================
# CIPHERTEXT TYPES
# =============================================================================

class CiphertextType(Enum):
    """
    Encrypted integer types accepted by the ledger.

        - EUINT8: one byte of encrypted free text
        - EUINT32: bounded unsigned integer (weight in grams)
    """
    EUINT8 = "euint8"
    EUINT32 = "euint32"

    @property
    def bits(self) -> int:
        return {CiphertextType.EUINT8: 8, CiphertextType.EUINT32: 32}[self]

    @classmethod
    def for_bits(cls, bits: int) -> "CiphertextType":
        for ctype in cls:
            if ctype.bits == bits:
                return ctype
        raise ValueError(f"no ciphertext type is {bits} bits wide")

    def accepts(self, value: Any) -> bool:
        if isinstance(value, bool) or not isinstance(value, int):
            return False
        return 0 <= value < (1 << self.bits)


# =============================================================================
# CONTEXT BINDING
# =============================================================================

@dataclass(frozen=True)
class ContextBinding:
    """The (record store, submitter) pair a ciphertext is bound to."""
    contract: str
    submitter: str

    def __post_init__(self):
        object.__setattr__(self, "contract", self.contract.lower())
        object.__setattr__(self, "submitter", self.submitter.lower())

    def to_dict(self) -> Dict[str, str]:
        return {"contract": self.contract, "submitter": self.submitter}


def input_statement(
    handles: Sequence[str],
    types: Sequence[CiphertextType],
    binding: ContextBinding,
) -> bytes:
    """Canonical bytes a proof signs over."""
    return jcs_canonicalize({
        "binding": binding.to_dict(),
        "handles": list(handles),
        "types": [t.value for t in types],
    })


# =============================================================================
# PROOF
# =============================================================================

@dataclass
class InputProof:
    """
    Proof that ``handles`` are well-formed ciphertexts of ``types`` bound to ``binding``.
    """
    handles: List[str]
    types: List[CiphertextType]
    binding: ContextBinding
    signature: bytes

    @property
    def digest(self) -> str:
        """Content-addressed identifier for the proof."""
        return hashlib.sha256(
            input_statement(self.handles, self.types, self.binding) + self.signature
        ).hexdigest()

    def covers(self, handles: Sequence[str]) -> bool:
        """True iff the proof attests exactly ``handles``, in order."""
        return list(handles) == list(self.handles)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "handles": list(self.handles),
            "types": [t.value for t in self.types],
            "binding": self.binding.to_dict(),
            "signature": self.signature.hex(),
            "digest": self.digest,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InputProof":
        return cls(
            handles=list(data["handles"]),
            types=[CiphertextType(t) for t in data["types"]],
            binding=ContextBinding(**data["binding"]),
            signature=bytes.fromhex(data["signature"]),
        )


# =============================================================================
# SIGNER AND VERIFIER
# =============================================================================

class InputProofSigner:
    """
    Issues input proofs. Held by the confidential-computation service.
    """

    def __init__(self, private_key: Optional[Ed25519PrivateKey] = None):
        self._key = private_key or Ed25519PrivateKey.generate()

    @property
    def public_key(self) -> bytes:
        return public_key_bytes(self._key.public_key())

    def sign(
        self,
        handles: Sequence[str],
        types: Sequence[CiphertextType],
        binding: ContextBinding,
    ) -> InputProof:
        if len(handles) != len(types):
            raise ValueError("handles and types must have equal length")
        statement = input_statement(handles, types, binding)
        return InputProof(
            handles=list(handles),
            types=list(types),
            binding=binding,
            signature=self._key.sign(statement),
        )


class InputProofVerifier:
    """
    Verifies input proofs against the input-verifier public key.
    """

    def __init__(self, public_key: bytes):
        self._public_key = public_key

    def check(
        self,
        proof: Optional[InputProof],
        handles: Sequence[str],
        binding: ContextBinding,
        expected_type: Optional[CiphertextType] = None,
    ) -> None:
        """Raise ``ProofVerificationError`` unless ``proof`` attests ``handles``."""
        if proof is None:
            raise ProofVerificationError("Missing input proof")
        if not handles:
            raise ProofVerificationError("Input proof must cover at least one handle")
        if not proof.covers(handles):
            raise ProofVerificationError(
                "Input proof does not cover the supplied handles",
                supplied=len(handles),
                proven=len(proof.handles),
            )
        if len(proof.types) != len(proof.handles):
            raise ProofVerificationError("Malformed input proof")
        if expected_type is not None and any(t != expected_type for t in proof.types):
            raise ProofVerificationError(
                f"Input proof does not attest {expected_type.value} values",
            )
        if proof.binding != binding:
            raise ProofVerificationError(
                "Input proof is bound to a different contract or submitter",
                expected=binding.to_dict(),
                actual=proof.binding.to_dict(),
            )
        statement = input_statement(proof.handles, proof.types, proof.binding)
        if not verify_ed25519(self._public_key, proof.signature, statement):
            raise ProofVerificationError("Input proof signature not verified")

    def verify(
        self,
        proof: Optional[InputProof],
        handles: Sequence[str],
        binding: ContextBinding,
        expected_type: Optional[CiphertextType] = None,
    ) -> bool:
        try:
            self.check(proof, handles, binding, expected_type)
        except ProofVerificationError:
            return False
        return True
