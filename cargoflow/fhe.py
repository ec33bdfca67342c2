"""
CargoFlow Local Confidential-Computation Service

A reference implementation of the confidential-computation collaborator the
record store consumes. It keeps the shape of the real service so the ledger
logic can be exercised end to end:

    client ── EncryptedInput.add8/add32 ── encrypt() ──► (handles, input proof)
                                                           │
    record store ── verify_and_admit(handle, proof) ◄──────┘
                 ── grant_decrypt_capability(handle, holder)
    holder ─────── decrypt_on_behalf_of(handle, holder, authorization)

Values are sealed with AES-GCM under a service-held key, so handles are opaque
to everyone but the service. The homomorphic scheme itself is out of scope;
only the admission, capability and decryption contract is modelled.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import hashlib
import os
import threading
import time
from collections import OrderedDict
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from cargoflow.acl import CapabilityList
from cargoflow.canonical import jcs_canonicalize
from cargoflow.errors import ProofVerificationError, Unauthorized
from cargoflow.identity import Account, address_from_public_key, verify_ed25519
from cargoflow.observability import CargoLayer, get_logger
from cargoflow.zkp import (
    CiphertextType,
    ContextBinding,
    InputProof,
    InputProofSigner,
    InputProofVerifier,
)

logger = get_logger("fhe", CargoLayer.CONFIDENTIAL)

SECONDS_PER_DAY = 86400
DEFAULT_MAX_DECRYPT_VALIDITY_DAYS = 365
DEFAULT_MAX_PENDING_INPUTS = 4096


def _system_now() -> int:
    return int(time.time())


# =============================================================================
# CIPHERTEXTS
# =============================================================================

@dataclass(frozen=True)
class Ciphertext:
    """A sealed value as held by the service."""
    handle: str
    ctype: CiphertextType
    binding: ContextBinding
    nonce: bytes = field(repr=False)
    sealed: bytes = field(repr=False)

    def aad(self) -> bytes:
        return jcs_canonicalize({"binding": self.binding.to_dict(), "type": self.ctype.value})


@dataclass
class EncryptedInputBundle:
    """Output of ``EncryptedInput.encrypt()``: external handles plus one proof."""
    handles: List[str]
    input_proof: InputProof


class EncryptedInput:
    """
    Builder for a batch of encrypted inputs bound to (contract, submitter).

        bundle = service.create_encrypted_input(store, alice).add32(2500000).encrypt()
    """

    def __init__(self, service: "LocalConfidentialService", contract: str, submitter: str):
        self._service = service
        self.binding = ContextBinding(contract, submitter)
        self._values: List[Tuple[CiphertextType, int]] = []

    def add(self, ctype: CiphertextType, value: int) -> "EncryptedInput":
        if not ctype.accepts(value):
            raise ValueError(f"value {value!r} does not fit {ctype.value}")
        self._values.append((ctype, value))
        return self

    def add8(self, value: int) -> "EncryptedInput":
        return self.add(CiphertextType.EUINT8, value)

    def add32(self, value: int) -> "EncryptedInput":
        return self.add(CiphertextType.EUINT32, value)

    def __len__(self) -> int:
        return len(self._values)

    def encrypt(self) -> EncryptedInputBundle:
        if not self._values:
            raise ValueError("nothing to encrypt")
        return self._service._seal_inputs(self.binding, self._values)


# =============================================================================
# DECRYPT AUTHORIZATION
# =============================================================================

@dataclass(frozen=True)
class DecryptAuthorization:
    """
    A holder's signed request to decrypt handles owned by ``contracts`` during
    ``[start_timestamp, start_timestamp + duration_days days]``.
    """
    public_key: bytes
    contracts: Tuple[str, ...]
    start_timestamp: int
    duration_days: int
    signature: bytes

    @staticmethod
    def message(
        public_key: bytes,
        contracts: Sequence[str],
        start_timestamp: int,
        duration_days: int,
    ) -> bytes:
        return jcs_canonicalize({
            "type": "cargoflow.decrypt-authorization",
            "public_key": public_key,
            "contracts": sorted(c.lower() for c in contracts),
            "start_timestamp": start_timestamp,
            "duration_days": duration_days,
        })

    @classmethod
    def create(
        cls,
        account: Account,
        contracts: Sequence[str],
        start_timestamp: int,
        duration_days: int,
    ) -> "DecryptAuthorization":
        msg = cls.message(account.public_key, contracts, start_timestamp, duration_days)
        return cls(
            public_key=account.public_key,
            contracts=tuple(c.lower() for c in contracts),
            start_timestamp=start_timestamp,
            duration_days=duration_days,
            signature=account.sign(msg),
        )

    @property
    def holder(self) -> str:
        return address_from_public_key(self.public_key)

    @property
    def expires_at(self) -> int:
        return self.start_timestamp + self.duration_days * SECONDS_PER_DAY

    def signature_valid(self) -> bool:
        msg = self.message(self.public_key, self.contracts, self.start_timestamp, self.duration_days)
        return verify_ed25519(self.public_key, self.signature, msg)


# =============================================================================
# SERVICE
# =============================================================================

@dataclass(frozen=True)
class _Admitted:
    ciphertext: Ciphertext
    contract: str


class LocalConfidentialService:
    """
    In-process confidential-computation service.

    Thread-safe. ``transaction()`` scopes admissions and capability grants so
    that a failed ledger write leaves neither behind.

    Sealed inputs wait in a pending map until admitted. At most
    ``max_pending_inputs`` wait at once; the oldest are dropped first.
    """

    def __init__(
        self,
        clock: Optional[Callable[[], int]] = None,
        max_decrypt_validity_days: int = DEFAULT_MAX_DECRYPT_VALIDITY_DAYS,
        key: Optional[bytes] = None,
        signer: Optional[InputProofSigner] = None,
        max_pending_inputs: int = DEFAULT_MAX_PENDING_INPUTS,
    ):
        self._clock = clock or _system_now
        self.max_decrypt_validity_days = max_decrypt_validity_days
        self.max_pending_inputs = max_pending_inputs
        self._aead = AESGCM(key or AESGCM.generate_key(bit_length=256))
        self._signer = signer or InputProofSigner()
        self.verifier = InputProofVerifier(self._signer.public_key)
        self.acl = CapabilityList()
        self._inputs: "OrderedDict[str, Ciphertext]" = OrderedDict()
        self._admitted: Dict[str, _Admitted] = {}
        self._admitted_by_input: Dict[str, str] = {}
        self._admission_journal: Optional[List[str]] = None
        self._lock = threading.RLock()

    @property
    def input_verifier_key(self) -> bytes:
        return self._signer.public_key

    def now(self) -> int:
        return self._clock()

    # ------------------------------------------------------------------
    # Client side
    # ------------------------------------------------------------------

    def create_encrypted_input(self, contract: str, submitter: str) -> EncryptedInput:
        return EncryptedInput(self, contract, submitter)

    def _seal_inputs(
        self,
        binding: ContextBinding,
        values: Sequence[Tuple[CiphertextType, int]],
    ) -> EncryptedInputBundle:
        handles: List[str] = []
        types: List[CiphertextType] = []
        with self._lock:
            for ctype, value in values:
                nonce = os.urandom(12)
                aad = jcs_canonicalize({"binding": binding.to_dict(), "type": ctype.value})
                sealed = self._aead.encrypt(nonce, value.to_bytes(4, "big"), aad)
                handle = "0x" + hashlib.sha256(nonce + sealed + aad).hexdigest()
                self._inputs[handle] = Ciphertext(handle, ctype, binding, nonce, sealed)
                handles.append(handle)
                types.append(ctype)
            evicted = 0
            while len(self._inputs) > self.max_pending_inputs:
                self._inputs.popitem(last=False)
                evicted += 1
        if evicted:
            logger.debug("Dropped unadmitted inputs", count=evicted, pending=self.max_pending_inputs)
        proof = self._signer.sign(handles, types, binding)
        logger.debug("Sealed encrypted inputs", count=len(handles), submitter=binding.submitter)
        return EncryptedInputBundle(handles=handles, input_proof=proof)

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def verify_and_admit(
        self,
        external_handle: str,
        proof: Optional[InputProof],
        binding: ContextBinding,
        expected_type: Optional[CiphertextType] = None,
    ) -> str:
        """Admit one externally encrypted value; return its internal handle."""
        return self.verify_and_admit_batch([external_handle], proof, binding, expected_type)[0]

    def verify_and_admit_batch(
        self,
        external_handles: Sequence[str],
        proof: Optional[InputProof],
        binding: ContextBinding,
        expected_type: Optional[CiphertextType] = None,
    ) -> List[str]:
        """Admit a batch sharing one proof. The batch fails as a unit."""
        self.verifier.check(proof, external_handles, binding, expected_type)
        with self._lock:
            ciphertexts = []
            for handle in external_handles:
                ct = self._pending_or_admitted(handle)
                if ct is None:
                    raise ProofVerificationError("Unknown ciphertext handle", handle=handle)
                if ct.binding != binding:
                    raise ProofVerificationError(
                        "Ciphertext is bound to a different contract or submitter",
                        handle=handle,
                    )
                ciphertexts.append(ct)
            return [self._admit(ct, binding.contract) for ct in ciphertexts]

    def _pending_or_admitted(self, handle: str) -> Optional[Ciphertext]:
        internal = self._admitted_by_input.get(handle)
        if internal is not None:
            return self._admitted[internal].ciphertext
        return self._inputs.get(handle)

    def _admit(self, ct: Ciphertext, contract: str) -> str:
        internal = "0x" + hashlib.sha256(
            b"cargoflow.admitted:" + contract.encode("utf-8") + ct.handle.encode("utf-8")
        ).hexdigest()
        if internal not in self._admitted:
            self._admitted[internal] = _Admitted(ct, contract)
            self._admitted_by_input[ct.handle] = internal
            self._inputs.pop(ct.handle, None)
            if self._admission_journal is not None:
                self._admission_journal.append(internal)
        return internal

    def is_admitted(self, handle: str) -> bool:
        with self._lock:
            return handle in self._admitted

    @property
    def pending_input_count(self) -> int:
        with self._lock:
            return len(self._inputs)

    def ciphertext_type(self, handle: str) -> Optional[CiphertextType]:
        with self._lock:
            admitted = self._admitted.get(handle)
        return admitted.ciphertext.ctype if admitted else None

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    def grant_decrypt_capability(self, handle: str, holder: str) -> None:
        """Additive and idempotent."""
        with self._lock:
            if handle not in self._admitted:
                raise ValueError(f"cannot grant on unknown handle {handle}")
            if self.acl.grant(handle, holder):
                logger.debug("Granted decrypt capability", handle=handle, holder=holder.lower())

    def is_allowed(self, handle: str, holder: str) -> bool:
        return self.acl.is_allowed(handle, holder)

    # ------------------------------------------------------------------
    # Decryption
    # ------------------------------------------------------------------

    def decrypt_on_behalf_of(
        self,
        handle: str,
        holder: str,
        authorization: DecryptAuthorization,
    ) -> int:
        """Decrypt ``handle`` for ``holder``; raise ``Unauthorized`` otherwise."""
        return self.decrypt_many_on_behalf_of([handle], holder, authorization)[0]

    def decrypt_many_on_behalf_of(
        self,
        handles: Sequence[str],
        holder: str,
        authorization: DecryptAuthorization,
    ) -> List[int]:
        holder = holder.lower()
        self._check_authorization(holder, authorization)
        out: List[int] = []
        with self._lock:
            for handle in handles:
                admitted = self._admitted.get(handle)
                if admitted is None:
                    raise Unauthorized("Unknown ciphertext handle", handle=handle)
                if admitted.contract not in authorization.contracts:
                    raise Unauthorized(
                        "Authorization does not cover the owning contract",
                        handle=handle,
                        contract=admitted.contract,
                    )
                if not self.acl.is_allowed(handle, holder):
                    raise Unauthorized("Holder lacks decrypt capability", handle=handle, holder=holder)
                if not self.acl.is_allowed(handle, admitted.contract):
                    raise Unauthorized("Contract lacks decrypt capability", handle=handle)
                out.append(self._open(admitted.ciphertext))
        logger.info("Decrypted on behalf of holder", holder=holder, count=len(out))
        return out

    def _check_authorization(self, holder: str, authorization: DecryptAuthorization) -> None:
        if authorization.holder != holder:
            raise Unauthorized("Authorization signed by a different identity", holder=holder)
        if not authorization.signature_valid():
            raise Unauthorized("Authorization signature not verified", holder=holder)
        if not 0 < authorization.duration_days <= self.max_decrypt_validity_days:
            raise Unauthorized(
                "Authorization validity period out of range",
                duration_days=authorization.duration_days,
                max_days=self.max_decrypt_validity_days,
            )
        now = self.now()
        if not authorization.start_timestamp <= now <= authorization.expires_at:
            raise Unauthorized(
                "Authorization outside its validity window",
                now=now,
                start=authorization.start_timestamp,
                expires=authorization.expires_at,
            )

    def _open(self, ct: Ciphertext) -> int:
        try:
            plaintext = self._aead.decrypt(ct.nonce, ct.sealed, ct.aad())
        except InvalidTag as e:
            raise Unauthorized("Ciphertext failed authentication", handle=ct.handle) from e
        return int.from_bytes(plaintext, "big")

    # ------------------------------------------------------------------
    # Transaction scope
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator["LocalConfidentialService"]:
        """Roll back admissions and grants made inside the scope if it raises."""
        with self._lock:
            if self._admission_journal is not None:
                with self.acl.staged():
                    yield self
                return
            self._admission_journal = []
            try:
                with self.acl.staged():
                    yield self
            except BaseException:
                for internal in reversed(self._admission_journal):
                    admitted = self._admitted.pop(internal, None)
                    if admitted is not None:
                        self._admitted_by_input.pop(admitted.ciphertext.handle, None)
                        self._inputs[admitted.ciphertext.handle] = admitted.ciphertext
                raise
            finally:
                self._admission_journal = None
