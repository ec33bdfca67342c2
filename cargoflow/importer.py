"""
Confidential field importer.

Turns client-encrypted candidate values (external handles plus an input proof)
into ciphertext handles the record store may keep, and extends the decrypt
capability list for the store and the submitter on every import. There is no
revoke here; capabilities only grow.
"""

from __future__ import annotations

from typing import Optional, Sequence, Tuple

from cargoflow.errors import InvalidField
from cargoflow.fhe import LocalConfidentialService
from cargoflow.hardening import Validators
from cargoflow.models import EncryptedFields
from cargoflow.observability import CargoLayer, get_logger
from cargoflow.zkp import CiphertextType, ContextBinding, InputProof

logger = get_logger("importer", CargoLayer.CONFIDENTIAL)

DEFAULT_MAX_CONTENTS_BYTES = 64


class ConfidentialFieldImporter:
    """Admits encrypted weight and contents on behalf of one record store."""

    def __init__(
        self,
        service: LocalConfidentialService,
        store_identity: str,
        max_contents_bytes: int = DEFAULT_MAX_CONTENTS_BYTES,
        weight_type: CiphertextType = CiphertextType.EUINT32,
    ):
        self.service = service
        self.store_identity = store_identity.lower()
        self.max_contents_bytes = max_contents_bytes
        self.weight_type = weight_type

    def binding_for(self, submitter: str) -> ContextBinding:
        return ContextBinding(self.store_identity, submitter)

    @staticmethod
    def _check_handles(handles: Sequence[str], field_name: str) -> None:
        for handle in handles:
            Validators.validate_handle(handle, field_name).raise_if_invalid(InvalidField)

    def _grant_store_and_submitter(self, handle: str, submitter: str) -> None:
        self.service.grant_decrypt_capability(handle, self.store_identity)
        self.service.grant_decrypt_capability(handle, submitter)

    def import_weight(
        self,
        external_handle: str,
        proof: Optional[InputProof],
        submitter: str,
    ) -> str:
        """Admit an encrypted weight of ``weight_type``; return the handle to store."""
        self._check_handles([external_handle], "weight_handle")
        internal = self.service.verify_and_admit(
            external_handle, proof, self.binding_for(submitter), self.weight_type,
        )
        self._grant_store_and_submitter(internal, submitter)
        logger.debug("Imported encrypted weight", handle=internal, submitter=submitter.lower())
        return internal

    def import_contents(
        self,
        external_handles: Sequence[str],
        proof: Optional[InputProof],
        submitter: str,
    ) -> Tuple[str, ...]:
        """Admit one-byte ciphertexts sharing a single proof.

        The whole batch fails if the proof does not cover exactly these handles.
        """
        if not external_handles:
            return ()
        if len(external_handles) > self.max_contents_bytes:
            raise InvalidField(
                f"Contents cannot exceed {self.max_contents_bytes} bytes",
                field="encrypted_contents",
                length=len(external_handles),
            )
        self._check_handles(external_handles, "contents_handles")
        internals = self.service.verify_and_admit_batch(
            list(external_handles), proof, self.binding_for(submitter), CiphertextType.EUINT8,
        )
        for handle in internals:
            self._grant_store_and_submitter(handle, submitter)
        logger.debug("Imported encrypted contents", length=len(internals), submitter=submitter.lower())
        return tuple(internals)

    def import_fields(
        self,
        fields: Optional[EncryptedFields],
        submitter: str,
        carried_weight: Optional[str] = None,
    ) -> Tuple[Optional[str], Tuple[str, ...]]:
        """Resolve the (weight, contents) handles for a new event.

        Without fresh weight the ``carried_weight`` handle is reused as is: no
        admission, no new grant. Contents are never carried.
        """
        weight = carried_weight
        contents: Tuple[str, ...] = ()
        if fields is not None and fields.has_weight:
            weight = self.import_weight(fields.weight_handle, fields.weight_proof, submitter)
        if fields is not None and fields.has_contents:
            contents = self.import_contents(fields.contents_handles, fields.contents_proof, submitter)
        return weight, contents
