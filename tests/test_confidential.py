"""
Confidential field tests: input proofs, admission, capability grants,
decrypt authorization and transactional rollback.

Copyright (c) 2026 Momentum. All rights reserved.
"""

import pytest

from cargoflow.acl import CapabilityList
from cargoflow.errors import InvalidField, ProofVerificationError, Unauthorized
from cargoflow.fhe import DecryptAuthorization, LocalConfidentialService
from cargoflow.identity import Account
from cargoflow.importer import ConfidentialFieldImporter
from cargoflow.models import EncryptedFields
from cargoflow.zkp import CiphertextType, ContextBinding, InputProof, InputProofSigner, InputProofVerifier


STORE = "0x" + "5" * 40
OTHER_STORE = "0x" + "6" * 40


@pytest.fixture
def importer(service):
    return ConfidentialFieldImporter(service, STORE)


def _auth(account, clock, contracts=(STORE,), days=1, start=None):
    return DecryptAuthorization.create(account, list(contracts), clock.now() if start is None else start, days)


# =============================================================================
# INPUT PROOFS
# =============================================================================

class TestInputProofs:

    def test_sign_and_verify(self):
        signer = InputProofSigner()
        binding = ContextBinding(STORE, "0x" + "a" * 40)
        handles = ["0x" + "1" * 64, "0x" + "2" * 64]
        proof = signer.sign(handles, [CiphertextType.EUINT8] * 2, binding)
        verifier = InputProofVerifier(signer.public_key)
        assert verifier.verify(proof, handles, binding, CiphertextType.EUINT8)

    def test_proof_must_cover_exact_handle_set(self):
        signer = InputProofSigner()
        binding = ContextBinding(STORE, "0x" + "a" * 40)
        handles = ["0x" + "1" * 64, "0x" + "2" * 64]
        proof = signer.sign(handles, [CiphertextType.EUINT8] * 2, binding)
        verifier = InputProofVerifier(signer.public_key)
        assert not verifier.verify(proof, handles[:1], binding)
        assert not verifier.verify(proof, handles + ["0x" + "3" * 64], binding)
        assert not verifier.verify(proof, list(reversed(handles)), binding)

    def test_wrong_type_rejected(self):
        signer = InputProofSigner()
        binding = ContextBinding(STORE, "0x" + "a" * 40)
        proof = signer.sign(["0x" + "1" * 64], [CiphertextType.EUINT8], binding)
        with pytest.raises(ProofVerificationError, match="euint32"):
            InputProofVerifier(signer.public_key).check(
                proof, ["0x" + "1" * 64], binding, CiphertextType.EUINT32
            )

    def test_binding_mismatch_rejected(self):
        signer = InputProofSigner()
        binding = ContextBinding(STORE, "0x" + "a" * 40)
        proof = signer.sign(["0x" + "1" * 64], [CiphertextType.EUINT32], binding)
        other = ContextBinding(STORE, "0x" + "b" * 40)
        with pytest.raises(ProofVerificationError, match="different contract or submitter"):
            InputProofVerifier(signer.public_key).check(proof, ["0x" + "1" * 64], other)

    def test_foreign_signer_rejected(self):
        binding = ContextBinding(STORE, "0x" + "a" * 40)
        proof = InputProofSigner().sign(["0x" + "1" * 64], [CiphertextType.EUINT32], binding)
        verifier = InputProofVerifier(InputProofSigner().public_key)
        with pytest.raises(ProofVerificationError, match="signature"):
            verifier.check(proof, ["0x" + "1" * 64], binding)

    def test_missing_proof(self):
        verifier = InputProofVerifier(InputProofSigner().public_key)
        with pytest.raises(ProofVerificationError, match="Missing"):
            verifier.check(None, ["0x" + "1" * 64], ContextBinding(STORE, STORE))

    def test_dict_round_trip_keeps_digest(self):
        binding = ContextBinding(STORE, "0x" + "a" * 40)
        proof = InputProofSigner().sign(["0x" + "1" * 64], [CiphertextType.EUINT32], binding)
        restored = InputProof.from_dict(proof.to_dict())
        assert restored.digest == proof.digest

    def test_binding_is_case_insensitive(self):
        assert ContextBinding(STORE.upper().replace("0X", "0x"), "0xAB" + "0" * 38) == \
            ContextBinding(STORE, "0xab" + "0" * 38)


# =============================================================================
# ENCRYPTION AND ADMISSION
# =============================================================================

class TestEncryptedInput:

    def test_values_outside_type_rejected(self, service, alice):
        builder = service.create_encrypted_input(STORE, alice.address)
        with pytest.raises(ValueError):
            builder.add8(256)
        with pytest.raises(ValueError):
            builder.add32(1 << 32)
        with pytest.raises(ValueError):
            builder.add32(-1)

    def test_type_for_bit_width(self):
        assert CiphertextType.for_bits(32) is CiphertextType.EUINT32
        assert CiphertextType.for_bits(8) is CiphertextType.EUINT8
        with pytest.raises(ValueError):
            CiphertextType.for_bits(64)

    def test_empty_batch_rejected(self, service, alice):
        with pytest.raises(ValueError):
            service.create_encrypted_input(STORE, alice.address).encrypt()

    def test_one_proof_per_batch(self, service, alice):
        bundle = service.create_encrypted_input(STORE, alice.address).add8(1).add8(2).add8(3).encrypt()
        assert len(bundle.handles) == 3
        assert len(set(bundle.handles)) == 3
        assert bundle.input_proof.covers(bundle.handles)

    def test_equal_plaintexts_give_distinct_handles(self, service, alice):
        a = service.create_encrypted_input(STORE, alice.address).add32(7).encrypt()
        b = service.create_encrypted_input(STORE, alice.address).add32(7).encrypt()
        assert a.handles != b.handles


class TestAdmission:

    def test_admission_is_idempotent(self, service, alice):
        bundle = service.create_encrypted_input(STORE, alice.address).add32(10).encrypt()
        binding = ContextBinding(STORE, alice.address)
        first = service.verify_and_admit(bundle.handles[0], bundle.input_proof, binding)
        second = service.verify_and_admit(bundle.handles[0], bundle.input_proof, binding)
        assert first == second
        assert first != bundle.handles[0]

    def test_admission_releases_pending_input(self, service, alice):
        bundle = service.create_encrypted_input(STORE, alice.address).add32(10).add32(11).encrypt()
        assert service.pending_input_count == 2
        service.verify_and_admit_batch(bundle.handles, bundle.input_proof, ContextBinding(STORE, alice.address))
        assert service.pending_input_count == 0

    def test_pending_inputs_are_bounded(self, clock, alice):
        service = LocalConfidentialService(clock=clock.now, max_pending_inputs=3)
        oldest = service.create_encrypted_input(STORE, alice.address).add32(1).encrypt()
        for value in range(2, 5):
            service.create_encrypted_input(STORE, alice.address).add32(value).encrypt()
        assert service.pending_input_count == 3
        with pytest.raises(ProofVerificationError, match="Unknown ciphertext handle"):
            service.verify_and_admit(oldest.handles[0], oldest.input_proof, ContextBinding(STORE, alice.address))

    def test_unknown_handle_rejected(self, service, alice):
        binding = ContextBinding(STORE, alice.address)
        fake = "0x" + "f" * 64
        proof = InputProofSigner().sign([fake], [CiphertextType.EUINT32], binding)
        with pytest.raises(ProofVerificationError):
            service.verify_and_admit(fake, proof, binding)

    def test_handle_for_other_store_rejected(self, service, alice):
        bundle = service.create_encrypted_input(OTHER_STORE, alice.address).add32(10).encrypt()
        with pytest.raises(ProofVerificationError):
            service.verify_and_admit(
                bundle.handles[0], bundle.input_proof, ContextBinding(STORE, alice.address)
            )

    def test_grant_on_unadmitted_handle_rejected(self, service, alice):
        with pytest.raises(ValueError):
            service.grant_decrypt_capability("0x" + "0" * 64, alice.address)


# =============================================================================
# CAPABILITY LIST
# =============================================================================

class TestCapabilityList:

    def test_grant_is_idempotent(self):
        acl = CapabilityList()
        assert acl.grant("h", "0xABC")
        assert not acl.grant("h", "0xabc")
        assert len(acl) == 1
        assert acl.is_allowed("h", "0xAbC")

    def test_staged_grants_dropped_on_failure(self):
        acl = CapabilityList()
        acl.grant("kept", "u")
        with pytest.raises(RuntimeError):
            with acl.staged():
                acl.grant("h1", "u")
                acl.grant("kept", "v")
                raise RuntimeError("abort")
        assert not acl.is_allowed("h1", "u")
        assert not acl.is_allowed("kept", "v")
        assert acl.is_allowed("kept", "u")
        assert len(acl) == 1

    def test_staged_grants_kept_on_success(self):
        acl = CapabilityList()
        with acl.staged():
            acl.grant("h1", "u")
        assert acl.is_allowed("h1", "u")

    def test_nested_scope_folds_into_outer(self):
        acl = CapabilityList()
        with pytest.raises(RuntimeError):
            with acl.staged():
                with acl.staged():
                    acl.grant("h1", "u")
                raise RuntimeError("abort")
        assert not acl.is_allowed("h1", "u")


# =============================================================================
# IMPORTER
# =============================================================================

class TestImporter:

    def test_weight_grants_store_and_submitter(self, service, importer, alice, bob):
        bundle = service.create_encrypted_input(STORE, alice.address).add32(2_500_000).encrypt()
        handle = importer.import_weight(bundle.handles[0], bundle.input_proof, alice.address)
        assert service.is_allowed(handle, STORE)
        assert service.is_allowed(handle, alice.address)
        assert not service.is_allowed(handle, bob.address)

    def test_weight_requires_euint32(self, service, importer, alice):
        bundle = service.create_encrypted_input(STORE, alice.address).add8(5).encrypt()
        with pytest.raises(ProofVerificationError):
            importer.import_weight(bundle.handles[0], bundle.input_proof, alice.address)

    def test_weight_type_is_configurable(self, service, alice):
        narrow = ConfidentialFieldImporter(service, STORE, weight_type=CiphertextType.EUINT8)
        bundle = service.create_encrypted_input(STORE, alice.address).add8(200).encrypt()
        handle = narrow.import_weight(bundle.handles[0], bundle.input_proof, alice.address)
        assert service.is_allowed(handle, alice.address)

    @pytest.mark.parametrize("handle", ["0xprior", "0x" + "g" * 64, 42, None])
    def test_malformed_weight_handle(self, importer, alice, handle):
        with pytest.raises(InvalidField, match="ciphertext handle"):
            importer.import_weight(handle, None, alice.address)

    def test_malformed_contents_handle(self, service, importer, alice):
        bundle = service.create_encrypted_input(STORE, alice.address).add8(1).add8(2).encrypt()
        with pytest.raises(InvalidField, match="ciphertext handle"):
            importer.import_contents([bundle.handles[0], "0x1234"], bundle.input_proof, alice.address)
        assert not service.is_allowed(bundle.handles[0], alice.address)

    def test_submitter_must_match_binding(self, service, importer, alice, bob):
        bundle = service.create_encrypted_input(STORE, alice.address).add32(5).encrypt()
        with pytest.raises(ProofVerificationError):
            importer.import_weight(bundle.handles[0], bundle.input_proof, bob.address)

    def test_contents_batch(self, service, importer, alice):
        builder = service.create_encrypted_input(STORE, alice.address)
        for b in b"Electronics":
            builder.add8(b)
        bundle = builder.encrypt()
        handles = importer.import_contents(bundle.handles, bundle.input_proof, alice.address)
        assert len(handles) == len(b"Electronics")
        assert all(service.is_allowed(h, alice.address) for h in handles)
        assert all(service.is_allowed(h, STORE) for h in handles)

    def test_contents_partial_batch_fails_whole(self, service, importer, alice):
        bundle = service.create_encrypted_input(STORE, alice.address).add8(1).add8(2).encrypt()
        with pytest.raises(ProofVerificationError):
            importer.import_contents(bundle.handles[:1], bundle.input_proof, alice.address)
        assert len(service.acl) == 0

    def test_contents_length_bound(self, service, alice):
        importer = ConfidentialFieldImporter(service, STORE, max_contents_bytes=4)
        builder = service.create_encrypted_input(STORE, alice.address)
        for b in b"12345":
            builder.add8(b)
        bundle = builder.encrypt()
        with pytest.raises(InvalidField):
            importer.import_contents(bundle.handles, bundle.input_proof, alice.address)

    def test_empty_contents_grant_nothing(self, service, importer, alice):
        assert importer.import_contents([], None, alice.address) == ()
        assert len(service.acl) == 0

    def test_carried_weight_is_reused_without_grants(self, service, importer, alice):
        weight, contents = importer.import_fields(None, alice.address, carried_weight="0xprior")
        assert weight == "0xprior"
        assert contents == ()
        assert len(service.acl) == 0

    def test_import_fields_fresh_weight(self, service, importer, alice):
        bundle = service.create_encrypted_input(STORE, alice.address).add32(9).encrypt()
        fields = EncryptedFields(weight_handle=bundle.handles[0], weight_proof=bundle.input_proof)
        weight, _ = importer.import_fields(fields, alice.address, carried_weight="0xprior")
        assert weight != "0xprior"
        assert service.is_admitted(weight)


# =============================================================================
# DECRYPTION
# =============================================================================

class TestDecryption:

    def _admitted_weight(self, service, importer, account, grams):
        bundle = service.create_encrypted_input(STORE, account.address).add32(grams).encrypt()
        return importer.import_weight(bundle.handles[0], bundle.input_proof, account.address)

    def test_holder_decrypts(self, service, importer, clock, alice):
        handle = self._admitted_weight(service, importer, alice, 2_500_000)
        assert service.decrypt_on_behalf_of(handle, alice.address, _auth(alice, clock)) == 2_500_000

    def test_non_holder_unauthorized(self, service, importer, clock, alice, bob):
        handle = self._admitted_weight(service, importer, alice, 1)
        with pytest.raises(Unauthorized, match="lacks decrypt capability"):
            service.decrypt_on_behalf_of(handle, bob.address, _auth(bob, clock))

    def test_authorization_signed_by_someone_else(self, service, importer, clock, alice, bob):
        handle = self._admitted_weight(service, importer, alice, 1)
        with pytest.raises(Unauthorized, match="different identity"):
            service.decrypt_on_behalf_of(handle, alice.address, _auth(bob, clock))

    def test_tampered_authorization(self, service, importer, clock, alice):
        handle = self._admitted_weight(service, importer, alice, 1)
        auth = _auth(alice, clock)
        forged = DecryptAuthorization(
            public_key=auth.public_key,
            contracts=auth.contracts,
            start_timestamp=auth.start_timestamp,
            duration_days=auth.duration_days + 1,
            signature=auth.signature,
        )
        with pytest.raises(Unauthorized, match="signature"):
            service.decrypt_on_behalf_of(handle, alice.address, forged)

    def test_expired_authorization(self, service, importer, clock, alice):
        handle = self._admitted_weight(service, importer, alice, 1)
        auth = _auth(alice, clock, days=1)
        clock.advance(2 * 24 * 3600)
        with pytest.raises(Unauthorized, match="validity window"):
            service.decrypt_on_behalf_of(handle, alice.address, auth)

    def test_not_yet_valid_authorization(self, service, importer, clock, alice):
        handle = self._admitted_weight(service, importer, alice, 1)
        auth = _auth(alice, clock, start=clock.now() + 3600)
        with pytest.raises(Unauthorized, match="validity window"):
            service.decrypt_on_behalf_of(handle, alice.address, auth)

    def test_validity_period_capped(self, clock, alice):
        service = LocalConfidentialService(clock=clock.now, max_decrypt_validity_days=30)
        importer = ConfidentialFieldImporter(service, STORE)
        handle = self._admitted_weight(service, importer, alice, 1)
        with pytest.raises(Unauthorized, match="validity period"):
            service.decrypt_on_behalf_of(handle, alice.address, _auth(alice, clock, days=31))

    def test_authorization_must_name_owning_contract(self, service, importer, clock, alice):
        handle = self._admitted_weight(service, importer, alice, 1)
        with pytest.raises(Unauthorized, match="owning contract"):
            service.decrypt_on_behalf_of(handle, alice.address, _auth(alice, clock, contracts=(OTHER_STORE,)))

    def test_contract_capability_required(self, service, clock, alice):
        """A holder grant alone is not enough; the owning contract must hold one too."""
        bundle = service.create_encrypted_input(STORE, alice.address).add32(3).encrypt()
        handle = service.verify_and_admit(
            bundle.handles[0], bundle.input_proof, ContextBinding(STORE, alice.address)
        )
        service.grant_decrypt_capability(handle, alice.address)
        with pytest.raises(Unauthorized, match="Contract lacks"):
            service.decrypt_on_behalf_of(handle, alice.address, _auth(alice, clock))


# =============================================================================
# TRANSACTION SCOPE
# =============================================================================

class TestServiceTransaction:

    def test_rollback_removes_admissions_and_grants(self, service, importer, alice):
        bundle = service.create_encrypted_input(STORE, alice.address).add32(4).encrypt()
        with pytest.raises(RuntimeError):
            with service.transaction():
                handle = importer.import_weight(bundle.handles[0], bundle.input_proof, alice.address)
                assert service.is_admitted(handle)
                raise RuntimeError("write rejected")
        assert not service.is_admitted(handle)
        assert not service.is_allowed(handle, alice.address)
        assert len(service.acl) == 0
        assert service.pending_input_count == 1

    def test_rolled_back_input_can_be_resubmitted(self, service, importer, alice):
        bundle = service.create_encrypted_input(STORE, alice.address).add32(4).encrypt()
        with pytest.raises(RuntimeError):
            with service.transaction():
                importer.import_weight(bundle.handles[0], bundle.input_proof, alice.address)
                raise RuntimeError("write rejected")
        handle = importer.import_weight(bundle.handles[0], bundle.input_proof, alice.address)
        assert service.is_admitted(handle)
        assert service.pending_input_count == 0

    def test_commit_keeps_everything(self, service, importer, alice):
        bundle = service.create_encrypted_input(STORE, alice.address).add32(4).encrypt()
        with service.transaction():
            handle = importer.import_weight(bundle.handles[0], bundle.input_proof, alice.address)
        assert service.is_admitted(handle)
        assert service.is_allowed(handle, STORE)

    def test_rollback_keeps_earlier_grants(self, service, importer, alice):
        first = service.create_encrypted_input(STORE, alice.address).add32(1).encrypt()
        kept = importer.import_weight(first.handles[0], first.input_proof, alice.address)
        second = service.create_encrypted_input(STORE, alice.address).add32(2).encrypt()
        with pytest.raises(RuntimeError):
            with service.transaction():
                importer.import_weight(second.handles[0], second.input_proof, alice.address)
                raise RuntimeError("abort")
        assert service.is_allowed(kept, alice.address)
        assert service.is_allowed(kept, STORE)
