"""Tests for Ed25519 credential signatures."""

import pytest

from credvault.core.models import Signature
from credvault.crypto import did as key_identity
from credvault.crypto import vc
from credvault.crypto.did import DIDResolver
from credvault.exceptions import NotFoundError, SigningKeyError, VerificationInputError

MESSAGE = b'{"issuer":"did:example:u","type":["VerifiableCredential"]}'


@pytest.fixture
def issuer_identity():
    return key_identity.from_private_key(b"\x11" * 32)


class TestSign:
    def test_signature_shape(self, issuer_identity):
        sig = vc.sign(MESSAGE, issuer_identity.private_key)
        assert sig.algorithm == "Ed25519"
        assert len(sig.value) == 64
        assert sig.signer == issuer_identity.did

    def test_deterministic(self, issuer_identity):
        a = vc.sign(MESSAGE, issuer_identity.private_key)
        b = vc.sign(MESSAGE, issuer_identity.private_key)
        assert a.value == b.value

    def test_explicit_signer(self, issuer_identity):
        sig = vc.sign(MESSAGE, issuer_identity.private_key, signer="did:example:u")
        assert sig.signer == "did:example:u"

    def test_bad_key_length(self):
        with pytest.raises(SigningKeyError):
            vc.sign(MESSAGE, b"\x00" * 16)


class TestVerify:
    def test_valid_with_public_key(self, issuer_identity):
        sig = vc.sign(MESSAGE, issuer_identity.private_key)
        assert vc.verify(MESSAGE, sig, issuer_identity.public_key) is True

    def test_valid_with_did(self, issuer_identity):
        sig = vc.sign(MESSAGE, issuer_identity.private_key)
        assert vc.verify(MESSAGE, sig, issuer_identity.did) is True

    def test_registered_did(self, issuer_identity):
        resolver = DIDResolver()
        resolver.register("did:example:u", issuer_identity.public_key)
        sig = vc.sign(MESSAGE, issuer_identity.private_key, signer="did:example:u")
        assert vc.verify(MESSAGE, sig, "did:example:u", resolver) is True

    def test_every_single_byte_tamper_fails(self, issuer_identity):
        sig = vc.sign(MESSAGE, issuer_identity.private_key)
        for i in range(len(MESSAGE)):
            tampered = bytearray(MESSAGE)
            tampered[i] ^= 0x01
            assert vc.verify(bytes(tampered), sig, issuer_identity.public_key) is False

    def test_tampered_signature_fails(self, issuer_identity):
        sig = vc.sign(MESSAGE, issuer_identity.private_key)
        value = bytearray(sig.value)
        value[0] ^= 0xFF
        forged = sig.model_copy(update={"value": bytes(value)})
        assert vc.verify(MESSAGE, forged, issuer_identity.public_key) is False

    def test_wrong_key_fails(self, issuer_identity):
        other = key_identity.from_private_key(b"\x22" * 32)
        sig = vc.sign(MESSAGE, issuer_identity.private_key)
        assert vc.verify(MESSAGE, sig, other.public_key) is False

    def test_signer_must_match_issuer_did(self, issuer_identity):
        other = key_identity.from_private_key(b"\x22" * 32)
        sig = vc.sign(MESSAGE, other.private_key)
        assert vc.verify(MESSAGE, sig, issuer_identity.did) is False

    def test_short_signature_is_input_error(self, issuer_identity):
        sig = Signature(signer=issuer_identity.did, value=b"\x00" * 10)
        with pytest.raises(VerificationInputError):
            vc.verify(MESSAGE, sig, issuer_identity.public_key)

    def test_unknown_algorithm(self, issuer_identity):
        sig = Signature(algorithm="RSA", signer=issuer_identity.did, value=b"\x00" * 64)
        with pytest.raises(VerificationInputError):
            vc.verify(MESSAGE, sig, issuer_identity.public_key)

    def test_bad_public_key_length(self, issuer_identity):
        sig = vc.sign(MESSAGE, issuer_identity.private_key)
        with pytest.raises(VerificationInputError):
            vc.verify(MESSAGE, sig, b"\x00" * 31)

    def test_issuer_not_a_did(self, issuer_identity):
        sig = vc.sign(MESSAGE, issuer_identity.private_key)
        with pytest.raises(VerificationInputError):
            vc.verify(MESSAGE, sig, "university")

    def test_unresolvable_issuer(self, issuer_identity):
        sig = vc.sign(MESSAGE, issuer_identity.private_key, signer="did:example:u")
        with pytest.raises(NotFoundError):
            vc.verify(MESSAGE, sig, "did:example:u")
