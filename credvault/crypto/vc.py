"""Ed25519 signatures over canonical credential bytes (PyNaCl/libsodium).

Proof type: Ed25519 over the exact output of ``codec.canonicalize``.
Verification resolves the issuer's public key explicitly; a signature is
only accepted when it checks out cryptographically against that key.
"""

from __future__ import annotations

import logging

from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from credvault.core.models import Signature
from credvault.crypto.did import (
    PRIVATE_KEY_LENGTH,
    PUBLIC_KEY_LENGTH,
    DIDResolver,
    did_from_public_key,
    is_did,
)
from credvault.exceptions import SigningKeyError, VerificationInputError

logger = logging.getLogger("credvault.crypto.vc")

ALGORITHM = "Ed25519"
SIGNATURE_LENGTH = 64


def sign(canonical_bytes: bytes, issuer_private_key: bytes, signer: str | None = None) -> Signature:
    """Produce an Ed25519 signature over *canonical_bytes*.

    ``signer`` defaults to the did:key of the signing key.
    """
    if (
        not isinstance(issuer_private_key, (bytes, bytearray))
        or len(issuer_private_key) != PRIVATE_KEY_LENGTH
    ):
        raise SigningKeyError(f"Ed25519 private key must be {PRIVATE_KEY_LENGTH} bytes")
    signing_key = SigningKey(bytes(issuer_private_key))
    if signer is None:
        signer = did_from_public_key(bytes(signing_key.verify_key))
    # SignedMessage contains sig + message; .signature is just the 64-byte sig
    value = signing_key.sign(canonical_bytes).signature
    return Signature(algorithm=ALGORITHM, signer=signer, value=value)


def verify(
    canonical_bytes: bytes,
    signature: Signature,
    issuer: bytes | str,
    resolver: DIDResolver | None = None,
) -> bool:
    """Verify *signature* over *canonical_bytes* against the claimed issuer.

    ``issuer`` is a raw 32-byte Ed25519 public key or a DID. A DID is
    resolved to its public key first, and the signature's signer must name
    that DID. Returns False for any cryptographic mismatch; raises
    VerificationInputError only for structurally invalid inputs and
    NotFoundError when the issuer DID cannot be resolved.
    """
    if signature.algorithm != ALGORITHM:
        raise VerificationInputError(f"Unsupported signature algorithm: {signature.algorithm!r}")
    if len(signature.value) != SIGNATURE_LENGTH:
        raise VerificationInputError(
            f"Ed25519 signature must be {SIGNATURE_LENGTH} bytes, got {len(signature.value)}"
        )

    if isinstance(issuer, str):
        if not is_did(issuer):
            raise VerificationInputError(f"Issuer is not a DID: {issuer!r}")
        public_key = (resolver or DIDResolver()).resolve(issuer)
        if signature.signer != issuer:
            logger.debug("Signature signer %s does not match issuer %s", signature.signer, issuer)
            return False
    elif isinstance(issuer, (bytes, bytearray)):
        public_key = bytes(issuer)
        if len(public_key) != PUBLIC_KEY_LENGTH:
            raise VerificationInputError(f"Ed25519 public key must be {PUBLIC_KEY_LENGTH} bytes")
    else:
        raise VerificationInputError("Issuer must be a public key or a DID")

    try:
        VerifyKey(public_key).verify(canonical_bytes, signature.value)
        return True
    except BadSignatureError:
        return False
