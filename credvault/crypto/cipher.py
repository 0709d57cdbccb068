"""Vault encryption: AES-256-GCM under a key derived from the holder's private key.

Key derivation: HKDF-SHA256(ikm=private key, salt=KDF_SALT, info=KDF_INFO),
32-byte output. The same derivation is used for every vault operation; the
raw private key is never used as a cipher key.

Each encryption draws a fresh 96-bit nonce from the OS random source. The
envelope header (version, algorithm, kdf, nonce) is bound as associated
data, so tampering with any part of the envelope fails authentication.
"""

from __future__ import annotations

import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from credvault.core.models import EncryptedEnvelope
from credvault.exceptions import DecryptionError, EntropyError, SigningKeyError

KEY_LENGTH = 32
NONCE_LENGTH = 12
KDF_SALT = b"credvault/vault-salt/v1"
KDF_INFO = b"credvault/vault-key/v1"
ALGORITHM = "AES-256-GCM"
KDF = "HKDF-SHA256"
ENVELOPE_VERSION = 1


def derive_key(private_key_material: bytes) -> bytes:
    """Derive the 32-byte vault key from the holder's private key."""
    if not isinstance(private_key_material, (bytes, bytearray)) or not private_key_material:
        raise SigningKeyError("Private key material must be non-empty bytes")
    return HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=KDF_SALT,
        info=KDF_INFO,
    ).derive(bytes(private_key_material))


def _check_key(key: bytes) -> None:
    if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_LENGTH:
        raise DecryptionError(f"Vault key must be {KEY_LENGTH} bytes")


def encrypt(plaintext: bytes, key: bytes) -> EncryptedEnvelope:
    """Encrypt *plaintext* into a fresh envelope."""
    _check_key(key)
    try:
        nonce = os.urandom(NONCE_LENGTH)
    except NotImplementedError as exc:
        raise EntropyError("Random source unavailable for nonce generation") from exc

    shell = EncryptedEnvelope(
        version=ENVELOPE_VERSION,
        algorithm=ALGORITHM,
        kdf=KDF,
        nonce=nonce,
        ciphertext=b"",
    )
    ciphertext = AESGCM(bytes(key)).encrypt(nonce, plaintext, shell.header())
    return shell.model_copy(update={"ciphertext": ciphertext})


def decrypt(envelope: EncryptedEnvelope, key: bytes) -> bytes:
    """Authenticate and decrypt *envelope*.

    Wrong key and tampered data both raise the same DecryptionError.
    """
    _check_key(key)
    if (
        envelope.version != ENVELOPE_VERSION
        or envelope.algorithm != ALGORITHM
        or envelope.kdf != KDF
        or len(envelope.nonce) != NONCE_LENGTH
    ):
        raise DecryptionError("Unsupported envelope parameters")
    try:
        return AESGCM(bytes(key)).decrypt(envelope.nonce, envelope.ciphertext, envelope.header())
    except InvalidTag as exc:
        raise DecryptionError("Decryption failed: wrong key or corrupted data") from exc
