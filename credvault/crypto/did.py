"""Ed25519 did:key identities and DID resolution using PyNaCl.

DID Method: did:key:z6Mk<base58-encoded-multicodec-public-key>
Address: 0x + first 20 bytes of sha256(public key), hex.

Both values are recomputed from the public key alone, so an identity can be
rebuilt from a backed-up 32-byte private seed.
"""

from __future__ import annotations

import hashlib
import logging

from nacl.exceptions import CryptoError
from nacl.signing import SigningKey

from credvault.core.models import DID_PATTERN, Identity
from credvault.exceptions import (
    EntropyError,
    NotFoundError,
    SigningKeyError,
    VerificationInputError,
)

logger = logging.getLogger("credvault.crypto.did")

# Base58 alphabet (Bitcoin variant)
_B58_ALPHABET = b"123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"

# Ed25519-pub multicodec prefix: 0xed01
_ED25519_MULTICODEC_PREFIX = b"\xed\x01"

PUBLIC_KEY_LENGTH = 32
PRIVATE_KEY_LENGTH = 32
ADDRESS_BYTES = 20


def _base58_encode(data: bytes) -> str:
    """Encode bytes to base58 (Bitcoin alphabet)."""
    n_leading = 0
    for byte in data:
        if byte == 0:
            n_leading += 1
        else:
            break

    num = int.from_bytes(data, "big")

    result = bytearray()
    while num > 0:
        num, remainder = divmod(num, 58)
        result.append(_B58_ALPHABET[remainder])
    result.reverse()

    return ("1" * n_leading) + result.decode("ascii")


def _base58_decode(s: str) -> bytes:
    """Decode base58 string to bytes. Raises ValueError on foreign characters."""
    n_leading = 0
    for ch in s:
        if ch == "1":
            n_leading += 1
        else:
            break

    num = 0
    for ch in s:
        idx = _B58_ALPHABET.find(ch.encode("ascii", errors="replace"))
        if idx < 0:
            raise ValueError(f"invalid base58 character {ch!r}")
        num = num * 58 + idx

    if num == 0:
        result = b""
    else:
        result = num.to_bytes((num.bit_length() + 7) // 8, "big")

    return b"\x00" * n_leading + result


def is_did(value: object) -> bool:
    return isinstance(value, str) and DID_PATTERN.match(value) is not None


def did_from_public_key(public_key: bytes) -> str:
    """Return the did:key identifier for a raw Ed25519 public key."""
    if len(public_key) != PUBLIC_KEY_LENGTH:
        msg = f"Ed25519 public key must be {PUBLIC_KEY_LENGTH} bytes, got {len(public_key)}"
        raise ValueError(msg)
    raw = _ED25519_MULTICODEC_PREFIX + bytes(public_key)
    return f"did:key:z{_base58_encode(raw)}"


def address_from_public_key(public_key: bytes) -> str:
    """Short fingerprint of the public key: truncated sha256, hex with 0x prefix."""
    if len(public_key) != PUBLIC_KEY_LENGTH:
        msg = f"Ed25519 public key must be {PUBLIC_KEY_LENGTH} bytes, got {len(public_key)}"
        raise ValueError(msg)
    return "0x" + hashlib.sha256(public_key).digest()[:ADDRESS_BYTES].hex()


def public_key_from_did_key(did: str) -> bytes:
    """Extract the Ed25519 public key embedded in a did:key identifier."""
    if not did.startswith("did:key:z"):
        raise ValueError(f"not a base58btc did:key: {did!r}")
    raw = _base58_decode(did[len("did:key:z"):])
    if not raw.startswith(_ED25519_MULTICODEC_PREFIX):
        raise ValueError("did:key does not carry an Ed25519 multicodec prefix")
    key = raw[len(_ED25519_MULTICODEC_PREFIX):]
    if len(key) != PUBLIC_KEY_LENGTH:
        raise ValueError("did:key public key has the wrong length")
    return key


def _identity_from_signing_key(signing_key: SigningKey) -> Identity:
    public_key = bytes(signing_key.verify_key)
    return Identity(
        did=did_from_public_key(public_key),
        public_key=public_key,
        private_key=bytes(signing_key),
        address=address_from_public_key(public_key),
    )


def generate() -> Identity:
    """Generate a fresh Ed25519 identity from the OS random source."""
    try:
        signing_key = SigningKey.generate()
    except (OSError, CryptoError) as exc:
        raise EntropyError(f"Random source unavailable: {exc}") from exc
    identity = _identity_from_signing_key(signing_key)
    logger.info("Generated identity %s", identity.did)
    return identity


def from_private_key(private_key: bytes) -> Identity:
    """Rebuild an identity from its 32-byte private seed (backup recovery)."""
    if not isinstance(private_key, (bytes, bytearray)) or len(private_key) != PRIVATE_KEY_LENGTH:
        raise SigningKeyError(f"Ed25519 private key must be {PRIVATE_KEY_LENGTH} bytes")
    return _identity_from_signing_key(SigningKey(bytes(private_key)))


class DIDResolver:
    """Resolves a DID to the Ed25519 public key that controls it.

    ``did:key`` identifiers are self-certifying and resolve from the DID
    itself. Any other method must be bound explicitly with :meth:`register`.
    """

    def __init__(self) -> None:
        self._bindings: dict[str, bytes] = {}

    def register(self, did: str, public_key: bytes) -> None:
        if not is_did(did):
            raise VerificationInputError(f"Not a DID: {did!r}")
        if len(public_key) != PUBLIC_KEY_LENGTH:
            raise VerificationInputError("Ed25519 public key must be 32 bytes")
        self._bindings[did] = bytes(public_key)

    def resolve(self, did: str) -> bytes:
        if not is_did(did):
            raise VerificationInputError(f"Not a DID: {did!r}")
        bound = self._bindings.get(did)
        if bound is not None:
            return bound
        if did.startswith("did:key:"):
            try:
                return public_key_from_did_key(did)
            except ValueError as exc:
                raise NotFoundError(f"Cannot resolve {did}: {exc}") from exc
        raise NotFoundError(f"No public key bound for {did}")

    def resolve_document(self, did: str) -> dict:
        """Resolve DID to a minimal W3C DID Document."""
        public_key = self.resolve(did)
        vm_id = f"{did}#{did.split(':')[-1]}"
        return {
            "@context": [
                "https://www.w3.org/ns/did/v1",
                "https://w3id.org/security/suites/ed25519-2020/v1",
            ],
            "id": did,
            "verificationMethod": [
                {
                    "id": vm_id,
                    "type": "Ed25519VerificationKey2020",
                    "controller": did,
                    "publicKeyMultibase": f"z{_base58_encode(public_key)}",
                },
            ],
            "authentication": [vm_id],
            "assertionMethod": [vm_id],
        }
