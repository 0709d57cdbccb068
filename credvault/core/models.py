"""Domain models for the credential vault.

- Identity: holder keypair with its derived DID and address
- CredentialDocument: the logical credential the issuer signs
- Signature: Ed25519 signature bound to one canonical document serialization
- EncryptedEnvelope: AES-256-GCM ciphertext plus its decryption parameters
- VaultRecord: the holder's local index entry for a published credential
- VerificationReport: outcome of the Verify protocol
"""

from __future__ import annotations

import base64
import json
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from credvault.exceptions import DecryptionError

DID_PATTERN = re.compile(r"^did:[a-z0-9]+:[A-Za-z0-9._%:-]+$")
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
BASE_CREDENTIAL_TYPE = "VerifiableCredential"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def canonical_json(data: dict[str, Any]) -> str:
    """Deterministic JSON serialization (sorted keys, no whitespace)."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    """Parse the fixed ``YYYY-MM-DDTHH:MM:SSZ`` form; raises ValueError otherwise."""
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def b64decode(data: str) -> bytes:
    return base64.b64decode(data.encode("ascii"), validate=True)


def _normalize_timestamp(value: datetime) -> datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).replace(microsecond=0)


def _check_text(value: str, path: str) -> None:
    try:
        value.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise ValueError(f"claim {path} is not encodable as UTF-8") from exc


def _check_claim_value(value: Any, path: str) -> None:
    if isinstance(value, str):
        _check_text(value, path)
        return
    if value is None or isinstance(value, (bool, int)):
        return
    if isinstance(value, float):
        raise ValueError(f"claim {path} is a float; encode it as a string or integer")
    if isinstance(value, list):
        for i, item in enumerate(value):
            _check_claim_value(item, f"{path}[{i}]")
        return
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValueError(f"claim {path} has a non-string key")
            _check_text(key, f"{path} key")
            _check_claim_value(item, f"{path}.{key}")
        return
    raise ValueError(f"claim {path} has unsupported type {type(value).__name__}")


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class LifecycleState(str, Enum):
    IDLE = "idle"
    # Issue path
    REQUESTED = "requested"
    SIGNED = "signed"
    ENCRYPTED = "encrypted"
    PUBLISHED = "published"
    DONE = "done"
    # Verify path
    FETCHING = "fetching"
    DECRYPTING = "decrypting"
    VALIDATING = "validating"
    VERIFIED = "verified"
    REJECTED = "rejected"
    FAILED = "failed"


class RejectionReason(str, Enum):
    SIGNATURE_MISMATCH = "SignatureMismatch"
    UNRESOLVABLE_ISSUER = "UnresolvableIssuer"
    MISSING_SIGNATURE = "MissingSignature"
    ISSUER_MISMATCH = "IssuerMismatch"
    SUBJECT_MISMATCH = "SubjectMismatch"


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


class Identity(BaseModel):
    """Holder identity. ``did`` and ``address`` are pure functions of ``public_key``."""

    model_config = ConfigDict(frozen=True)

    did: str
    public_key: bytes
    private_key: bytes = Field(repr=False)
    address: str
    created_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def _check_derivation(self) -> Identity:
        from credvault.crypto.did import address_from_public_key, did_from_public_key

        if self.did != did_from_public_key(self.public_key):
            raise ValueError("did does not match public_key")
        if self.address != address_from_public_key(self.public_key):
            raise ValueError("address does not match public_key")
        return self

    def to_stored_form(self) -> dict[str, Any]:
        return {
            "did": self.did,
            "public_key": b64encode(self.public_key),
            "private_key": b64encode(self.private_key),
            "address": self.address,
            "created_at": format_timestamp(self.created_at),
        }

    @classmethod
    def from_stored_form(cls, data: dict[str, Any]) -> Identity:
        return cls(
            did=data["did"],
            public_key=b64decode(data["public_key"]),
            private_key=b64decode(data["private_key"]),
            address=data["address"],
            created_at=parse_timestamp(data["created_at"]),
        )


# ---------------------------------------------------------------------------
# CredentialDocument
# ---------------------------------------------------------------------------


class CredentialSubject(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    claims: dict[str, Any] = Field(default_factory=dict)

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        if not DID_PATTERN.match(v):
            raise ValueError(f"subject id is not a DID: {v!r}")
        return v

    @field_validator("claims")
    @classmethod
    def validate_claims(cls, v: dict[str, Any]) -> dict[str, Any]:
        if "id" in v:
            raise ValueError("claim name 'id' is reserved for the subject DID")
        _check_claim_value(v, "claims")
        return v


class CredentialDocument(BaseModel):
    """Logical verifiable credential. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    issuer: str
    subject: CredentialSubject
    issued_at: datetime = Field(default_factory=_utcnow)
    types: frozenset[str] = frozenset({BASE_CREDENTIAL_TYPE})

    @field_validator("issuer")
    @classmethod
    def validate_issuer(cls, v: str) -> str:
        if not DID_PATTERN.match(v):
            raise ValueError(f"issuer is not a DID: {v!r}")
        return v

    @field_validator("issued_at")
    @classmethod
    def validate_issued_at(cls, v: datetime) -> datetime:
        return _normalize_timestamp(v)

    @field_validator("types")
    @classmethod
    def validate_types(cls, v: frozenset[str]) -> frozenset[str]:
        if any(not tag for tag in v):
            raise ValueError("credential type tags must be non-empty")
        return frozenset(v) | {BASE_CREDENTIAL_TYPE}

    @property
    def credential_type(self) -> str:
        """Most specific type tag, for display."""
        specific = sorted(self.types - {BASE_CREDENTIAL_TYPE})
        return specific[0] if specific else BASE_CREDENTIAL_TYPE


# ---------------------------------------------------------------------------
# Signature
# ---------------------------------------------------------------------------


class Signature(BaseModel):
    model_config = ConfigDict(frozen=True)

    algorithm: str = "Ed25519"
    signer: str
    value: bytes

    def to_stored_form(self) -> dict[str, Any]:
        return {
            "algorithm": self.algorithm,
            "signer": self.signer,
            "value": b64encode(self.value),
        }

    @classmethod
    def from_stored_form(cls, data: dict[str, Any]) -> Signature:
        return cls(
            algorithm=data["algorithm"],
            signer=data["signer"],
            value=b64decode(data["value"]),
        )


# ---------------------------------------------------------------------------
# EncryptedEnvelope
# ---------------------------------------------------------------------------


class EncryptedEnvelope(BaseModel):
    """Ciphertext plus everything needed to decrypt it except the key."""

    model_config = ConfigDict(frozen=True)

    version: int = 1
    algorithm: str = "AES-256-GCM"
    kdf: str = "HKDF-SHA256"
    nonce: bytes
    ciphertext: bytes

    def header(self) -> bytes:
        """Associated data bound into the AEAD tag."""
        return canonical_json(
            {
                "alg": self.algorithm,
                "kdf": self.kdf,
                "nonce": b64encode(self.nonce),
                "v": self.version,
            }
        ).encode("utf-8")

    def to_bytes(self) -> bytes:
        return canonical_json(
            {
                "alg": self.algorithm,
                "ct": b64encode(self.ciphertext),
                "kdf": self.kdf,
                "nonce": b64encode(self.nonce),
                "v": self.version,
            }
        ).encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> EncryptedEnvelope:
        try:
            raw = json.loads(data.decode("utf-8"))
            return cls(
                version=raw["v"],
                algorithm=raw["alg"],
                kdf=raw["kdf"],
                nonce=b64decode(raw["nonce"]),
                ciphertext=b64decode(raw["ct"]),
            )
        except (UnicodeDecodeError, ValueError, KeyError, TypeError, AttributeError) as exc:
            raise DecryptionError("Envelope bytes are not a valid encrypted envelope") from exc


# ---------------------------------------------------------------------------
# VaultRecord
# ---------------------------------------------------------------------------


class VaultRecord(BaseModel):
    """Holder-side index entry for one issued and published credential."""

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    storage_handle: str
    signature: Signature
    issuer: str
    subject: str
    holder_did: str
    issued_at: datetime
    types: frozenset[str]
    claims: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
    simulated: bool = False
    gateway_url: str | None = None
    envelope: bytes | None = Field(default=None, repr=False)

    def to_stored_form(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "storage_handle": self.storage_handle,
            "signature": self.signature.to_stored_form(),
            "issuer": self.issuer,
            "subject": self.subject,
            "holder_did": self.holder_did,
            "issued_at": format_timestamp(self.issued_at),
            "types": sorted(self.types),
            "claims": self.claims,
            "created_at": format_timestamp(self.created_at),
            "simulated": self.simulated,
            "gateway_url": self.gateway_url,
            "envelope": b64encode(self.envelope) if self.envelope is not None else None,
        }

    @classmethod
    def from_stored_form(cls, data: dict[str, Any]) -> VaultRecord:
        envelope = data.get("envelope")
        return cls(
            id=UUID(data["id"]),
            storage_handle=data["storage_handle"],
            signature=Signature.from_stored_form(data["signature"]),
            issuer=data["issuer"],
            subject=data["subject"],
            holder_did=data["holder_did"],
            issued_at=parse_timestamp(data["issued_at"]),
            types=frozenset(data["types"]),
            claims=data.get("claims", {}),
            created_at=parse_timestamp(data["created_at"]),
            simulated=data.get("simulated", False),
            gateway_url=data.get("gateway_url"),
            envelope=b64decode(envelope) if envelope is not None else None,
        )


# ---------------------------------------------------------------------------
# Verification outcome
# ---------------------------------------------------------------------------


class VerificationReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    verified: bool
    storage_handle: str
    issuer: str
    subject: str
    reason: RejectionReason | None = None
    document: CredentialDocument | None = None


class IssuerProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    did: str
    name: str
