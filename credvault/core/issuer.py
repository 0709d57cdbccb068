"""Issuer signing service contract and an in-process signing authority."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from pydantic import ValidationError

from credvault.core import codec
from credvault.core.models import (
    CredentialDocument,
    CredentialSubject,
    IssuerProfile,
    Signature,
)
from credvault.crypto import did as key_identity
from credvault.crypto import vc
from credvault.exceptions import IssuanceError

logger = logging.getLogger("credvault.issuer")

DEFAULT_ISSUER_NAME = "Example Tech University"


@dataclass
class IssuanceRequest:
    """What the holder sends to the issuer. Never carries a private key."""

    subject_did: str
    subject_public_key: bytes
    claims: dict[str, Any]
    types: tuple[str, ...] = ()


@dataclass
class IssuanceResponse:
    document: CredentialDocument
    signature: Signature
    metadata: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class IssuerService(Protocol):
    """Protocol for the remote issuer signing service."""

    async def issue(self, request: IssuanceRequest) -> IssuanceResponse:
        """Build and sign a credential for the requested subject."""
        ...

    async def profile(self) -> IssuerProfile:
        """Return the issuer's public DID and display name."""
        ...


class LocalIssuer:
    """Issuer signing authority running in-process.

    If *seed* is given (32 bytes) the issuer key is deterministic, otherwise
    a random key is generated.
    """

    def __init__(self, seed: bytes | None = None, name: str = DEFAULT_ISSUER_NAME) -> None:
        self._identity = (
            key_identity.from_private_key(seed) if seed is not None else key_identity.generate()
        )
        self.name = name

    @property
    def did(self) -> str:
        return self._identity.did

    @property
    def public_key(self) -> bytes:
        return self._identity.public_key

    async def profile(self) -> IssuerProfile:
        return IssuerProfile(did=self.did, name=self.name)

    async def issue(self, request: IssuanceRequest) -> IssuanceResponse:
        if not key_identity.is_did(request.subject_did):
            raise IssuanceError(f"Subject is not a DID: {request.subject_did!r}")
        if not request.claims:
            raise IssuanceError("Refusing to issue a credential with no claims")

        try:
            document = CredentialDocument(
                issuer=self.did,
                subject=CredentialSubject(id=request.subject_did, claims=request.claims),
                types=frozenset(request.types),
            )
        except ValidationError as exc:
            raise IssuanceError(f"Invalid credential request: {exc.errors()[0]['msg']}") from exc

        signature = vc.sign(
            codec.canonicalize(document), self._identity.private_key, signer=self.did
        )
        logger.info(
            "Issued %s to %s",
            document.credential_type,
            request.subject_did,
        )
        return IssuanceResponse(
            document=document,
            signature=signature,
            metadata={"issuer_name": self.name},
        )
