"""Canonical credential serialization.

Signing input and vault plaintext: canonical JSON (sorted keys, no
whitespace, UTF-8), credential types as a sorted list, issuance timestamp
as ``YYYY-MM-DDTHH:MM:SSZ``. Floats are rejected at model validation so the
encoding never depends on float formatting.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import ValidationError

from credvault.core.models import (
    CredentialDocument,
    CredentialSubject,
    canonical_json,
    format_timestamp,
    parse_timestamp,
)
from credvault.exceptions import MalformedDocumentError

CREDENTIALS_CONTEXT = "https://www.w3.org/2018/credentials/v1"

_TOP_LEVEL_FIELDS = frozenset({"@context", "type", "issuer", "issuanceDate", "credentialSubject"})


def to_dict(doc: CredentialDocument) -> dict[str, Any]:
    """W3C-style JSON object for a credential document."""
    return {
        "@context": [CREDENTIALS_CONTEXT],
        "type": sorted(doc.types),
        "issuer": doc.issuer,
        "issuanceDate": format_timestamp(doc.issued_at),
        "credentialSubject": {"id": doc.subject.id, **doc.subject.claims},
    }


def canonicalize(doc: CredentialDocument) -> bytes:
    return canonical_json(to_dict(doc)).encode("utf-8")


def _reject_floats(value: float) -> Any:
    raise MalformedDocumentError(f"Floating-point value {value!r} is not allowed in credentials")


def parse(data: bytes) -> CredentialDocument:
    """Parse canonical credential bytes back into a CredentialDocument."""
    try:
        raw = json.loads(data.decode("utf-8"), parse_float=_reject_floats)
    except UnicodeDecodeError as exc:
        raise MalformedDocumentError("Credential bytes are not valid UTF-8") from exc
    except json.JSONDecodeError as exc:
        raise MalformedDocumentError(f"Credential is not valid JSON: {exc.msg}") from exc

    if not isinstance(raw, dict):
        raise MalformedDocumentError("Credential must be a JSON object")

    missing = _TOP_LEVEL_FIELDS - raw.keys()
    if missing:
        raise MalformedDocumentError(f"Credential is missing fields: {', '.join(sorted(missing))}")
    unexpected = raw.keys() - _TOP_LEVEL_FIELDS
    if unexpected:
        raise MalformedDocumentError(
            f"Credential has unexpected fields: {', '.join(sorted(unexpected))}"
        )

    if raw["@context"] != [CREDENTIALS_CONTEXT]:
        raise MalformedDocumentError("Credential has an unsupported @context")

    types = raw["type"]
    if not isinstance(types, list) or not all(isinstance(t, str) for t in types):
        raise MalformedDocumentError("Credential type must be a list of strings")
    if len(set(types)) != len(types):
        raise MalformedDocumentError("Credential type list has duplicates")

    issuance_date = raw["issuanceDate"]
    if not isinstance(issuance_date, str):
        raise MalformedDocumentError("issuanceDate must be a string")
    try:
        issued_at = parse_timestamp(issuance_date)
    except ValueError as exc:
        msg = f"issuanceDate has the wrong format: {issuance_date!r}"
        raise MalformedDocumentError(msg) from exc

    subject = raw["credentialSubject"]
    if not isinstance(subject, dict):
        raise MalformedDocumentError("credentialSubject must be an object")
    if "id" not in subject:
        raise MalformedDocumentError("credentialSubject is missing id")
    claims = {k: v for k, v in subject.items() if k != "id"}

    issuer = raw["issuer"]
    subject_id = subject["id"]
    if not isinstance(issuer, str) or not isinstance(subject_id, str):
        raise MalformedDocumentError("issuer and credentialSubject.id must be DID strings")

    try:
        return CredentialDocument(
            issuer=issuer,
            subject=CredentialSubject(id=subject_id, claims=claims),
            issued_at=issued_at,
            types=frozenset(types),
        )
    except ValidationError as exc:
        msg = f"Credential failed validation: {exc.errors()[0]['msg']}"
        raise MalformedDocumentError(msg) from exc
