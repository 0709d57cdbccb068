"""Credential lifecycle: orchestrates identity, issuance, publication and verification.

Issue:  IDLE → REQUESTED → SIGNED → ENCRYPTED → PUBLISHED → DONE
Verify: IDLE → FETCHING → DECRYPTING → VALIDATING → VERIFIED | REJECTED

Any step failure moves the operation to FAILED and re-raises the error with
``state`` set to the step that failed; errors from outside the credvault
hierarchy are wrapped in CredVaultError first. The VaultRecord is written
only after every earlier step has succeeded. Operations are serialized by
the VaultIndex lock, so lifecycles sharing one index never interleave.
Verification accepts a credential only when its subject DID resolves to the
key that decrypted it.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, TypeVar
from uuid import uuid4

import httpx

from credvault import exceptions as errors
from credvault.core import codec
from credvault.core.issuer import IssuanceRequest, IssuerService
from credvault.core.models import (
    CredentialDocument,
    EncryptedEnvelope,
    Identity,
    IssuerProfile,
    LifecycleState,
    RejectionReason,
    Signature,
    VaultRecord,
    VerificationReport,
)
from credvault.crypto import cipher, vc
from credvault.crypto import did as key_identity
from credvault.storage.content import DEFAULT_GATEWAY_URL, ContentStore, gateway_url, verify_cid
from credvault.storage.device import VaultIndex

logger = logging.getLogger("credvault.lifecycle")

T = TypeVar("T")

_RETRYABLE = (errors.TransientStoreError, asyncio.TimeoutError, OSError, httpx.TransportError)

ISSUE_PATH = (
    LifecycleState.IDLE,
    LifecycleState.REQUESTED,
    LifecycleState.SIGNED,
    LifecycleState.ENCRYPTED,
    LifecycleState.PUBLISHED,
    LifecycleState.DONE,
)
VERIFY_PATH = (
    LifecycleState.IDLE,
    LifecycleState.FETCHING,
    LifecycleState.DECRYPTING,
    LifecycleState.VALIDATING,
)
_VERIFY_OUTCOMES = (LifecycleState.VERIFIED, LifecycleState.REJECTED)


@dataclass(frozen=True)
class Transition:
    """One state change of a lifecycle operation."""

    operation: str
    operation_id: str
    state: LifecycleState
    error: str | None = None


TransitionListener = Callable[[Transition], None]


def _unexpected(exc: Exception) -> errors.CredVaultError:
    """Wrap an error raised outside the credvault hierarchy by a step or collaborator."""
    return errors.CredVaultError(f"{type(exc).__name__}: {exc}")


class _Operation:
    """Tracks the state of a single Issue or Verify run."""

    def __init__(
        self,
        kind: str,
        path: tuple[LifecycleState, ...],
        listener: TransitionListener | None,
    ):
        self.kind = kind
        self.id = uuid4().hex[:12]
        self.path = path
        self.state = LifecycleState.IDLE
        self.history: list[LifecycleState] = [LifecycleState.IDLE]
        self._listener = listener

    def _allowed_next(self) -> tuple[LifecycleState, ...]:
        idx = self.path.index(self.state)
        if idx + 1 < len(self.path):
            return (self.path[idx + 1],)
        if self.kind == "verify":
            return _VERIFY_OUTCOMES
        return ()

    def advance(self, state: LifecycleState, **extra: Any) -> None:
        if state not in self._allowed_next():
            msg = f"{self.kind}: illegal transition {self.state.value} -> {state.value}"
            raise RuntimeError(msg)
        self._enter(state, None, extra)

    def fail(self, exc: BaseException) -> None:
        if isinstance(exc, errors.CredVaultError) and exc.state is None:
            exc.state = self.state.value
        failed_at = self.state
        self._enter(LifecycleState.FAILED, f"{type(exc).__name__}: {exc}", {})
        logger.warning(
            "%s %s failed at %s: %s",
            self.kind,
            self.id,
            failed_at.value,
            exc,
            extra={"operation": self.kind, "state": failed_at.value},
        )

    def _enter(self, state: LifecycleState, error: str | None, extra: dict[str, Any]) -> None:
        self.state = state
        self.history.append(state)
        logger.debug(
            "%s %s -> %s",
            self.kind,
            self.id,
            state.value,
            extra={"operation": self.kind, "state": state.value, **extra},
        )
        if self._listener is not None:
            self._listener(Transition(self.kind, self.id, state, error))


class CredentialLifecycle:
    """Runs the Issue and Verify protocols for one holder device."""

    def __init__(
        self,
        index: VaultIndex,
        content_store: ContentStore,
        issuer: IssuerService,
        resolver: key_identity.DIDResolver | None = None,
        *,
        timeout: float = 10.0,
        retry_attempts: int = 3,
        retry_backoff: float = 0.5,
        cache_envelopes: bool = True,
        gateway: str = DEFAULT_GATEWAY_URL,
        listener: TransitionListener | None = None,
    ) -> None:
        if retry_attempts < 1:
            raise errors.ConfigurationError("retry_attempts must be at least 1")
        if timeout <= 0:
            raise errors.ConfigurationError("timeout must be positive")
        self.index = index
        self.content_store = content_store
        self.issuer = issuer
        self.resolver = resolver or key_identity.DIDResolver()
        self.timeout = timeout
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff
        self.cache_envelopes = cache_envelopes
        self.gateway = gateway
        self.listener = listener
        self._lock = index.lock

    # ------------------------------------------------------------------
    # Remote calls
    # ------------------------------------------------------------------

    async def _call(self, what: str, factory: Callable[[], Awaitable[T]]) -> T:
        """Run a remote call with a per-attempt timeout and bounded retries."""
        delay = self.retry_backoff
        for attempt in range(1, self.retry_attempts + 1):
            try:
                return await asyncio.wait_for(factory(), timeout=self.timeout)
            except _RETRYABLE as exc:
                logger.warning(
                    "%s attempt %d/%d failed: %s",
                    what,
                    attempt,
                    self.retry_attempts,
                    str(exc) or type(exc).__name__,
                )
                if attempt == self.retry_attempts:
                    raise errors.TimeoutError(
                        f"{what} did not complete after {self.retry_attempts} attempts"
                    ) from exc
                await asyncio.sleep(delay)
                delay *= 2
        raise AssertionError("unreachable")

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def current_identity(self) -> Identity | None:
        return self.index.load_identity()

    async def create_identity(self, replace: bool = False) -> Identity:
        """Return the device identity, generating and storing one if needed.

        With ``replace=True`` the existing identity and its credential index
        are discarded first.
        """
        async with self._lock:
            existing = self.index.load_identity()
            if existing is not None and not replace:
                return existing
            if existing is not None:
                self.index.clear_identity()
            identity = key_identity.generate()
            self.index.save_identity(identity)
            return identity

    async def restore_identity(self, private_key: bytes) -> Identity:
        """Recreate the identity from a backed-up private key and store it."""
        identity = key_identity.from_private_key(private_key)
        async with self._lock:
            existing = self.index.load_identity()
            if existing is not None and existing.did != identity.did:
                self.index.clear_identity()
            self.index.save_identity(identity)
        return identity

    async def clear_identity(self) -> None:
        async with self._lock:
            self.index.clear_identity()

    def _require_holder(self, holder: Identity | None) -> Identity:
        stored = self.index.load_identity()
        if stored is None:
            raise errors.NotFoundError("No identity on this device; create one first")
        if holder is not None and holder.did != stored.did:
            raise errors.NotFoundError(f"Identity {holder.did} is not stored on this device")
        return stored

    # ------------------------------------------------------------------
    # Issuer
    # ------------------------------------------------------------------

    async def issuer_profile(self) -> IssuerProfile:
        return await self._call("issuer profile", self.issuer.profile)

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    async def issue(
        self,
        claims: dict[str, Any],
        *,
        types: Iterable[str] = (),
        holder: Identity | None = None,
        subject_did: str | None = None,
    ) -> VaultRecord:
        """Request, sign-check, encrypt, publish and index a credential.

        ``subject_did`` defaults to the holder's DID. The vault key is always
        derived from the holder's private key.
        """
        async with self._lock:
            op = _Operation("issue", ISSUE_PATH, self.listener)
            try:
                return await self._issue(op, claims, tuple(types), holder, subject_did)
            except (errors.CredVaultError, asyncio.CancelledError) as exc:
                op.fail(exc)
                raise
            except Exception as exc:
                wrapped = _unexpected(exc)
                op.fail(wrapped)
                raise wrapped from exc

    async def _issue(
        self,
        op: _Operation,
        claims: dict[str, Any],
        types: tuple[str, ...],
        holder: Identity | None,
        subject_did: str | None,
    ) -> VaultRecord:
        holder = self._require_holder(holder)
        subject = subject_did or holder.did

        op.advance(LifecycleState.REQUESTED, did=subject)
        request = IssuanceRequest(
            subject_did=subject,
            subject_public_key=holder.public_key,
            claims=dict(claims),
            types=types,
        )
        response = await self._call("issuer request", lambda: self.issuer.issue(request))
        document, signature = response.document, response.signature
        canonical = codec.canonicalize(document)
        self._check_issued(document, subject, canonical, signature)

        op.advance(LifecycleState.SIGNED, did=document.issuer)
        key = cipher.derive_key(holder.private_key)
        envelope = await asyncio.to_thread(cipher.encrypt, canonical, key)
        blob = envelope.to_bytes()

        op.advance(LifecycleState.ENCRYPTED)
        handle = await self._call("content put", lambda: self.content_store.put(blob))
        verify_cid(handle, blob)

        op.advance(LifecycleState.PUBLISHED, storage_handle=handle)
        record = VaultRecord(
            storage_handle=handle,
            signature=signature,
            issuer=document.issuer,
            subject=document.subject.id,
            holder_did=holder.did,
            issued_at=document.issued_at,
            types=document.types,
            claims=document.subject.claims,
            simulated=self.content_store.simulated,
            gateway_url=gateway_url(handle, self.gateway),
            envelope=blob if self.cache_envelopes else None,
        )
        self.index.append_record(record)

        op.advance(LifecycleState.DONE, storage_handle=handle)
        logger.info(
            "Issued credential %s from %s",
            handle,
            document.issuer,
            extra={"operation": "issue", "storage_handle": handle, "did": holder.did},
        )
        return record

    def _check_issued(
        self,
        document: CredentialDocument,
        subject: str,
        canonical: bytes,
        signature: Signature,
    ) -> None:
        """Reject issuer responses that do not name our subject or do not verify."""
        if document.subject.id != subject:
            raise errors.IssuanceError(
                f"Issuer returned a credential for {document.subject.id}, expected {subject}"
            )
        try:
            ok = vc.verify(canonical, signature, document.issuer, self.resolver)
        except errors.NotFoundError as exc:
            raise errors.IssuanceError(f"Cannot resolve issuer {document.issuer}") from exc
        except errors.VerificationInputError as exc:
            raise errors.IssuanceError(f"Issuer returned a malformed signature: {exc}") from exc
        if not ok:
            raise errors.IssuanceError("Issuer signature does not verify")

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    async def verify(
        self, storage_handle: str, *, holder: Identity | None = None
    ) -> VerificationReport:
        """Fetch, decrypt, parse and check the credential stored under *storage_handle*.

        ``holder`` is the identity whose derived key decrypts the envelope;
        it defaults to the device identity.
        """
        async with self._lock:
            op = _Operation("verify", VERIFY_PATH, self.listener)
            try:
                return await self._verify(op, storage_handle.strip(), holder)
            except (errors.CredVaultError, asyncio.CancelledError) as exc:
                op.fail(exc)
                raise
            except Exception as exc:
                wrapped = _unexpected(exc)
                op.fail(wrapped)
                raise wrapped from exc

    async def _verify(
        self, op: _Operation, handle: str, holder: Identity | None
    ) -> VerificationReport:
        if holder is None:
            holder = self.index.load_identity()
            if holder is None:
                raise errors.NotFoundError("No identity on this device; create one first")

        op.advance(LifecycleState.FETCHING, storage_handle=handle)
        record = self.index.get_record(handle)
        if record is not None and record.envelope is not None:
            blob = record.envelope
        else:
            blob = await self._call("content get", lambda: self.content_store.get(handle))
        verify_cid(handle, blob)

        op.advance(LifecycleState.DECRYPTING, storage_handle=handle)
        envelope = EncryptedEnvelope.from_bytes(blob)
        key = cipher.derive_key(holder.private_key)
        plaintext = await asyncio.to_thread(cipher.decrypt, envelope, key)

        op.advance(LifecycleState.VALIDATING, storage_handle=handle)
        document = codec.parse(plaintext)
        reason = self._validate(document, record, holder)

        if reason is None:
            op.advance(LifecycleState.VERIFIED, storage_handle=handle)
            logger.info("Verified credential %s", handle, extra={"storage_handle": handle})
        else:
            op.advance(LifecycleState.REJECTED, storage_handle=handle)
            logger.warning(
                "Rejected credential %s: %s",
                handle,
                reason.value,
                extra={"storage_handle": handle},
            )
        return VerificationReport(
            verified=reason is None,
            storage_handle=handle,
            issuer=document.issuer,
            subject=document.subject.id,
            reason=reason,
            document=document,
        )

    def _validate(
        self,
        document: CredentialDocument,
        record: VaultRecord | None,
        holder: Identity,
    ) -> RejectionReason | None:
        if record is None:
            return RejectionReason.MISSING_SIGNATURE
        if record.issuer != document.issuer:
            return RejectionReason.ISSUER_MISMATCH
        try:
            self.resolver.resolve(document.issuer)
        except errors.NotFoundError:
            return RejectionReason.UNRESOLVABLE_ISSUER
        canonical = codec.canonicalize(document)
        if not vc.verify(canonical, record.signature, document.issuer, self.resolver):
            return RejectionReason.SIGNATURE_MISMATCH
        # The subject must be controlled by the key that decrypted the envelope
        try:
            subject_key = self.resolver.resolve(document.subject.id)
        except errors.NotFoundError:
            return RejectionReason.SUBJECT_MISMATCH
        if subject_key != holder.public_key:
            return RejectionReason.SUBJECT_MISMATCH
        return None

    # ------------------------------------------------------------------
    # Credential index
    # ------------------------------------------------------------------

    def list_credentials(self) -> list[VaultRecord]:
        return self.index.list_records()

    async def remove_credential(self, storage_handle: str) -> bool:
        async with self._lock:
            removed = self.index.remove_record(storage_handle)
        if removed:
            logger.info(
                "Removed credential %s", storage_handle, extra={"storage_handle": storage_handle}
            )
        return removed

    @staticmethod
    def share_text(record: VaultRecord) -> str:
        """Human-readable text for sharing a published credential handle."""
        lines = [
            "Check out my verifiable credential!",
            f"CID: {record.storage_handle}",
            f"Issuer: {record.issuer}",
        ]
        if record.gateway_url:
            lines.append(f"Verify at: {record.gateway_url}")
        return "\n".join(lines)
