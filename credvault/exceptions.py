"""Custom exception hierarchy for credvault.

Every failure the credential lifecycle can surface is one of these types.
Lifecycle steps stamp ``state`` with the state the operation was in when it
failed, so callers can report which step aborted.
"""

from __future__ import annotations


class CredVaultError(Exception):
    """Base exception for all credvault errors."""

    error_type: str = "internal_error"

    def __init__(self, message: str = "An internal error occurred") -> None:
        self.message = message
        self.state: str | None = None
        super().__init__(message)


class EntropyError(CredVaultError):
    """The operating system random source is unavailable."""

    error_type = "entropy_error"


class MalformedDocumentError(CredVaultError):
    """Credential bytes are not a well-formed credential document."""

    error_type = "malformed_document"


class SigningKeyError(CredVaultError):
    """A private key is malformed or unusable for signing."""

    error_type = "signing_key_error"


class VerificationInputError(CredVaultError):
    """Signature verification inputs are structurally invalid."""

    error_type = "verification_input_error"


class DecryptionError(CredVaultError):
    """Authenticated decryption failed (wrong key or tampered data)."""

    error_type = "decryption_error"


class NotFoundError(CredVaultError):
    """Requested handle, record or DID was not found."""

    error_type = "not_found"


class TimeoutError(CredVaultError):  # noqa: A001
    """A remote call did not complete within its timeout and retry budget."""

    error_type = "timeout"


class StorageWriteError(CredVaultError):
    """The local device store could not be written."""

    error_type = "storage_write_error"


class IssuanceError(CredVaultError):
    """The issuer refused the request or returned an unusable credential."""

    error_type = "issuance_error"


class ContentIntegrityError(CredVaultError):
    """Bytes returned by the content store do not match their address."""

    error_type = "content_integrity_error"


class TransientStoreError(CredVaultError):
    """Retryable network failure talking to a remote collaborator."""

    error_type = "transient_error"


class ConfigurationError(CredVaultError):
    """Settings do not describe a usable runtime."""

    error_type = "configuration_error"
