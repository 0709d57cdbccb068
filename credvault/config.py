"""Centralized configuration for credvault.

Uses Pydantic BaseSettings with environment variable loading and validation.
All CREDVAULT_* environment variables are validated when Settings is built.
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    model_config = {"env_prefix": "CREDVAULT_", "case_sensitive": False, "extra": "ignore"}

    # Local storage
    home: Path = Field(
        default=Path(".credvault"), description="Data directory for the device store"
    )

    # Content store
    content_store: str = Field(default="file", description="Content store: memory, file or ipfs")
    ipfs_api_url: str = Field(default="http://127.0.0.1:5001", description="Kubo RPC API URL")
    ipfs_gateway_url: str = Field(
        default="https://ipfs.io/ipfs/", description="Public gateway used in share links"
    )

    # Remote calls
    request_timeout: float = Field(default=10.0, gt=0, description="Per-attempt timeout in seconds")
    retry_attempts: int = Field(default=3, ge=1, description="Attempts per remote call")
    retry_backoff: float = Field(default=0.5, ge=0, description="Initial retry backoff in seconds")

    # Vault
    cache_envelopes: bool = Field(
        default=True, description="Keep a copy of each envelope in the local index"
    )

    # Issuer
    issuer_seed: str | None = Field(
        default=None, description="64-char hex seed for a deterministic issuer key"
    )
    issuer_name: str = Field(default="Example Tech University", description="Issuer display name")

    # Logging
    log_format: str = Field(default="text", description="Log format: text or json")
    log_level: str = Field(default="INFO", description="Python log level")

    @field_validator("content_store")
    @classmethod
    def validate_content_store(cls, v: str) -> str:
        v = v.lower()
        if v not in ("memory", "file", "ipfs"):
            msg = f"CREDVAULT_CONTENT_STORE must be 'memory', 'file' or 'ipfs', got '{v}'"
            raise ValueError(msg)
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("text", "json"):
            msg = f"CREDVAULT_LOG_FORMAT must be 'text' or 'json', got '{v}'"
            raise ValueError(msg)
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.upper()
        if not isinstance(getattr(logging, v, None), int):
            msg = f"CREDVAULT_LOG_LEVEL must be a valid Python log level, got '{v}'"
            raise ValueError(msg)
        return v

    @field_validator("issuer_seed")
    @classmethod
    def validate_issuer_seed(cls, v: str | None) -> str | None:
        if v is None:
            return v
        if len(v) != 64:
            msg = f"CREDVAULT_ISSUER_SEED must be exactly 64 hex characters, got {len(v)}"
            raise ValueError(msg)
        try:
            bytes.fromhex(v)
        except ValueError:
            msg = "CREDVAULT_ISSUER_SEED must be valid hexadecimal"
            raise ValueError(msg)  # noqa: B904
        return v

    @property
    def issuer_seed_bytes(self) -> bytes | None:
        return bytes.fromhex(self.issuer_seed) if self.issuer_seed else None

    @property
    def device_dir(self) -> Path:
        return self.home / "device"

    @property
    def blob_dir(self) -> Path:
        return self.home / "blobs"
