"""Content-addressed blob storage.

Handles are CIDv1 strings: multibase base32 (``b`` prefix) over
``0x01 | 0x55 (raw) | 0x12 0x20 (sha2-256) | digest``. That is the CID a
Kubo node assigns to a raw-leaf block, so in-process stores and IPFS hand
out the same handle for the same bytes.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import logging
import os
import re
from pathlib import Path
from typing import Protocol, runtime_checkable

from credvault.exceptions import ContentIntegrityError, NotFoundError, StorageWriteError

logger = logging.getLogger("credvault.storage.content")

_CID_PREFIX = b"\x01\x55\x12\x20"
_CID_PATTERN = re.compile(r"^b[a-z2-7]{58}$")

DEFAULT_GATEWAY_URL = "https://ipfs.io/ipfs/"


def compute_cid(data: bytes) -> str:
    """CIDv1 (raw codec, sha2-256) of *data*, base32-lower multibase."""
    digest = hashlib.sha256(data).digest()
    encoded = base64.b32encode(_CID_PREFIX + digest).decode("ascii").lower().rstrip("=")
    return "b" + encoded


def is_cid(handle: str) -> bool:
    return isinstance(handle, str) and _CID_PATTERN.match(handle) is not None


def verify_cid(handle: str, data: bytes) -> None:
    """Raise ContentIntegrityError unless *data* hashes to *handle*."""
    actual = compute_cid(data)
    if actual != handle:
        raise ContentIntegrityError(f"Content for {handle} hashes to {actual}")


def gateway_url(handle: str, gateway: str = DEFAULT_GATEWAY_URL) -> str:
    """Public gateway link used when sharing a handle."""
    return gateway.rstrip("/") + "/" + handle


@runtime_checkable
class ContentStore(Protocol):
    """Protocol that all content-addressed stores must implement."""

    name: str
    simulated: bool

    async def put(self, data: bytes) -> str:
        """Store *data* and return its content handle."""
        ...

    async def get(self, handle: str) -> bytes:
        """Return the bytes stored under *handle*; raise NotFoundError if absent."""
        ...


class MemoryContentStore:
    """In-process content store for tests and offline demos."""

    name = "memory"
    simulated = True

    def __init__(self) -> None:
        self._blobs: dict[str, bytes] = {}

    async def put(self, data: bytes) -> str:
        handle = compute_cid(data)
        self._blobs[handle] = bytes(data)
        return handle

    async def get(self, handle: str) -> bytes:
        try:
            return self._blobs[handle]
        except KeyError:
            raise NotFoundError(f"No content stored under {handle}") from None

    def __contains__(self, handle: str) -> bool:
        return handle in self._blobs

    def __len__(self) -> int:
        return len(self._blobs)


class FileContentStore:
    """Directory-backed content store: one file per handle.

    Used by the CLI when no IPFS node is available, so published
    credentials survive between invocations.
    """

    name = "file"
    simulated = True

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, handle: str) -> Path:
        if not is_cid(handle):
            raise NotFoundError(f"Not a content handle: {handle!r}")
        return self.root / handle

    def _write(self, handle: str, data: bytes) -> None:
        path = self.root / handle
        if path.exists():
            return
        tmp = path.with_suffix(".tmp")
        try:
            tmp.write_bytes(data)
            os.replace(tmp, path)
        except OSError as exc:
            raise StorageWriteError(f"Failed to write blob {handle}: {exc}") from exc

    async def put(self, data: bytes) -> str:
        handle = compute_cid(data)
        await asyncio.to_thread(self._write, handle, bytes(data))
        logger.debug("Stored %d bytes as %s", len(data), handle)
        return handle

    async def get(self, handle: str) -> bytes:
        path = self._path(handle)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            raise NotFoundError(f"No content stored under {handle}") from None
