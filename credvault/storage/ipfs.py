"""IPFS content store over the Kubo HTTP RPC API.

Blobs are added with ``cid-version=1&raw-leaves=true`` so a single-block
envelope gets the same CID that :func:`compute_cid` produces locally.
Transport failures surface as TransientStoreError so the lifecycle can
retry them; missing content surfaces as NotFoundError.
"""

from __future__ import annotations

import logging

import httpx

from credvault.exceptions import NotFoundError, StorageWriteError, TransientStoreError
from credvault.storage.content import is_cid

logger = logging.getLogger("credvault.storage.ipfs")

DEFAULT_API_URL = "http://127.0.0.1:5001"
_RETRYABLE_STATUS = frozenset({502, 503, 504})


class IpfsContentStore:
    """ContentStore backed by a Kubo node."""

    name = "ipfs"
    simulated = False

    def __init__(
        self,
        api_url: str = DEFAULT_API_URL,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def _rpc(self, command: str, **kwargs) -> httpx.Response:
        url = f"{self.api_url}/api/v0/{command}"
        try:
            return await self.client.post(url, **kwargs)
        except httpx.TransportError as exc:
            raise TransientStoreError(f"IPFS {command} failed: {exc}") from exc

    async def put(self, data: bytes) -> str:
        resp = await self._rpc(
            "add",
            params={"cid-version": "1", "raw-leaves": "true", "pin": "true"},
            files={"file": ("credential.enc", data, "application/octet-stream")},
        )
        if resp.status_code in _RETRYABLE_STATUS:
            raise TransientStoreError(f"IPFS add returned {resp.status_code}")
        if resp.status_code != 200:
            raise StorageWriteError(f"IPFS add returned {resp.status_code}: {resp.text[:200]}")
        try:
            handle = resp.json()["Hash"]
        except (ValueError, KeyError, TypeError) as exc:
            raise StorageWriteError("IPFS add returned an unexpected response") from exc
        logger.info("Published %d bytes to IPFS as %s", len(data), handle)
        return handle

    async def get(self, handle: str) -> bytes:
        if not is_cid(handle):
            raise NotFoundError(f"Not a content handle: {handle!r}")
        resp = await self._rpc("cat", params={"arg": handle})
        if resp.status_code == 200:
            return resp.content
        message = _error_message(resp)
        if resp.status_code == 404 or "not found" in message.lower():
            raise NotFoundError(f"IPFS has no content for {handle}")
        if resp.status_code >= 500:
            raise TransientStoreError(f"IPFS cat returned {resp.status_code}: {message}")
        raise NotFoundError(f"IPFS cat returned {resp.status_code}: {message}")


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text
    if isinstance(body, dict):
        return str(body.get("Message", ""))
    return resp.text
