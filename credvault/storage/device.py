"""Local device storage for the holder's identity and credential index.

The device store is a plain synchronous key-value surface (get/set/remove)
with no transactions across keys. VaultIndex layers the two named records
on top of it (``identity`` and ``credentials``) and orders its writes so a
credential record is never written without the identity it belongs to.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from pydantic import ValidationError

from credvault.core.models import Identity, VaultRecord
from credvault.exceptions import MalformedDocumentError, StorageWriteError

logger = logging.getLogger("credvault.storage.device")

IDENTITY_KEY = "identity"
CREDENTIALS_KEY = "credentials"

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


@runtime_checkable
class DeviceStore(Protocol):
    """Protocol for the holder's local key-value store."""

    def get(self, key: str) -> Any | None:
        ...

    def set(self, key: str, value: Any) -> None:
        ...

    def remove(self, key: str) -> None:
        ...


class MemoryDeviceStore:
    """Dict-backed device store. Values are round-tripped through JSON."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> Any | None:
        raw = self._data.get(key)
        return None if raw is None else json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        try:
            self._data[key] = json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise StorageWriteError(f"Value for {key!r} is not JSON-serializable") from exc

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class FileDeviceStore:
    """One JSON file per key under a directory, replaced atomically on write."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        if not _KEY_PATTERN.match(key):
            raise ValueError(f"Invalid device store key: {key!r}")
        return self.root / f"{key}.json"

    def get(self, key: str) -> Any | None:
        path = self._path(key)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise MalformedDocumentError(f"Device record {key!r} is corrupt") from exc

    def set(self, key: str, value: Any) -> None:
        path = self._path(key)
        tmp = path.with_suffix(".json.tmp")
        try:
            tmp.write_text(json.dumps(value, indent=2, sort_keys=True), encoding="utf-8")
            os.replace(tmp, path)
        except (OSError, TypeError, ValueError) as exc:
            raise StorageWriteError(f"Failed to write device record {key!r}: {exc}") from exc

    def remove(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            raise StorageWriteError(f"Failed to remove device record {key!r}: {exc}") from exc


class VaultIndex:
    """Typed access to the ``identity`` and ``credentials`` device records.

    ``append_record`` and ``remove_record`` read, modify and rewrite the whole
    credentials record. ``lock`` is shared by every lifecycle built on this
    index, so writers in one process are serialized. Keep one VaultIndex per
    device store, and do not point two processes at one FileDeviceStore
    directory at the same time.
    """

    def __init__(self, store: DeviceStore) -> None:
        self.store = store
        self.lock = asyncio.Lock()

    # --- identity ---

    def load_identity(self) -> Identity | None:
        data = self.store.get(IDENTITY_KEY)
        if data is None:
            return None
        try:
            return Identity.from_stored_form(data)
        except (KeyError, TypeError, ValueError, ValidationError) as exc:
            raise MalformedDocumentError("Stored identity is corrupt") from exc

    def save_identity(self, identity: Identity) -> None:
        self.store.set(IDENTITY_KEY, identity.to_stored_form())
        logger.info("Saved identity %s", identity.did)

    def clear_identity(self) -> None:
        """Remove credentials first, then the identity they reference."""
        self.store.remove(CREDENTIALS_KEY)
        self.store.remove(IDENTITY_KEY)
        logger.info("Cleared identity and credential index")

    # --- credentials ---

    def list_records(self) -> list[VaultRecord]:
        """All credential records, newest first."""
        data = self.store.get(CREDENTIALS_KEY) or []
        try:
            return [VaultRecord.from_stored_form(item) for item in data]
        except (KeyError, TypeError, ValueError, ValidationError) as exc:
            raise MalformedDocumentError("Stored credential index is corrupt") from exc

    def get_record(self, storage_handle: str) -> VaultRecord | None:
        for record in self.list_records():
            if record.storage_handle == storage_handle:
                return record
        return None

    def append_record(self, record: VaultRecord) -> None:
        identity = self.load_identity()
        if identity is None or identity.did != record.holder_did:
            raise StorageWriteError(
                f"No stored identity {record.holder_did}; refusing to write credential record"
            )
        records = [record, *self.list_records()]
        self.store.set(CREDENTIALS_KEY, [r.to_stored_form() for r in records])

    def remove_record(self, storage_handle: str) -> bool:
        records = self.list_records()
        kept = [r for r in records if r.storage_handle != storage_handle]
        if len(kept) == len(records):
            return False
        self.store.set(CREDENTIALS_KEY, [r.to_stored_form() for r in kept])
        return True
