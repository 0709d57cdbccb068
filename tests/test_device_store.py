"""Tests for device storage and the vault index."""

from datetime import datetime, timezone

import pytest

from credvault.core.models import Signature, VaultRecord
from credvault.crypto import did as key_identity
from credvault.exceptions import MalformedDocumentError, StorageWriteError
from credvault.storage.content import compute_cid
from credvault.storage.device import (
    CREDENTIALS_KEY,
    IDENTITY_KEY,
    DeviceStore,
    FileDeviceStore,
    MemoryDeviceStore,
    VaultIndex,
)


def _record(holder_did, payload=b"x", **overrides):
    fields = {
        "storage_handle": compute_cid(payload),
        "signature": Signature(signer="did:example:u", value=b"\x01" * 64),
        "issuer": "did:example:u",
        "subject": holder_did,
        "holder_did": holder_did,
        "issued_at": datetime(2024, 1, 1, tzinfo=timezone.utc),
        "types": frozenset({"VerifiableCredential"}),
        "claims": {"degree": "BSc"},
    }
    fields.update(overrides)
    return VaultRecord(**fields)


@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path):
    if request.param == "memory":
        return MemoryDeviceStore()
    return FileDeviceStore(tmp_path / "device")


class TestDeviceStores:
    def test_get_missing(self, store):
        assert store.get("identity") is None

    def test_set_get_remove(self, store):
        store.set("identity", {"did": "did:example:a"})
        assert store.get("identity") == {"did": "did:example:a"}
        store.remove("identity")
        assert store.get("identity") is None

    def test_remove_missing_is_noop(self, store):
        store.remove("credentials")

    def test_satisfies_protocol(self, store):
        assert isinstance(store, DeviceStore)

    def test_unserializable_value(self, store):
        with pytest.raises(StorageWriteError):
            store.set("identity", {"raw": b"bytes"})

    def test_file_store_corrupt_json(self, tmp_path):
        store = FileDeviceStore(tmp_path)
        (tmp_path / "identity.json").write_text("{broken", encoding="utf-8")
        with pytest.raises(MalformedDocumentError):
            store.get("identity")

    def test_file_store_rejects_path_keys(self, tmp_path):
        with pytest.raises(ValueError):
            FileDeviceStore(tmp_path).get("../escape")


class TestVaultIndex:
    def test_identity_round_trip(self, store):
        index = VaultIndex(store)
        identity = key_identity.generate()
        assert index.load_identity() is None
        index.save_identity(identity)
        assert index.load_identity() == identity

    def test_corrupt_identity(self, store):
        store.set(IDENTITY_KEY, {"did": "did:example:a"})
        with pytest.raises(MalformedDocumentError):
            VaultIndex(store).load_identity()

    def test_append_requires_identity(self, store):
        index = VaultIndex(store)
        with pytest.raises(StorageWriteError):
            index.append_record(_record("did:example:nobody"))
        assert store.get(CREDENTIALS_KEY) is None

    def test_append_requires_matching_holder(self, store):
        index = VaultIndex(store)
        index.save_identity(key_identity.generate())
        with pytest.raises(StorageWriteError):
            index.append_record(_record("did:example:someone-else"))

    def test_records_newest_first(self, store):
        index = VaultIndex(store)
        identity = key_identity.generate()
        index.save_identity(identity)
        first = _record(identity.did, b"first")
        second = _record(identity.did, b"second")
        index.append_record(first)
        index.append_record(second)
        assert [r.storage_handle for r in index.list_records()] == [
            second.storage_handle,
            first.storage_handle,
        ]
        assert index.get_record(first.storage_handle) == first
        assert index.get_record(compute_cid(b"missing")) is None

    def test_record_with_envelope_round_trips(self, store):
        index = VaultIndex(store)
        identity = key_identity.generate()
        index.save_identity(identity)
        record = _record(identity.did, envelope=b"\x00\xffcipher", simulated=True)
        index.append_record(record)
        assert index.list_records() == [record]

    def test_remove_record(self, store):
        index = VaultIndex(store)
        identity = key_identity.generate()
        index.save_identity(identity)
        record = _record(identity.did)
        index.append_record(record)
        assert index.remove_record(record.storage_handle) is True
        assert index.remove_record(record.storage_handle) is False
        assert index.list_records() == []

    def test_clear_identity_removes_everything(self, store):
        index = VaultIndex(store)
        identity = key_identity.generate()
        index.save_identity(identity)
        index.append_record(_record(identity.did))
        index.clear_identity()
        assert index.load_identity() is None
        assert index.list_records() == []
