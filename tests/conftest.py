"""Shared fixtures for credvault tests."""

from __future__ import annotations

import logging

import pytest
import pytest_asyncio

from credvault.core.issuer import LocalIssuer
from credvault.core.lifecycle import CredentialLifecycle
from credvault.storage.content import MemoryContentStore
from credvault.storage.device import MemoryDeviceStore, VaultIndex

ISSUER_SEED = bytes.fromhex("07" * 32)


@pytest.fixture(autouse=True)
def _restore_root_logger():
    """setup_logging() replaces root handlers; put them back after each test."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def issuer():
    """Deterministic in-process issuer."""
    return LocalIssuer(seed=ISSUER_SEED, name="Example Tech University")


@pytest.fixture
def device_store():
    return MemoryDeviceStore()


@pytest.fixture
def index(device_store):
    return VaultIndex(device_store)


@pytest.fixture
def content_store():
    return MemoryContentStore()


@pytest.fixture
def transitions():
    """Collects lifecycle transitions delivered to the listener."""
    return []


@pytest.fixture
def lifecycle(index, content_store, issuer, transitions):
    """Lifecycle wired to in-memory stores, with fast retries."""
    return CredentialLifecycle(
        index,
        content_store,
        issuer,
        timeout=1.0,
        retry_attempts=3,
        retry_backoff=0,
        listener=transitions.append,
    )


@pytest_asyncio.fixture
async def holder(lifecycle):
    """Device identity stored in the lifecycle's index."""
    return await lifecycle.create_identity()
