"""Timeouts, retries, cancellation and serialization of lifecycle operations."""

import asyncio
from itertools import groupby

import pytest

from credvault.core.lifecycle import CredentialLifecycle
from credvault.core.models import LifecycleState
from credvault.exceptions import TimeoutError as CallTimeoutError
from credvault.exceptions import TransientStoreError
from credvault.storage.content import MemoryContentStore

DEGREE = {"degree": "Bachelor of Science", "year": 2023}


class FlakyStore(MemoryContentStore):
    """Fails the first *failures* puts with a transient error."""

    def __init__(self, failures):
        super().__init__()
        self.failures = failures
        self.put_calls = 0

    async def put(self, data):
        self.put_calls += 1
        if self.put_calls <= self.failures:
            raise TransientStoreError("node unavailable")
        return await super().put(data)


class HangingStore(MemoryContentStore):
    """Put never completes; signals when it has been entered."""

    def __init__(self):
        super().__init__()
        self.entered = asyncio.Event()
        self.put_calls = 0

    async def put(self, data):
        self.put_calls += 1
        self.entered.set()
        await asyncio.sleep(3600)
        return await super().put(data)


def _lifecycle(index, store, issuer, transitions=None, **kwargs):
    kwargs.setdefault("timeout", 0.05)
    kwargs.setdefault("retry_attempts", 3)
    kwargs.setdefault("retry_backoff", 0)
    listener = transitions.append if transitions is not None else None
    return CredentialLifecycle(index, store, issuer, listener=listener, **kwargs)


class TestRetries:
    async def test_transient_failures_are_retried(self, index, issuer, holder):
        store = FlakyStore(failures=2)
        lifecycle = _lifecycle(index, store, issuer)
        record = await lifecycle.issue(DEGREE)
        assert store.put_calls == 3
        assert record.storage_handle in store

    async def test_retries_exhausted(self, index, issuer, holder):
        store = FlakyStore(failures=5)
        transitions = []
        lifecycle = _lifecycle(index, store, issuer, transitions)
        with pytest.raises(CallTimeoutError) as exc_info:
            await lifecycle.issue(DEGREE)
        assert store.put_calls == 3
        assert exc_info.value.state == "encrypted"
        assert transitions[-1].state == LifecycleState.FAILED
        assert lifecycle.list_credentials() == []

    async def test_backoff_doubles(self, index, issuer, holder, monkeypatch):
        delays = []
        real_sleep = asyncio.sleep

        async def fake_sleep(delay, *args, **kwargs):
            delays.append(delay)
            await real_sleep(0)

        lifecycle = _lifecycle(
            index, FlakyStore(failures=3), issuer, retry_attempts=4, retry_backoff=0.5
        )
        monkeypatch.setattr("credvault.core.lifecycle.asyncio.sleep", fake_sleep)
        await lifecycle.issue(DEGREE)
        assert delays == [0.5, 1.0, 2.0]


class TestTimeouts:
    async def test_hanging_store_times_out(self, index, issuer, holder):
        store = HangingStore()
        transitions = []
        lifecycle = _lifecycle(index, store, issuer, transitions, retry_attempts=2)
        with pytest.raises(CallTimeoutError) as exc_info:
            await lifecycle.issue(DEGREE)
        assert store.put_calls == 2
        assert exc_info.value.state == "encrypted"
        assert [t.state for t in transitions] == [
            LifecycleState.REQUESTED,
            LifecycleState.SIGNED,
            LifecycleState.ENCRYPTED,
            LifecycleState.FAILED,
        ]
        assert len(store) == 0
        assert lifecycle.list_credentials() == []


class TestCancellation:
    async def test_cancel_leaves_no_record(self, index, issuer, holder):
        store = HangingStore()
        transitions = []
        lifecycle = _lifecycle(index, store, issuer, transitions, timeout=60)
        task = asyncio.create_task(lifecycle.issue(DEGREE))
        await store.entered.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert transitions[-1].state == LifecycleState.FAILED
        assert lifecycle.list_credentials() == []

    async def test_lock_released_after_cancel(self, index, issuer, holder):
        store = HangingStore()
        lifecycle = _lifecycle(index, store, issuer, timeout=60)
        task = asyncio.create_task(lifecycle.issue(DEGREE))
        await store.entered.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        lifecycle.content_store = MemoryContentStore()
        record = await lifecycle.issue(DEGREE)
        assert lifecycle.list_credentials() == [record]


class TestSerialization:
    async def test_concurrent_issues_all_recorded(self, lifecycle, holder, transitions):
        claims = [{"course": f"Course {i}"} for i in range(5)]
        records = await asyncio.gather(*(lifecycle.issue(c) for c in claims))

        assert len({r.storage_handle for r in records}) == 5
        assert {r.storage_handle for r in lifecycle.list_credentials()} == {
            r.storage_handle for r in records
        }

        # Each operation's transitions form one contiguous, complete run
        runs = [
            (op_id, [t.state for t in group])
            for op_id, group in groupby(transitions, lambda t: t.operation_id)
        ]
        assert len(runs) == 5
        for _, states in runs:
            assert states[-1] == LifecycleState.DONE
            assert len(states) == 5

    async def test_issue_and_verify_interleave_safely(self, lifecycle, holder, transitions):
        first = await lifecycle.issue({"course": "Algorithms"})
        transitions.clear()
        report, second = await asyncio.gather(
            lifecycle.verify(first.storage_handle),
            lifecycle.issue({"course": "Databases"}),
        )
        assert report.verified is True
        assert second.storage_handle != first.storage_handle
        runs = [op_id for op_id, _ in groupby(transitions, lambda t: t.operation_id)]
        assert len(runs) == 2

    async def test_lifecycles_sharing_an_index_serialize(self, index, issuer, holder):
        store = MemoryContentStore()
        transitions = []
        first = _lifecycle(index, store, issuer, transitions, timeout=1.0)
        second = _lifecycle(index, store, issuer, transitions, timeout=1.0)
        assert first._lock is second._lock

        records = await asyncio.gather(
            *(lc.issue({"course": f"Course {i}"}) for i, lc in enumerate([first, second] * 3))
        )
        assert {r.storage_handle for r in index.list_records()} == {
            r.storage_handle for r in records
        }
        runs = [op_id for op_id, _ in groupby(transitions, lambda t: t.operation_id)]
        assert len(runs) == 6
