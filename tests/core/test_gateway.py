"""Tests for the submission gateway's fail-open authorization."""

import asyncio

import pytest

from ranking.core.gateway import SubmissionGateway
from ranking.core.records import EntryRecord
from ranking.storage.base import StoreUnavailable
from ranking.storage.memory import MemoryStore


class BrokenStore(MemoryStore):
    async def append(self, record):
        raise StoreUnavailable("disk full")


class TestSubmit:
    @pytest.mark.asyncio
    async def test_returns_store_assigned_id(self, memory_store: MemoryStore) -> None:
        gateway = SubmissionGateway(memory_store)

        record_id = await gateway.submit({"name": "Ana", "score": 10})

        stored = await memory_store.read_all()
        assert [r.record_id for r in stored] == [record_id]

    @pytest.mark.asyncio
    async def test_large_integer_score_stored_exactly(self, memory_store: MemoryStore) -> None:
        gateway = SubmissionGateway(memory_store)

        await gateway.submit({"name": "a", "score": 2**53 + 1})

        assert (await memory_store.read_all())[0].score == 2**53 + 1

    @pytest.mark.asyncio
    async def test_defaults_applied(self, memory_store: MemoryStore) -> None:
        gateway = SubmissionGateway(memory_store)

        await gateway.submit({"score": "abc"})

        stored = (await memory_store.read_all())[0]
        assert stored.name == "Anonymous"
        assert stored.score == 0
        assert isinstance(stored.timestamp, int)

    @pytest.mark.asyncio
    async def test_keeps_caller_timestamp_and_id(self, memory_store: MemoryStore) -> None:
        gateway = SubmissionGateway(memory_store)

        record_id = await gateway.submit(EntryRecord(name="Bo", score=2, timestamp=123, record_id="mine"))

        stored = (await memory_store.read_all())[0]
        assert record_id == "mine"
        assert stored.timestamp == 123

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self) -> None:
        gateway = SubmissionGateway(BrokenStore())

        with pytest.raises(StoreUnavailable):
            await gateway.submit({"name": "Ana", "score": 1})


class TestAuthorization:
    """Authorization is awaited first but never blocks the append."""

    @pytest.mark.asyncio
    async def test_authorizer_runs_before_append(self, memory_store: MemoryStore) -> None:
        seen: list[int] = []

        async def authorize():
            seen.append(len(await memory_store.read_all()))

        gateway = SubmissionGateway(memory_store, authorizer=authorize)
        await gateway.submit({"name": "Ana", "score": 1})

        assert seen == [0]
        assert gateway.authorized

    @pytest.mark.asyncio
    async def test_authorizes_only_once(self, memory_store: MemoryStore) -> None:
        calls: list[int] = []

        async def authorize():
            calls.append(1)

        gateway = SubmissionGateway(memory_store, authorizer=authorize)
        await gateway.submit({"name": "a"})
        await gateway.submit({"name": "b"})

        assert calls == [1]

    @pytest.mark.asyncio
    async def test_failed_authorization_still_appends(self, memory_store: MemoryStore) -> None:
        async def authorize():
            raise PermissionError("anonymous sign-in disabled")

        gateway = SubmissionGateway(memory_store, authorizer=authorize)
        await gateway.submit({"name": "Ana", "score": 3})

        assert len(await memory_store.read_all()) == 1
        assert not gateway.authorized

    @pytest.mark.asyncio
    async def test_slow_authorization_is_abandoned(self, memory_store: MemoryStore) -> None:
        async def authorize():
            await asyncio.sleep(10)

        gateway = SubmissionGateway(memory_store, authorizer=authorize, auth_timeout=0.05)
        await gateway.submit({"name": "Ana", "score": 3})

        assert len(await memory_store.read_all()) == 1
