"""Tests for the aggregation engine lifecycle and fan-out."""

import pytest

from ranking.core.engine import AggregationEngine, EngineState
from ranking.core.records import EntryRecord
from ranking.storage.base import StoreUnavailable, Subscription
from ranking.storage.memory import MemoryStore


class HeldStore(MemoryStore):
    """Store whose subscriptions wait for an explicit first snapshot."""

    def __init__(self) -> None:
        super().__init__()
        self.pending: list[Subscription] = []

    def subscribe(self, on_snapshot, on_error) -> Subscription:
        sub = Subscription(on_snapshot, on_error)
        self.pending.append(sub)
        return sub

    def release(self, records: list[EntryRecord]) -> None:
        for sub in self.pending:
            sub.deliver(records)


class UnreachableStore(MemoryStore):
    def subscribe(self, on_snapshot, on_error) -> Subscription:
        raise RuntimeError("no running event loop")


class TestSubscribe:
    """First delivery and lifecycle states."""

    def test_starts_detached(self, memory_store: MemoryStore) -> None:
        engine = AggregationEngine(memory_store)

        assert engine.state is EngineState.DETACHED
        assert engine.projection == ()

    def test_first_observer_gets_current_projection(self, memory_store: MemoryStore, recorder) -> None:
        engine = AggregationEngine(memory_store)

        engine.subscribe(recorder)

        assert engine.state is EngineState.LIVE
        assert recorder.calls == [()]

    @pytest.mark.asyncio
    async def test_late_subscriber_sees_prior_writes(self, memory_store: MemoryStore, make_recorder) -> None:
        engine = AggregationEngine(memory_store)
        early = make_recorder()
        engine.subscribe(early)
        await memory_store.append({"name": "Ana", "score": 3})
        await memory_store.append({"name": "ana", "score": 8})
        await memory_store.append({"name": "Bob", "score": 5})

        late = make_recorder()
        engine.subscribe(late)

        assert len(late.calls) == 1
        assert [(r.display_name, r.best_score) for r in late.last] == [("ana", 8), ("Bob", 5)]

    @pytest.mark.asyncio
    async def test_subscribing_after_writes_with_no_prior_observer(self, make_recorder) -> None:
        store = MemoryStore([{"name": "a", "score": 1}, {"name": "b", "score": 2}])
        engine = AggregationEngine(store)

        obs = make_recorder()
        engine.subscribe(obs)

        assert [r.display_name for r in obs.last] == ["b", "a"]

    def test_only_one_store_subscription(self, memory_store: MemoryStore, make_recorder) -> None:
        engine = AggregationEngine(memory_store)

        engine.subscribe(make_recorder())
        engine.subscribe(make_recorder())

        assert memory_store.subscriber_count == 1

    def test_same_observer_registered_once(self, memory_store: MemoryStore, recorder) -> None:
        engine = AggregationEngine(memory_store)

        engine.subscribe(recorder)
        engine.subscribe(recorder)

        assert engine.observer_count == 1


class TestNotifications:
    @pytest.mark.asyncio
    async def test_one_recompute_per_change(self, memory_store: MemoryStore, recorder) -> None:
        engine = AggregationEngine(memory_store)
        engine.subscribe(recorder)

        await memory_store.append({"name": "a", "score": 1})
        await memory_store.append({"name": "b", "score": 2})

        assert engine.recomputations == 3
        assert len(recorder.calls) == 3
        assert engine.projection is recorder.last

    @pytest.mark.asyncio
    async def test_delivery_in_registration_order(self, memory_store: MemoryStore) -> None:
        engine = AggregationEngine(memory_store)
        order: list[str] = []
        engine.subscribe(lambda p: order.append("first"))
        engine.subscribe(lambda p: order.append("second"))
        order.clear()

        await memory_store.append({"name": "a", "score": 1})

        assert order == ["first", "second"]

    @pytest.mark.asyncio
    async def test_failing_observer_does_not_block_others(self, memory_store: MemoryStore, recorder) -> None:
        engine = AggregationEngine(memory_store)

        def broken(_projection):
            raise RuntimeError("observer blew up")

        engine.subscribe(broken)
        engine.subscribe(recorder)

        await memory_store.append({"name": "a", "score": 4})

        assert recorder.last[0].best_score == 4

    @pytest.mark.asyncio
    async def test_projection_is_immutable(self, memory_store: MemoryStore, recorder) -> None:
        engine = AggregationEngine(memory_store)
        engine.subscribe(recorder)
        await memory_store.append({"name": "a", "score": 4})

        assert isinstance(recorder.last, tuple)
        with pytest.raises(AttributeError):
            recorder.last[0].best_score = 99  # type: ignore[misc]


class TestUnsubscribe:
    @pytest.mark.asyncio
    async def test_unsubscribed_observer_gets_no_more(self, memory_store: MemoryStore, make_recorder) -> None:
        engine = AggregationEngine(memory_store)
        keep, leave = make_recorder(), make_recorder()
        engine.subscribe(keep)
        stop = engine.subscribe(leave)

        stop()
        stop()
        await memory_store.append({"name": "a", "score": 1})

        assert len(leave.calls) == 1
        assert len(keep.calls) == 2

    def test_last_observer_detaches(self, memory_store: MemoryStore, recorder) -> None:
        engine = AggregationEngine(memory_store)
        stop = engine.subscribe(recorder)

        stop()

        assert engine.state is EngineState.DETACHED
        assert memory_store.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_unsubscribe_during_delivery_finishes_current(self, memory_store: MemoryStore, recorder) -> None:
        engine = AggregationEngine(memory_store)
        handles = {}

        def leaver(_projection):
            stop = handles.get("stop")
            if stop:
                stop()

        handles["stop"] = engine.subscribe(leaver)
        engine.subscribe(recorder)
        await memory_store.append({"name": "a", "score": 1})

        assert engine.observer_count == 1
        assert recorder.last[0].display_name == "a"


class TestErrors:
    """Subscription failure degrades to an empty ranking."""

    @pytest.mark.asyncio
    async def test_error_delivers_empty_projection(self, memory_store: MemoryStore, recorder) -> None:
        await memory_store.append({"name": "a", "score": 1})
        engine = AggregationEngine(memory_store)
        engine.subscribe(recorder)

        memory_store.fail_subscribers(StoreUnavailable("connection dropped"))

        assert engine.state is EngineState.ERRORED
        assert recorder.last == ()
        assert engine.projection == ()

    @pytest.mark.asyncio
    async def test_no_automatic_retry(self, memory_store: MemoryStore, make_recorder) -> None:
        engine = AggregationEngine(memory_store)
        obs = make_recorder()
        engine.subscribe(obs)
        memory_store.fail_subscribers(StoreUnavailable("gone"))

        await memory_store.append({"name": "a", "score": 1})
        late = make_recorder()
        engine.subscribe(late)

        assert engine.state is EngineState.ERRORED
        assert late.calls == [()]
        assert memory_store.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_restart_reattaches(self, memory_store: MemoryStore, recorder) -> None:
        engine = AggregationEngine(memory_store)
        engine.subscribe(recorder)
        memory_store.fail_subscribers(StoreUnavailable("gone"))
        await memory_store.append({"name": "a", "score": 2})

        engine.restart()

        assert engine.state is EngineState.LIVE
        assert recorder.last[0].best_score == 2

    def test_failed_attach_reports_empty_projection(self, make_recorder) -> None:
        engine = AggregationEngine(UnreachableStore())
        first, late = make_recorder(), make_recorder()

        engine.subscribe(first)
        engine.subscribe(late)

        assert engine.state is EngineState.ERRORED
        assert first.calls == [()]
        assert late.calls == [()]

    def test_restart_after_failed_attach_stays_errored(self, recorder) -> None:
        engine = AggregationEngine(UnreachableStore())
        engine.subscribe(recorder)

        engine.restart()

        assert engine.state is EngineState.ERRORED
        assert recorder.calls == [(), ()]


class TestPendingFirstSnapshot:
    """Observers registered before the store answers share its first snapshot."""

    def test_waits_in_subscribing(self, recorder) -> None:
        store = HeldStore()
        engine = AggregationEngine(store)

        engine.subscribe(recorder)

        assert engine.state is EngineState.SUBSCRIBING
        assert recorder.calls == []
        assert len(store.pending) == 1

    def test_first_snapshot_reaches_all_in_order(self) -> None:
        store = HeldStore()
        engine = AggregationEngine(store)
        seen: list[tuple[str, tuple]] = []
        engine.subscribe(lambda p: seen.append(("first", p)))
        engine.subscribe(lambda p: seen.append(("second", p)))

        store.release([EntryRecord(name="Ana", score=4)])

        assert engine.state is EngineState.LIVE
        assert len(store.pending) == 1
        assert [who for who, _ in seen] == ["first", "second"]
        assert [p[0].best_score for _, p in seen] == [4, 4]
