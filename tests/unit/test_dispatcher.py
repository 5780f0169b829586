"""
Unit tests for the dispatcher and its interval scheduler.
"""

import asyncio
from collections import Counter
from unittest.mock import MagicMock

import pytest

import delayqueue.dispatcher.main as dispatcher_main
from delayqueue.config import Settings
from delayqueue.constants import CLAIM_CLAIMED
from delayqueue.dispatcher.main import Dispatcher, DispatchScheduler
from delayqueue.errors import ClaimThrottledError, PushError, StoreThrottledError
from delayqueue.service import DelayQueue
from delayqueue.store.memory import MemoryItemStore
from delayqueue.workqueue.memory import InMemoryWorkQueue
from tests.fakes import BrokenSchemaStore, FailingWorkQueue, ThrottlingStore


class StolenClaimStore(MemoryItemStore):
    """Memory store where another dispatcher claims selected items first."""

    def __init__(self, stolen: set[str]):
        super().__init__()
        self.stolen = stolen

    async def conditional_increment(self, item_id, expected, new_value, claimed_at):
        if item_id in self.stolen:
            await super().conditional_increment(item_id, expected, new_value, claimed_at)
        return await super().conditional_increment(item_id, expected, new_value, claimed_at)


class UnavailableStore(MemoryItemStore):
    """Memory store whose ready scan always fails."""

    async def query_ready(self, partition, before, limit, claim_marker=0):
        raise StoreThrottledError("query throttled")


class TestDispatcher:
    """Tests for a single dispatch pass."""

    @pytest.mark.asyncio
    async def test_dispatches_ready_items(
        self,
        dispatcher: Dispatcher,
        delay_queue: DelayQueue,
        work_queue: InMemoryWorkQueue,
        now: int,
    ):
        """Ready items become envelopes in schedule order; future items wait."""
        first = await delay_queue.save(delay_queue.create("email", scheduled_at=now - 20, payload={"n": 1}))
        second = await delay_queue.save(delay_queue.create("sms", scheduled_at=now - 10, payload={"n": 2}))
        later = await delay_queue.save(delay_queue.create("email", scheduled_at=now + 3600))

        report = await dispatcher.run_once(now=now)

        assert report.ok
        assert report.polled == 2
        assert report.dispatched == [first.id, second.id]

        envelopes = work_queue.drain()
        assert [e.origin_id for e in envelopes] == [first.id, second.id]
        assert [e.type for e in envelopes] == ["email", "sms"]
        assert [e.payload for e in envelopes] == [{"n": 1}, {"n": 2}]
        assert envelopes[0].origin_scheduled_at == now - 20

        assert (await delay_queue.get(first.id)).claim_marker == CLAIM_CLAIMED
        assert (await delay_queue.get(later.id)).claim_marker == 0

    @pytest.mark.asyncio
    async def test_second_pass_dispatches_nothing(
        self,
        dispatcher: Dispatcher,
        delay_queue: DelayQueue,
        work_queue: InMemoryWorkQueue,
        now: int,
    ):
        """Claimed items are never dispatched again."""
        await delay_queue.save(delay_queue.create("t", scheduled_at=now - 1))

        await dispatcher.run_once(now=now)
        report = await dispatcher.run_once(now=now)

        assert report.polled == 0
        assert report.dispatched == []
        assert len(work_queue.drain()) == 1

    @pytest.mark.asyncio
    async def test_batch_limit(self, delay_queue: DelayQueue, work_queue: InMemoryWorkQueue, metrics, now: int):
        """A pass handles at most ``batch_limit`` items."""
        for offset in range(1, 8):
            await delay_queue.save(delay_queue.create("t", scheduled_at=now - offset))
        dispatcher = Dispatcher(delay_queue, work_queue, batch_limit=3, metrics=metrics)

        report = await dispatcher.run_once(now=now)

        assert len(report.dispatched) == 3
        assert len(work_queue.drain()) == 3

    @pytest.mark.asyncio
    async def test_contended_items_are_skipped(
        self,
        fast_writer,
        work_queue: InMemoryWorkQueue,
        metrics,
        now: int,
    ):
        """An item claimed by someone else between poll and claim is not pushed."""
        store = StolenClaimStore(stolen=set())
        delay_queue = DelayQueue(store, writer=fast_writer, metrics=metrics)
        taken = await delay_queue.save(delay_queue.create("t", scheduled_at=now - 2))
        free = await delay_queue.save(delay_queue.create("t", scheduled_at=now - 1))
        store.stolen.add(taken.id)
        dispatcher = Dispatcher(delay_queue, work_queue, batch_limit=10, metrics=metrics)

        report = await dispatcher.run_once(now=now)

        assert report.ok
        assert report.contended == [taken.id]
        assert report.dispatched == [free.id]
        assert [e.origin_id for e in work_queue.drain()] == [free.id]

    @pytest.mark.asyncio
    async def test_push_failure_keeps_claim_and_continues(self, fast_writer, metrics, now: int):
        """A failed push is reported, the claim stays, and later items still go out."""
        store = MemoryItemStore()
        delay_queue = DelayQueue(store, writer=fast_writer, metrics=metrics)
        ok_first = await delay_queue.save(delay_queue.create("ok", scheduled_at=now - 3))
        broken = await delay_queue.save(delay_queue.create("boom", scheduled_at=now - 2))
        ok_last = await delay_queue.save(delay_queue.create("ok", scheduled_at=now - 1))
        work_queue = FailingWorkQueue({"boom"})
        dispatcher = Dispatcher(delay_queue, work_queue, batch_limit=10, metrics=metrics)

        report = await dispatcher.run_once(now=now)

        assert not report.ok
        assert report.dispatched == [ok_first.id, ok_last.id]
        assert set(report.push_errors) == {broken.id}
        error = report.push_errors[broken.id]
        assert isinstance(error, PushError)
        assert isinstance(error.__cause__, ConnectionError)

        assert (await delay_queue.get(broken.id)).claim_marker == CLAIM_CLAIMED
        assert await delay_queue.pop_ready(now=now) == []
        assert metrics.registry.get_sample_value("delay_queue_push_failures_total", {"type": "boom"}) == 1

    @pytest.mark.asyncio
    async def test_lock_error_leaves_item_for_next_pass(
        self,
        fast_writer,
        work_queue: InMemoryWorkQueue,
        metrics,
        now: int,
    ):
        """A throttled claim is skipped without pushing and retried on a later pass."""
        store = ThrottlingStore()
        delay_queue = DelayQueue(store, writer=fast_writer, metrics=metrics)
        flaky = await delay_queue.save(delay_queue.create("t", scheduled_at=now - 2))
        steady = await delay_queue.save(delay_queue.create("t", scheduled_at=now - 1))
        store.throttled_claims.add(flaky.id)
        dispatcher = Dispatcher(delay_queue, work_queue, batch_limit=10, metrics=metrics)

        report = await dispatcher.run_once(now=now)

        assert report.dispatched == [steady.id]
        assert isinstance(report.lock_errors[flaky.id], ClaimThrottledError)
        assert [e.origin_id for e in work_queue.drain()] == [steady.id]

        store.throttled_claims.clear()
        retry = await dispatcher.run_once(now=now)

        assert retry.dispatched == [flaky.id]

    @pytest.mark.asyncio
    async def test_poll_failure_propagates(self, fast_writer, work_queue: InMemoryWorkQueue, metrics):
        """If the ready scan fails the pass fails and nothing is pushed."""
        delay_queue = DelayQueue(UnavailableStore(), writer=fast_writer, metrics=metrics)
        dispatcher = Dispatcher(delay_queue, work_queue, batch_limit=10, metrics=metrics)

        with pytest.raises(StoreThrottledError):
            await dispatcher.run_once()

        assert work_queue.drain() == []

    @pytest.mark.asyncio
    async def test_concurrent_dispatchers_are_disjoint(
        self,
        delay_queue: DelayQueue,
        work_queue: InMemoryWorkQueue,
        metrics,
        now: int,
    ):
        """Dispatchers racing over the same items push each one exactly once."""
        items = [
            await delay_queue.save(delay_queue.create("t", scheduled_at=now - offset))
            for offset in range(1, 21)
        ]
        dispatchers = [
            Dispatcher(delay_queue, work_queue, batch_limit=50, metrics=metrics)
            for _ in range(4)
        ]

        reports = await asyncio.gather(*(d.run_once(now=now) for d in dispatchers))

        dispatched = [item_id for report in reports for item_id in report.dispatched]
        assert sorted(dispatched) == sorted(item.id for item in items)

        pushed = Counter(e.origin_id for e in work_queue.drain())
        assert set(pushed) == {item.id for item in items}
        assert set(pushed.values()) == {1}


class TestDispatchScheduler:
    """Tests for the interval scheduler."""

    @pytest.mark.asyncio
    async def test_runs_passes_until_stopped(
        self,
        dispatcher: Dispatcher,
        delay_queue: DelayQueue,
        work_queue: InMemoryWorkQueue,
    ):
        """The loop dispatches items saved while it runs and exits promptly on stop."""
        scheduler = DispatchScheduler(dispatcher, interval_seconds=0.01)
        task = asyncio.create_task(scheduler.start())

        item = await delay_queue.save(delay_queue.create("t", scheduled_at=1))
        envelope = await work_queue.pop(timeout=2)

        await scheduler.stop()
        await asyncio.wait_for(task, timeout=2)

        assert envelope is not None
        assert envelope.origin_id == item.id

    @pytest.mark.asyncio
    async def test_pass_errors_do_not_stop_loop(self, fast_writer, work_queue: InMemoryWorkQueue, metrics):
        """A failing pass is logged and the scheduler keeps going."""
        delay_queue = DelayQueue(UnavailableStore(), writer=fast_writer, metrics=metrics)
        dispatcher = Dispatcher(delay_queue, work_queue, batch_limit=10, metrics=metrics)
        scheduler = DispatchScheduler(dispatcher, interval_seconds=0.01)

        task = asyncio.create_task(scheduler.start())
        await asyncio.sleep(0.05)

        assert not task.done()

        await scheduler.stop()
        await asyncio.wait_for(task, timeout=2)


class TestRunOnceAsync:
    """Process startup and shutdown for the one-shot entry point."""

    @pytest.fixture
    def startup(self, monkeypatch, metrics) -> list[bool]:
        """Replace process setup with in-memory parts; returns close_db calls."""
        closed: list[bool] = []

        async def fake_init_db():
            return MagicMock()

        async def fake_close_db():
            closed.append(True)

        monkeypatch.setattr(dispatcher_main, "_start_process", lambda process_name: None)
        monkeypatch.setattr(dispatcher_main, "setup_metrics", lambda: metrics)
        monkeypatch.setattr(dispatcher_main, "get_settings", lambda: Settings(store_backend="sql"))
        monkeypatch.setattr(dispatcher_main, "init_db", fake_init_db)
        monkeypatch.setattr(dispatcher_main, "close_db", fake_close_db)
        monkeypatch.setattr(dispatcher_main, "instrument_sqlalchemy", lambda engine: None)
        monkeypatch.setattr(dispatcher_main, "build_work_queue", lambda settings: InMemoryWorkQueue())
        return closed

    @pytest.mark.asyncio
    async def test_engine_disposed_when_schema_setup_fails(self, monkeypatch, startup: list[bool]):
        """A failure between init_db and the first pass still closes the database."""
        monkeypatch.setattr(dispatcher_main, "build_store", lambda settings, engine: BrokenSchemaStore())

        with pytest.raises(RuntimeError, match="schema"):
            await dispatcher_main.run_once_async()

        assert startup == [True]

    @pytest.mark.asyncio
    async def test_engine_disposed_after_pass(self, monkeypatch, startup: list[bool]):
        """A normal pass reports and closes the database once."""
        monkeypatch.setattr(dispatcher_main, "build_store", lambda settings, engine: MemoryItemStore())

        report = await dispatcher_main.run_once_async()

        assert report.ok
        assert startup == [True]
