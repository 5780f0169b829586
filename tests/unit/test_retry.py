"""
Unit tests for the throttled write retry policy.
"""

import asyncio
import time

import pytest

from delayqueue.constants import BACKOFF_BASE_MS, BACKOFF_JITTER_MS, BATCH_LIMIT, MAX_RETRIES
from delayqueue.errors import RetriesExhaustedError
from delayqueue.retry import BackoffRetryWriter
from delayqueue.service import DelayQueue
from delayqueue.types.item import DelayQueueItem
from tests.fakes import ThrottlingStore


class TestBackoff:
    """Tests for the backoff schedule."""

    def test_backoff_doubles_without_jitter(self, metrics):
        """Each throttled attempt doubles the wait."""
        writer = BackoffRetryWriter(base_delay=0.001, max_jitter=0, metrics=metrics)

        waits = [writer.backoff_for(attempt) for attempt in range(MAX_RETRIES)]

        assert waits == pytest.approx([0.001, 0.002, 0.004, 0.008, 0.016])

    def test_jitter_is_bounded(self, metrics):
        """Jitter adds at most max_jitter seconds to the exponential wait."""
        writer = BackoffRetryWriter(base_delay=0.001, max_jitter=0.1, metrics=metrics)

        for attempt in range(MAX_RETRIES):
            for _ in range(20):
                wait = writer.backoff_for(attempt)
                floor = 0.001 * 2 ** attempt
                assert floor <= wait <= floor + 0.1

    def test_rejects_empty_budget(self, metrics):
        """At least one attempt is required."""
        with pytest.raises(ValueError):
            BackoffRetryWriter(max_retries=0, metrics=metrics)

    def test_from_settings(self, metrics):
        """Settings are given in milliseconds."""
        from delayqueue.config import Settings

        settings = Settings(save_max_retries=3, save_backoff_base_ms=2, save_backoff_jitter_ms=50)

        writer = BackoffRetryWriter.from_settings(settings, metrics)

        assert writer.max_retries == 3
        assert writer.base_delay == pytest.approx(0.002)
        assert writer.max_jitter == pytest.approx(0.05)

    def test_settings_defaults_follow_constants(self):
        """Unconfigured processes use the library retry and batch constants."""
        from delayqueue.config import Settings

        fields = Settings.model_fields

        assert fields["save_max_retries"].default == MAX_RETRIES
        assert fields["save_backoff_base_ms"].default == BACKOFF_BASE_MS
        assert fields["save_backoff_jitter_ms"].default == BACKOFF_JITTER_MS
        assert fields["dispatch_batch_limit"].default == BATCH_LIMIT


class TestSaveRetries:
    """Tests for save under throttling."""

    @pytest.mark.asyncio
    async def test_exhausts_after_max_retries(self, fast_writer, metrics):
        """A store that always throttles is tried exactly MAX_RETRIES times."""
        store = ThrottlingStore(throttle_puts=None)
        delay_queue = DelayQueue(store, writer=fast_writer, metrics=metrics)
        item = DelayQueueItem.create("t", payload={"k": "v"})

        with pytest.raises(RetriesExhaustedError) as exc_info:
            await delay_queue.save(item)

        assert store.put_calls == MAX_RETRIES
        assert exc_info.value.item_id == item.id
        assert exc_info.value.attempts == MAX_RETRIES
        assert item.id in str(exc_info.value)
        assert exc_info.value.item["payload"] == {"k": "v"}
        assert len(store) == 0
        assert metrics.registry.get_sample_value("delay_queue_save_exhausted_total") == 1
        assert metrics.registry.get_sample_value("delay_queue_save_throttled_total") == MAX_RETRIES

    @pytest.mark.asyncio
    async def test_succeeds_after_throttling(self, fast_writer, metrics):
        """Throttles short of the budget are absorbed."""
        store = ThrottlingStore(throttle_puts=MAX_RETRIES - 1)
        delay_queue = DelayQueue(store, writer=fast_writer, metrics=metrics)
        item = DelayQueueItem.create("t")

        saved = await delay_queue.save(item)

        assert saved == item
        assert store.put_calls == MAX_RETRIES
        assert await delay_queue.get(item.id) == item

    @pytest.mark.asyncio
    async def test_non_throttle_error_is_not_retried(self, fast_writer, metrics):
        """Anything other than throttling propagates on the first attempt."""
        store = ThrottlingStore(put_error=RuntimeError("disk on fire"))
        delay_queue = DelayQueue(store, writer=fast_writer, metrics=metrics)

        with pytest.raises(RuntimeError, match="disk on fire"):
            await delay_queue.save(DelayQueueItem.create("t"))

        assert store.put_calls == 1

    @pytest.mark.asyncio
    async def test_cancellation_interrupts_backoff(self, metrics):
        """Cancelling the caller ends the wait promptly and makes no further attempts."""
        store = ThrottlingStore(throttle_puts=None)
        writer = BackoffRetryWriter(base_delay=30, max_jitter=0, metrics=metrics)
        delay_queue = DelayQueue(store, writer=writer, metrics=metrics)

        task = asyncio.create_task(delay_queue.save(DelayQueueItem.create("t")))
        while store.put_calls == 0:
            await asyncio.sleep(0.01)

        started = time.monotonic()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert time.monotonic() - started < 1.0
        assert store.put_calls == 1
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_single_attempt_budget(self, metrics):
        """With a budget of one the first throttle is final."""
        store = ThrottlingStore(throttle_puts=None)
        writer = BackoffRetryWriter(max_retries=1, base_delay=30, metrics=metrics)
        delay_queue = DelayQueue(store, writer=writer, metrics=metrics)

        with pytest.raises(RetriesExhaustedError):
            await asyncio.wait_for(delay_queue.save(DelayQueueItem.create("t")), timeout=1)

        assert store.put_calls == 1
