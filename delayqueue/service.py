"""
Delay queue operations: create, persist, fetch, delete, claim and poll items.
"""

import logging
import time
from typing import Any

from delayqueue.config import Settings
from delayqueue.constants import (
    BATCH_LIMIT,
    CLAIM_CLAIMED,
    CLAIM_UNCLAIMED,
    SPAN_CHECK_LOCK,
    STATIC_PARTITION,
    THROTTLE_RETRY_JOB,
    ClaimOutcome,
)
from delayqueue.errors import ClaimThrottledError, RetriesExhaustedError, StoreThrottledError
from delayqueue.observability.metrics import MetricsCollector, get_metrics
from delayqueue.observability.tracing import get_tracer
from delayqueue.retry import BackoffRetryWriter
from delayqueue.store.base import ItemStore
from delayqueue.types.envelope import JobEnvelope
from delayqueue.types.item import DelayQueueItem
from delayqueue.workqueue.base import WorkQueue

logger = logging.getLogger(__name__)


class DelayQueue:
    """
    Service over an item store implementing the delay queue operations.

    Writes go through a ``BackoffRetryWriter``; claims are a single
    conditional increment and are never retried here, so a throttled claim
    is reported to the caller as an unknown outcome.
    """

    def __init__(
        self,
        store: ItemStore,
        writer: BackoffRetryWriter | None = None,
        metrics: MetricsCollector | None = None,
        throttle_retry_queue: WorkQueue | None = None,
    ):
        """
        Initialize the service.

        Args:
            store: The item store.
            writer: Retry policy for writes; library defaults if omitted.
            metrics: Metrics collector; the process-wide one by default.
            throttle_retry_queue: Optional work queue on which ``schedule``
                parks items whose save exhausted its retries.
        """
        self.store = store
        self._metrics = metrics if metrics is not None else get_metrics()
        self.writer = writer or BackoffRetryWriter(metrics=self._metrics)
        self._throttle_retry_queue = throttle_retry_queue

    @classmethod
    def from_settings(
        cls,
        store: ItemStore,
        settings: Settings,
        work_queue: WorkQueue | None = None,
        metrics: MetricsCollector | None = None,
    ) -> "DelayQueue":
        """
        Build the service for a process.

        ``work_queue`` becomes the throttle retry queue only when
        ``settings.throttle_retry_via_queue`` is enabled.
        """
        return cls(
            store,
            writer=BackoffRetryWriter.from_settings(settings, metrics),
            metrics=metrics,
            throttle_retry_queue=work_queue if settings.throttle_retry_via_queue else None,
        )

    @staticmethod
    def create(
        item_type: str,
        scheduled_at: int | None = None,
        payload: Any = None,
    ) -> DelayQueueItem:
        """Build a new item with a fresh ID; ``scheduled_at`` defaults to now."""
        return DelayQueueItem.create(item_type, scheduled_at, payload)

    async def save(self, item: DelayQueueItem) -> DelayQueueItem:
        """
        Persist an item, backing off while the store is throttled.

        Args:
            item: The item to write. A missing ID or schedule time is filled in.

        Returns:
            The item as written.

        Raises:
            RetriesExhaustedError: The store stayed throttled for every attempt.
        """
        item = item.with_defaults()

        async def put() -> None:
            await self.store.put(item)

        attempts = await self.writer.write(put, item)
        self._metrics.record_item_saved()
        logger.debug(
            "Saved delay queue item",
            extra={
                "item_id": item.id,
                "type": item.type,
                "scheduled_at": item.scheduled_at,
                "attempts": attempts,
            },
        )
        return item

    async def schedule(
        self,
        item_type: str,
        scheduled_at: int | None = None,
        payload: Any = None,
    ) -> DelayQueueItem:
        """
        Create and save a delayed job.

        If the save exhausts its retries and a throttle retry queue is
        configured, the item is parked there as a ``store_throttle_retry``
        job to be re-saved by a worker later.
        """
        item = self.create(item_type, scheduled_at, payload)
        try:
            return await self.save(item)
        except RetriesExhaustedError as e:
            await self.park(item, e)
            return item

    async def park(self, item: DelayQueueItem, cause: RetriesExhaustedError) -> None:
        """
        Push an item whose save ran out of retries onto the throttle retry queue.

        Raises:
            RetriesExhaustedError: ``cause``, when no throttle retry queue is
                configured or the push fails.
        """
        if self._throttle_retry_queue is None:
            raise cause
        envelope = JobEnvelope(
            type=THROTTLE_RETRY_JOB,
            payload=item.model_dump(mode="json"),
        )
        try:
            await self._throttle_retry_queue.push(envelope)
        except Exception as e:
            logger.error(
                "Failed to park throttled item for retry",
                extra={"item_id": item.id, "error": str(e)},
            )
            raise cause from e
        logger.warning(
            "Parked throttled item on the work queue for a later save",
            extra={"item_id": item.id, "attempts": cause.attempts},
        )

    async def delete(self, item: DelayQueueItem | str) -> bool:
        """
        Delete an item. Deleting an absent item is not an error.

        Returns:
            True if an item was removed.
        """
        item_id = item if isinstance(item, str) else item.id
        deleted = await self.store.delete(item_id)
        logger.debug("Deleted delay queue item", extra={"item_id": item_id, "deleted": deleted})
        return deleted

    async def get(self, item_id: str) -> DelayQueueItem | None:
        """Fetch an item by ID; None when it does not exist."""
        return await self.store.get(item_id)

    async def check_lock(self, item: DelayQueueItem) -> bool:
        """
        Try to claim an item for dispatch.

        Exactly one caller ever gets True for a given item. Losing the race
        is a normal False, not an error.

        Raises:
            ClaimThrottledError: The store throttled the claim; the outcome is unknown.
        """
        with get_tracer().start_as_current_span(SPAN_CHECK_LOCK) as span:
            span.set_attribute("item_id", item.id)
            try:
                won = await self.store.conditional_increment(
                    item.id,
                    expected=CLAIM_UNCLAIMED,
                    new_value=CLAIM_CLAIMED,
                    claimed_at=int(time.time()),
                )
            except StoreThrottledError as e:
                self._metrics.record_claim(ClaimOutcome.ERROR)
                raise ClaimThrottledError(item.id) from e
            except Exception:
                self._metrics.record_claim(ClaimOutcome.ERROR)
                raise

            span.set_attribute("won", won)

        if won:
            self._metrics.record_claim(ClaimOutcome.WON)
        else:
            self._metrics.record_claim(ClaimOutcome.LOST)
            logger.debug("Claim lost", extra={"item_id": item.id})
        return won

    async def pop_ready(self, limit: int = BATCH_LIMIT, now: int | None = None) -> list[DelayQueueItem]:
        """
        Items due before ``now`` that are still unclaimed, earliest first.

        Nothing is claimed here.

        Args:
            limit: Maximum number of items to return.
            now: Unix timestamp to compare against; the current time by default.
        """
        if now is None:
            now = int(time.time())
        return await self.store.query_ready(
            STATIC_PARTITION,
            before=now,
            limit=limit,
            claim_marker=CLAIM_UNCLAIMED,
        )
