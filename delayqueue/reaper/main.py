"""
Reaper for claimed delay queue items.

Claimed items are deleted by the consumer once their job is handled, so a
claimed item that is still present has not been acknowledged. The reaper
runs periodically to:
1. Optionally re-offer claims older than the redelivery timeout, covering a
   dispatcher that crashed between claim and push
2. Delete claimed items older than the retention window
"""

import asyncio
import logging
import signal
import time

from delayqueue.config import Settings, get_settings
from delayqueue.constants import SPAN_REAPER_RUN_ONCE
from delayqueue.db import close_db, init_db
from delayqueue.observability.logging import setup_logging
from delayqueue.observability.metrics import MetricsCollector, get_metrics, setup_metrics
from delayqueue.observability.tracing import get_tracer, setup_tracing
from delayqueue.store import build_store
from delayqueue.store.base import ItemStore
from delayqueue.types.envelope import JobEnvelope
from delayqueue.types.reports import ReapReport
from delayqueue.workqueue import build_work_queue
from delayqueue.workqueue.base import WorkQueue

logger = logging.getLogger(__name__)


class Reaper:
    """
    Reconciles claimed-but-unacknowledged items.

    Redelivery never touches the claim marker. Each re-offer is guarded by a
    compare-and-swap on ``claimed_at``, so concurrent reapers push a stale
    item at most once per timeout window.
    """

    def __init__(
        self,
        store: ItemStore,
        work_queue: WorkQueue,
        settings: Settings | None = None,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize the reaper.

        Args:
            store: The item store.
            work_queue: Destination for re-offered envelopes.
            settings: Interval, batch and timeout settings; process settings by default.
            metrics: Metrics collector; the process-wide one by default.
        """
        settings = settings or get_settings()
        self.store = store
        self.work_queue = work_queue
        self.interval = settings.reaper_interval_seconds
        self.batch_limit = settings.reaper_batch_limit
        self.redeliver_after = settings.reaper_redeliver_after_seconds
        self.purge_after = settings.reaper_purge_after_seconds
        self._running = False
        self._stopped = asyncio.Event()
        self._metrics = metrics if metrics is not None else get_metrics()

    async def start(self) -> None:
        """Start the reaper loop."""
        logger.info(f"Reaper starting with interval {self.interval}s")
        self._running = True
        self._stopped.clear()

        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                logger.exception(f"Error in reaper loop: {e}")

            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.interval)
            except TimeoutError:
                pass

        logger.info("Reaper stopped")

    async def stop(self) -> None:
        """Stop the reaper."""
        logger.info("Reaper stopping")
        self._running = False
        self._stopped.set()

    async def run_once(self, now: int | None = None) -> ReapReport:
        """
        Run the reaper once (for testing or cron-style execution).

        Args:
            now: Unix timestamp to measure claim age against.

        Returns:
            ReapReport with redelivered and purged items.
        """
        if now is None:
            now = int(time.time())
        report = ReapReport()

        with get_tracer().start_as_current_span(SPAN_REAPER_RUN_ONCE):
            if self.redeliver_after is not None:
                await self._redeliver_stale(now, report)

            if self.purge_after is not None:
                report.purged = await self.store.purge_claimed(now - self.purge_after)

        self._metrics.record_reaped(len(report.redelivered), report.purged)

        if report.redelivered or report.purged:
            logger.info(
                "Reaper pass finished",
                extra={
                    "redelivered": len(report.redelivered),
                    "redeliver_errors": len(report.redeliver_errors),
                    "purged": report.purged,
                },
            )
        return report

    async def _redeliver_stale(self, now: int, report: ReapReport) -> None:
        stale = await self.store.query_claimed(now - self.redeliver_after, self.batch_limit)

        for item in stale:
            if item.claimed_at is None:
                continue
            refreshed = await self.store.touch_claim(item.id, item.claimed_at, now)
            if not refreshed:
                # Another reaper re-offered it, or the consumer acknowledged it
                continue

            try:
                await self.work_queue.push(JobEnvelope.from_item(item))
            except Exception as e:
                logger.error(
                    "Failed to re-offer stale claim",
                    extra={"item_id": item.id, "error": str(e)},
                )
                report.redeliver_errors[item.id] = e
                continue

            logger.warning(
                "Re-offered unacknowledged item",
                extra={"item_id": item.id, "type": item.type, "claimed_at": item.claimed_at},
            )
            report.redelivered.append(item.id)


async def run_async() -> None:
    """Run the reaper asynchronously."""
    setup_logging("reaper")
    setup_tracing()
    settings = get_settings()
    metrics = setup_metrics()

    engine = await init_db() if settings.store_backend == "sql" else None
    work_queue: WorkQueue | None = None
    try:
        store = build_store(settings, engine)
        await store.ensure_schema()
        work_queue = build_work_queue(settings)

        reaper = Reaper(store, work_queue, settings=settings, metrics=metrics)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(
                sig,
                lambda: asyncio.create_task(reaper.stop())
            )

        await reaper.start()
    finally:
        if work_queue is not None:
            await work_queue.close()
        await close_db()


def run() -> None:
    """Run the reaper."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
