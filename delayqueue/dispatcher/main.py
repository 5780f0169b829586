"""
Dispatch loop for the delay queue.

``Dispatcher.run_once`` is one poll/claim/push pass and owns no timer. It is
driven either by cron (``delayqueue-dispatch-once``) or by the interval
``DispatchScheduler`` (``delayqueue-dispatcher``). Any number of dispatcher
processes may run against the same store; the per-item claim is the only
coordination between them.
"""

import asyncio
import logging
import os
import signal
import time

from delayqueue.config import get_settings
from delayqueue.constants import SPAN_DISPATCH_RUN_ONCE, SPAN_PUSH_ENVELOPE
from delayqueue.db import close_db, init_db
from delayqueue.errors import PushError
from delayqueue.observability.logging import bind_context, setup_logging
from delayqueue.observability.metrics import MetricsCollector, get_metrics, setup_metrics
from delayqueue.observability.tracing import get_tracer, instrument_sqlalchemy, setup_tracing
from delayqueue.service import DelayQueue
from delayqueue.store import build_store
from delayqueue.types.envelope import JobEnvelope
from delayqueue.types.item import DelayQueueItem
from delayqueue.types.reports import DispatchReport
from delayqueue.workqueue import build_work_queue
from delayqueue.workqueue.base import WorkQueue

logger = logging.getLogger(__name__)


class Dispatcher:
    """
    Moves ready items from the delay queue to the work queue.

    Per pass:
    1. Poll up to ``batch_limit`` ready items
    2. Claim each one; skip lost or unknown claims
    3. Push an envelope for every won claim

    The claim always precedes the push, so a crash between the two can lose
    a job but can never dispatch it twice.
    """

    def __init__(
        self,
        delay_queue: DelayQueue,
        work_queue: WorkQueue,
        batch_limit: int | None = None,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize the dispatcher.

        Args:
            delay_queue: The delay queue service.
            work_queue: Destination for job envelopes.
            batch_limit: Maximum items per pass.
            metrics: Metrics collector; the process-wide one by default.
        """
        settings = get_settings()

        self.delay_queue = delay_queue
        self.work_queue = work_queue
        self.batch_limit = batch_limit or settings.dispatch_batch_limit
        self._metrics = metrics if metrics is not None else get_metrics()

    async def run_once(self, now: int | None = None) -> DispatchReport:
        """
        Run a single dispatch pass.

        A failure to poll propagates, since nothing has been claimed yet.
        Claim and push failures are recorded per item in the report and the
        pass moves on to the next item.

        Args:
            now: Unix timestamp used for readiness; the current time by default.

        Returns:
            DispatchReport describing what happened to each polled item.
        """
        start_time = time.monotonic()
        report = DispatchReport()

        with get_tracer().start_as_current_span(SPAN_DISPATCH_RUN_ONCE) as span:
            items = await self.delay_queue.pop_ready(self.batch_limit, now=now)
            report.polled = len(items)
            span.set_attribute("polled", len(items))

            for item in items:
                await self._dispatch_item(item, report)

            span.set_attribute("dispatched", len(report.dispatched))

        duration = time.monotonic() - start_time
        self._metrics.record_dispatch_pass(report.polled, duration)

        if report.polled:
            logger.info(
                "Dispatch pass finished",
                extra={
                    "polled": report.polled,
                    "dispatched": len(report.dispatched),
                    "contended": len(report.contended),
                    "lock_errors": len(report.lock_errors),
                    "push_errors": len(report.push_errors),
                    "duration": f"{duration:.3f}s",
                },
            )
        return report

    async def _dispatch_item(self, item: DelayQueueItem, report: DispatchReport) -> None:
        try:
            won = await self.delay_queue.check_lock(item)
        except Exception as e:
            logger.warning(
                "Claim outcome unknown, leaving item for the next pass",
                extra={"item_id": item.id, "error": str(e)},
            )
            report.lock_errors[item.id] = e
            return

        if not won:
            report.contended.append(item.id)
            return

        envelope = JobEnvelope.from_item(item)
        try:
            with get_tracer().start_as_current_span(SPAN_PUSH_ENVELOPE) as span:
                span.set_attribute("item_id", item.id)
                span.set_attribute("type", item.type)
                await self.work_queue.push(envelope)
        except Exception as e:
            self._metrics.record_push_failure(item.type)
            logger.error(
                "Push failed after claim; item stays claimed and undelivered",
                extra={"item_id": item.id, "type": item.type, "error": str(e)},
            )
            error = PushError(item.id, str(e))
            error.__cause__ = e
            report.push_errors[item.id] = error
            return

        self._metrics.record_dispatched(item.type)
        report.dispatched.append(item.id)
        logger.debug(
            "Dispatched item",
            extra={"item_id": item.id, "type": item.type, "scheduled_at": item.scheduled_at},
        )


class DispatchScheduler:
    """
    Interval timer that drives a ``Dispatcher``.

    Runs a pass, then sleeps for the interval. Errors from a pass are logged
    and the next pass still runs.
    """

    def __init__(self, dispatcher: Dispatcher, interval_seconds: float | None = None):
        """
        Initialize the scheduler.

        Args:
            dispatcher: The dispatcher to drive.
            interval_seconds: Seconds between passes.
        """
        settings = get_settings()
        self.dispatcher = dispatcher
        self.interval = interval_seconds or settings.dispatch_interval_seconds
        self._running = False
        self._stopped = asyncio.Event()

    async def start(self) -> None:
        """Start the dispatch loop."""
        logger.info(f"Dispatcher starting with interval {self.interval}s")
        self._running = True
        self._stopped.clear()

        while self._running:
            try:
                await self.dispatcher.run_once()
            except Exception as e:
                logger.exception(f"Error in dispatch loop: {e}")

            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.interval)
            except TimeoutError:
                pass

        logger.info("Dispatcher stopped")

    async def stop(self) -> None:
        """Stop the dispatch loop after the current pass."""
        logger.info("Dispatcher stopping")
        self._running = False
        self._stopped.set()


async def _build_dispatcher() -> Dispatcher:
    """
    Wire the store, work queue and service for a dispatcher process.

    The engine is disposed again if anything after ``init_db`` fails, so the
    caller only owns cleanup once a dispatcher is returned.
    """
    settings = get_settings()
    metrics = setup_metrics()

    engine = await init_db() if settings.store_backend == "sql" else None
    try:
        if engine is not None:
            instrument_sqlalchemy(engine.sync_engine)

        store = build_store(settings, engine)
        await store.ensure_schema()

        work_queue = build_work_queue(settings)
    except Exception:
        await close_db()
        raise

    delay_queue = DelayQueue.from_settings(store, settings, work_queue, metrics)
    return Dispatcher(delay_queue, work_queue, metrics=metrics)


def _start_process(process_name: str) -> None:
    setup_logging(process_name)
    setup_tracing()
    settings = get_settings()
    bind_context(dispatcher_id=settings.dispatcher_id or f"{os.uname().nodename}-{os.getpid()}")


async def run_async() -> None:
    """Run the interval dispatcher asynchronously."""
    _start_process("dispatcher")
    dispatcher = await _build_dispatcher()
    try:
        scheduler = DispatchScheduler(dispatcher)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(
                sig,
                lambda: asyncio.create_task(scheduler.stop())
            )

        await scheduler.start()
    finally:
        await dispatcher.work_queue.close()
        await close_db()


async def run_once_async() -> DispatchReport:
    """Run a single dispatch pass, for cron-style invocation."""
    _start_process("dispatcher")
    dispatcher = await _build_dispatcher()
    try:
        return await dispatcher.run_once()
    finally:
        await dispatcher.work_queue.close()
        await close_db()


def run() -> None:
    """Run the dispatcher on its configured interval."""
    asyncio.run(run_async())


def run_once() -> None:
    """Run one dispatch pass and exit non-zero if any item failed."""
    report = asyncio.run(run_once_async())
    if not report.ok:
        raise SystemExit(1)


if __name__ == "__main__":
    run()
