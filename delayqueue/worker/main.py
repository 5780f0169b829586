"""
Reference consumer for dispatched jobs.

The worker pops envelopes from the work queue, runs the registered handler
and, on success, acknowledges the job by deleting its originating delay
queue item. Failed jobs leave the item in place, where the reaper can
re-offer it.
"""

import asyncio
import logging
import os
import signal
import time

from delayqueue.config import get_settings
from delayqueue.constants import SPAN_EXECUTE_JOB
from delayqueue.db import close_db, init_db
from delayqueue.observability.logging import bind_context, setup_logging
from delayqueue.observability.metrics import MetricsCollector, get_metrics, setup_metrics
from delayqueue.observability.tracing import get_tracer, setup_tracing
from delayqueue.service import DelayQueue
from delayqueue.store import build_store
from delayqueue.types.envelope import JobEnvelope
from delayqueue.types.job import JobContext
from delayqueue.worker.handlers import execute_job
from delayqueue.workqueue import build_work_queue
from delayqueue.workqueue.base import WorkQueue

logger = logging.getLogger(__name__)


class Worker:
    """
    Job worker that consumes the work queue one envelope at a time.

    Features:
    - Handler routing by envelope type
    - Acknowledgement by deleting the origin item
    - Graceful shutdown on SIGTERM/SIGINT
    """

    def __init__(
        self,
        work_queue: WorkQueue,
        delay_queue: DelayQueue,
        worker_id: str | None = None,
        poll_timeout: float | None = None,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize the worker.

        Args:
            work_queue: Queue to consume envelopes from.
            delay_queue: Delay queue used to acknowledge finished jobs.
            worker_id: Unique worker identifier. Defaults to hostname + PID.
            poll_timeout: Seconds to block waiting for an envelope.
            metrics: Metrics collector; the process-wide one by default.
        """
        settings = get_settings()

        self.work_queue = work_queue
        self.delay_queue = delay_queue
        self.worker_id = worker_id or settings.worker_id or f"{os.uname().nodename}-{os.getpid()}"
        self.poll_timeout = poll_timeout or settings.worker_poll_timeout_seconds
        self._running = False
        self._metrics = metrics if metrics is not None else get_metrics()

    async def start(self) -> None:
        """Start the worker."""
        logger.info("Worker starting", extra={"worker_id": self.worker_id})
        self._running = True

        while self._running:
            try:
                await self.process_next()
            except Exception as e:
                logger.exception(
                    f"Error in worker loop: {e}",
                    extra={"worker_id": self.worker_id}
                )
                await asyncio.sleep(self.poll_timeout)

        logger.info("Worker stopped", extra={"worker_id": self.worker_id})

    async def stop(self) -> None:
        """Stop the worker after the current envelope."""
        logger.info("Worker stopping", extra={"worker_id": self.worker_id})
        self._running = False

    async def process_next(self) -> bool:
        """
        Pop and process a single envelope.

        Returns:
            True if an envelope was processed, False if the queue stayed empty.
        """
        envelope = await self.work_queue.pop(self.poll_timeout)
        if envelope is None:
            return False

        await self._execute(envelope)
        return True

    async def _execute(self, envelope: JobEnvelope) -> None:
        start_time = time.monotonic()
        context = JobContext(
            envelope=envelope,
            worker_id=self.worker_id,
            delay_queue=self.delay_queue,
        )

        with get_tracer().start_as_current_span(SPAN_EXECUTE_JOB) as span:
            span.set_attribute("type", envelope.type)
            if envelope.origin_id:
                span.set_attribute("origin_id", envelope.origin_id)
            result = await execute_job(context)

        duration = time.monotonic() - start_time

        if not result.success:
            self._metrics.record_worker_job(envelope.type, "failed")
            logger.warning(
                "Job failed, origin item left for redelivery",
                extra={
                    "type": envelope.type,
                    "origin_id": envelope.origin_id,
                    "error": result.error,
                },
            )
            return

        if not await self._acknowledge(envelope):
            self._metrics.record_worker_job(envelope.type, "ack_failed")
            return

        self._metrics.record_worker_job(envelope.type, "succeeded")
        logger.info(
            "Job completed successfully",
            extra={
                "type": envelope.type,
                "origin_id": envelope.origin_id,
                "duration": f"{duration:.2f}s",
            },
        )

    async def _acknowledge(self, envelope: JobEnvelope) -> bool:
        """
        Remove the originating item so it is never re-offered.

        Returns:
            False if the delete failed and the item is still claimed.
        """
        if not envelope.origin_id:
            return True
        try:
            await self.delay_queue.delete(envelope.origin_id)
        except Exception as e:
            logger.error(
                "Job succeeded but its item could not be acknowledged",
                extra={"origin_id": envelope.origin_id, "error": str(e)},
            )
            return False
        return True


async def run_async() -> None:
    """Run the worker asynchronously."""
    setup_logging("worker")
    setup_tracing()
    settings = get_settings()
    metrics = setup_metrics()

    engine = await init_db() if settings.store_backend == "sql" else None
    work_queue: WorkQueue | None = None
    try:
        store = build_store(settings, engine)
        await store.ensure_schema()
        work_queue = build_work_queue(settings)
        delay_queue = DelayQueue.from_settings(store, settings, work_queue, metrics)

        worker = Worker(work_queue, delay_queue, metrics=metrics)
        bind_context(worker_id=worker.worker_id)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(
                sig,
                lambda: asyncio.create_task(worker.stop())
            )

        await worker.start()
    finally:
        if work_queue is not None:
            await work_queue.close()
        await close_db()


def run() -> None:
    """Run the worker."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
