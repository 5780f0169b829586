"""
Bounded exponential backoff for throttled store writes.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable

from delayqueue.config import Settings
from delayqueue.constants import BACKOFF_BASE_MS, BACKOFF_JITTER_MS, MAX_RETRIES
from delayqueue.errors import RetriesExhaustedError, StoreThrottledError
from delayqueue.observability.metrics import MetricsCollector, get_metrics
from delayqueue.types.item import DelayQueueItem

logger = logging.getLogger(__name__)


class BackoffRetryWriter:
    """
    Retries a store write while the store reports throttling.

    Per attempt: success returns, a throttle waits ``backoff_for(attempt)``
    and tries again, any other error propagates untouched. After
    ``max_retries`` throttled attempts the write fails with
    ``RetriesExhaustedError``. The wait is a plain ``asyncio.sleep``, so
    cancelling the calling task interrupts it immediately.
    """

    def __init__(
        self,
        max_retries: int = MAX_RETRIES,
        base_delay: float = BACKOFF_BASE_MS / 1000,
        max_jitter: float = BACKOFF_JITTER_MS / 1000,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize the writer.

        Args:
            max_retries: Total number of attempts before giving up.
            base_delay: Backoff for the first retry, in seconds.
            max_jitter: Upper bound of the random jitter added to each wait, in seconds.
            metrics: Metrics collector; the process-wide one by default.
        """
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_jitter = max_jitter
        self._metrics = metrics if metrics is not None else get_metrics()

    @classmethod
    def from_settings(cls, settings: Settings, metrics: MetricsCollector | None = None) -> "BackoffRetryWriter":
        return cls(
            max_retries=settings.save_max_retries,
            base_delay=settings.save_backoff_base_ms / 1000,
            max_jitter=settings.save_backoff_jitter_ms / 1000,
            metrics=metrics,
        )

    def backoff_for(self, attempt: int) -> float:
        """Seconds to wait after the given 0-based throttled attempt."""
        jitter = random.uniform(0, self.max_jitter) if self.max_jitter > 0 else 0.0
        return self.base_delay * (2 ** attempt) + jitter

    async def write(
        self,
        operation: Callable[[], Awaitable[None]],
        item: DelayQueueItem,
    ) -> int:
        """
        Run ``operation`` until it succeeds or the attempt budget is spent.

        Args:
            operation: Zero-argument coroutine function performing one write.
            item: The item being written, for diagnostics.

        Returns:
            Number of attempts used.

        Raises:
            RetriesExhaustedError: Every attempt was throttled.
        """
        for attempt in range(self.max_retries):
            try:
                await operation()
                return attempt + 1
            except StoreThrottledError as e:
                self._metrics.record_save_throttled()
                if attempt + 1 >= self.max_retries:
                    break

                backoff = self.backoff_for(attempt)
                logger.warning(
                    "Store write throttled, backing off",
                    extra={
                        "item_id": item.id,
                        "attempt": attempt + 1,
                        "backoff_seconds": round(backoff, 4),
                        "error": str(e),
                    },
                )
                await asyncio.sleep(backoff)

        self._metrics.record_save_exhausted()
        logger.error(
            "Store write retries exhausted",
            extra={"item_id": item.id, "attempts": self.max_retries},
        )
        raise RetriesExhaustedError(
            item.id,
            self.max_retries,
            item.model_dump(mode="json"),
        )
