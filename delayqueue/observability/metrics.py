"""
Prometheus metrics collection.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from delayqueue.constants import (
    METRIC_CLAIMS,
    METRIC_DISPATCH_DURATION,
    METRIC_DISPATCHED,
    METRIC_ITEMS_SAVED,
    METRIC_PUSH_FAILURES,
    METRIC_READY_ITEMS,
    METRIC_REAPER_PURGED,
    METRIC_REAPER_REDELIVERED,
    METRIC_SAVE_EXHAUSTED,
    METRIC_SAVE_THROTTLED,
    METRIC_WORKER_JOBS,
    ClaimOutcome,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the delay queue.

    Collects metrics for:
    - Item writes, throttling and exhausted retries
    - Claim outcomes
    - Dispatch throughput, push failures and pass duration
    - Reaper redelivery and cleanup
    - Reference worker job outcomes
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.items_saved = Counter(
            METRIC_ITEMS_SAVED,
            "Total number of delay queue items persisted",
            registry=self._registry,
        )

        self.save_throttled = Counter(
            METRIC_SAVE_THROTTLED,
            "Total number of throttled item writes",
            registry=self._registry,
        )

        self.save_exhausted = Counter(
            METRIC_SAVE_EXHAUSTED,
            "Total number of item writes that exhausted their retries",
            registry=self._registry,
        )

        self.claims = Counter(
            METRIC_CLAIMS,
            "Total number of claim attempts by outcome",
            ["outcome"],
            registry=self._registry,
        )

        self.dispatched = Counter(
            METRIC_DISPATCHED,
            "Total number of job envelopes pushed to the work queue",
            ["type"],
            registry=self._registry,
        )

        self.push_failures = Counter(
            METRIC_PUSH_FAILURES,
            "Total number of claimed items that failed to push",
            ["type"],
            registry=self._registry,
        )

        self.ready_items = Gauge(
            METRIC_READY_ITEMS,
            "Number of ready items returned by the last poll",
            registry=self._registry,
        )

        self.dispatch_duration = Histogram(
            METRIC_DISPATCH_DURATION,
            "Duration of a single dispatch pass in seconds",
            buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
            registry=self._registry,
        )

        self.reaper_redelivered = Counter(
            METRIC_REAPER_REDELIVERED,
            "Total number of stale claims re-offered by the reaper",
            registry=self._registry,
        )

        self.reaper_purged = Counter(
            METRIC_REAPER_PURGED,
            "Total number of claimed items deleted by the reaper",
            registry=self._registry,
        )

        self.worker_jobs = Counter(
            METRIC_WORKER_JOBS,
            "Total number of envelopes processed by the worker",
            ["type", "status"],
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def record_item_saved(self) -> None:
        self.items_saved.inc()

    def record_save_throttled(self) -> None:
        self.save_throttled.inc()

    def record_save_exhausted(self) -> None:
        self.save_exhausted.inc()

    def record_claim(self, outcome: ClaimOutcome) -> None:
        """Record a claim attempt outcome."""
        self.claims.labels(outcome=outcome.value).inc()

    def record_dispatched(self, job_type: str) -> None:
        self.dispatched.labels(type=job_type).inc()

    def record_push_failure(self, job_type: str) -> None:
        self.push_failures.labels(type=job_type).inc()

    def record_dispatch_pass(self, ready: int, duration_seconds: float) -> None:
        """Record the size and duration of a dispatch pass."""
        self.ready_items.set(ready)
        self.dispatch_duration.observe(duration_seconds)

    def record_reaped(self, redelivered: int, purged: int) -> None:
        if redelivered:
            self.reaper_redelivered.inc(redelivered)
        if purged:
            self.reaper_purged.inc(purged)

    def record_worker_job(self, job_type: str, status: str) -> None:
        self.worker_jobs.labels(type=job_type, status=status).inc()

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        """Get the content type for metrics response."""
        return CONTENT_TYPE_LATEST


def setup_metrics() -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance, creating it on first use.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
