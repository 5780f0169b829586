"""
Observability module.
Contains logging, metrics, and tracing setup.
"""

from delayqueue.observability.logging import (
    bind_context,
    clear_context,
    get_logger,
    setup_logging,
)
from delayqueue.observability.metrics import (
    MetricsCollector,
    get_metrics,
    setup_metrics,
)
from delayqueue.observability.tracing import get_tracer, setup_tracing

__all__ = [
    "setup_logging",
    "get_logger",
    "bind_context",
    "clear_context",
    "setup_metrics",
    "get_metrics",
    "MetricsCollector",
    "setup_tracing",
    "get_tracer",
]
