"""
Type definitions for the delay queue.
Contains the item, envelope, job and report types, grouped by module.
"""

from delayqueue.types.api import HealthResponse
from delayqueue.types.envelope import JobEnvelope
from delayqueue.types.item import DelayQueueItem, new_item_id
from delayqueue.types.job import JobContext, JobResult
from delayqueue.types.reports import DispatchReport, ReapReport

__all__ = [
    # Item types
    "DelayQueueItem",
    "new_item_id",
    "JobEnvelope",
    # Job types
    "JobContext",
    "JobResult",
    # Reports
    "DispatchReport",
    "ReapReport",
    # API types
    "HealthResponse",
]
