"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum

TABLE_NAME = "task_delay_queue"

# Every item shares this partition so one ordered index scan covers the whole queue
STATIC_PARTITION = 0

CLAIM_UNCLAIMED = 0
CLAIM_CLAIMED = 1

# Write and dispatch defaults
MAX_RETRIES = 5
BATCH_LIMIT = 10
BACKOFF_BASE_MS = 1
BACKOFF_JITTER_MS = 100

DEFAULT_WORK_QUEUE = "throttles"

# Job type used to park items whose save exhausted its retries
THROTTLE_RETRY_JOB = "store_throttle_retry"


class ClaimOutcome(StrEnum):
    """Result of a single claim attempt."""

    WON = "won"
    LOST = "lost"
    ERROR = "error"


# Metrics names
METRIC_ITEMS_SAVED = "delay_queue_items_saved_total"
METRIC_SAVE_THROTTLED = "delay_queue_save_throttled_total"
METRIC_SAVE_EXHAUSTED = "delay_queue_save_exhausted_total"
METRIC_CLAIMS = "delay_queue_claims_total"
METRIC_DISPATCHED = "delay_queue_dispatched_total"
METRIC_PUSH_FAILURES = "delay_queue_push_failures_total"
METRIC_READY_ITEMS = "delay_queue_ready_items"
METRIC_DISPATCH_DURATION = "delay_queue_dispatch_duration_seconds"
METRIC_REAPER_REDELIVERED = "delay_queue_reaper_redelivered_total"
METRIC_REAPER_PURGED = "delay_queue_reaper_purged_total"
METRIC_WORKER_JOBS = "delay_queue_worker_jobs_total"

# Trace span names
SPAN_DISPATCH_RUN_ONCE = "dispatch_run_once"
SPAN_CHECK_LOCK = "check_lock"
SPAN_PUSH_ENVELOPE = "push_envelope"
SPAN_REAPER_RUN_ONCE = "reaper_run_once"
SPAN_EXECUTE_JOB = "execute_job"
