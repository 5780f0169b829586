"""
Work queue module.
Contains the push contract and its Redis and in-memory implementations.
"""

from delayqueue.config import Settings
from delayqueue.workqueue.base import WorkQueue
from delayqueue.workqueue.memory import InMemoryWorkQueue
from delayqueue.workqueue.redis_queue import RedisWorkQueue


def build_work_queue(settings: Settings) -> WorkQueue:
    """
    Build the work queue selected by ``settings.work_queue_backend``.

    Args:
        settings: Application settings.

    Returns:
        The configured work queue.
    """
    if settings.work_queue_backend == "memory":
        return InMemoryWorkQueue(settings.work_queue_name)
    if settings.work_queue_backend == "redis":
        return RedisWorkQueue.from_url(
            settings.redis_url,
            settings.work_queue_name,
            key_prefix=settings.redis_key_prefix,
        )
    raise ValueError(f"Unknown work queue backend: {settings.work_queue_backend}")


__all__ = [
    "WorkQueue",
    "InMemoryWorkQueue",
    "RedisWorkQueue",
    "build_work_queue",
]
