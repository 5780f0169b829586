"""
Redis-backed work queue.
"""

import logging

import redis.asyncio as redis

from delayqueue.types.envelope import JobEnvelope

logger = logging.getLogger(__name__)


class RedisWorkQueue:
    """
    FIFO work queue on a Redis list.

    Envelopes are pushed with LPUSH and consumed with BRPOP as pydantic JSON.
    """

    def __init__(self, client: redis.Redis, queue_name: str, key_prefix: str = "delayqueue"):
        """
        Initialize the queue.

        Args:
            client: An asyncio Redis client.
            queue_name: Logical queue name.
            key_prefix: Namespace for the Redis key.
        """
        self._client = client
        self.queue_name = queue_name
        self.key = f"{key_prefix}:{queue_name}"

    @classmethod
    def from_url(cls, url: str, queue_name: str, key_prefix: str = "delayqueue") -> "RedisWorkQueue":
        client = redis.Redis.from_url(url, decode_responses=True)
        return cls(client, queue_name, key_prefix)

    async def push(self, envelope: JobEnvelope) -> None:
        await self._client.lpush(self.key, envelope.model_dump_json())

    async def pop(self, timeout: float) -> JobEnvelope | None:
        popped = await self._client.brpop([self.key], timeout=timeout)
        if popped is None:
            return None
        _, raw = popped
        return JobEnvelope.model_validate_json(raw)

    async def depth(self) -> int:
        """Number of envelopes waiting in the queue."""
        return await self._client.llen(self.key)

    async def close(self) -> None:
        await self._client.aclose()
        logger.debug("Redis work queue closed", extra={"queue": self.queue_name})
