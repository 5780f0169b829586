"""
Job handlers registry and implementations.

Handlers receive envelopes dispatched from the delay queue. They must be
idempotent when reaper redelivery is enabled, since a job can then be
offered more than once.
"""

import logging
from collections.abc import Awaitable, Callable

from pydantic import ValidationError

from delayqueue.constants import THROTTLE_RETRY_JOB
from delayqueue.errors import DelayQueueError, RetriesExhaustedError
from delayqueue.types.item import DelayQueueItem
from delayqueue.types.job import JobContext, JobResult

logger = logging.getLogger(__name__)

# Type alias for job handler functions
JobHandler = Callable[[JobContext], Awaitable[JobResult]]

# Handler registry
_handlers: dict[str, JobHandler] = {}


def register_handler(job_type: str) -> Callable[[JobHandler], JobHandler]:
    """
    Decorator to register a job handler.

    Args:
        job_type: The job type this handler processes.

    Returns:
        Decorator function.

    Example:
        @register_handler("send_reminder")
        async def handle_send_reminder(context: JobContext) -> JobResult:
            ...
    """
    def decorator(handler: JobHandler) -> JobHandler:
        _handlers[job_type] = handler
        logger.debug(f"Registered handler for job type: {job_type}")
        return handler
    return decorator


def get_handler(job_type: str) -> JobHandler | None:
    """
    Get the handler for a job type.

    Args:
        job_type: The job type.

    Returns:
        The handler function or None if not found.
    """
    return _handlers.get(job_type)


def list_handlers() -> list[str]:
    """List all registered job types."""
    return list(_handlers.keys())


# ============================================================================
# Built-in job handlers
# ============================================================================


@register_handler("echo")
async def handle_echo(context: JobContext) -> JobResult:
    """
    Echo handler for testing.

    Simply returns the envelope payload as output.
    """
    logger.info(
        "Echo job executing",
        extra={"origin_id": context.origin_id, "worker_id": context.worker_id}
    )

    return JobResult(
        success=True,
        output={"echo": context.payload},
    )


@register_handler(THROTTLE_RETRY_JOB)
async def handle_store_throttle_retry(context: JobContext) -> JobResult:
    """
    Re-save an item whose original save exhausted its retries.

    The payload is the serialized item, so its ID and schedule time survive
    the round trip through the work queue. An item that is still throttled
    is parked again, since the envelope has already left the queue.
    """
    if context.delay_queue is None:
        return JobResult(success=False, error="No delay queue available to re-save item")

    try:
        item = DelayQueueItem.model_validate(context.payload)
    except ValidationError as e:
        return JobResult(success=False, error=f"Invalid parked item: {e}")

    try:
        await context.delay_queue.save(item)
    except RetriesExhaustedError as e:
        try:
            await context.delay_queue.park(item, e)
        except RetriesExhaustedError:
            logger.error(
                "Parked item could not be saved or parked again",
                extra={"item_id": item.id, "item": e.item},
            )
            return JobResult(success=False, error=str(e))
        return JobResult(success=True, output={"item_id": item.id, "parked": True})
    except DelayQueueError as e:
        return JobResult(success=False, error=str(e))

    logger.info("Re-saved parked item", extra={"item_id": item.id})
    return JobResult(success=True, output={"item_id": item.id})


async def execute_job(context: JobContext) -> JobResult:
    """
    Execute a job using the appropriate handler.

    Args:
        context: The job context.

    Returns:
        JobResult from the handler.
    """
    handler = get_handler(context.job_type)

    if handler is None:
        logger.error(
            f"No handler for job type: {context.job_type}",
            extra={"origin_id": context.origin_id}
        )
        return JobResult(
            success=False,
            error=f"No handler registered for job type: {context.job_type}",
        )

    try:
        return await handler(context)
    except Exception as e:
        logger.exception(
            "Handler raised exception",
            extra={"origin_id": context.origin_id, "error": str(e)}
        )
        return JobResult(
            success=False,
            error=f"Handler exception: {str(e)}",
        )
