"""
Structured logging setup using structlog.
"""

import logging
import sys
from typing import Any

import structlog
from opentelemetry import trace

from delayqueue.config import get_settings


def add_trace_context(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Attach the current trace and span IDs when a span is recording.

    Args:
        logger: The wrapped logger.
        method_name: Name of the log method that was called.
        event_dict: The record being built.

    Returns:
        The record, with ``trace_id`` and ``span_id`` when available.
    """
    span = trace.get_current_span()
    if span and span.is_recording():
        ctx = span.get_span_context()
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


def add_service_name(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Tag every record with the configured service name."""
    event_dict.setdefault("service", get_settings().otel_service_name)
    return event_dict


def setup_logging(process_name: str | None = None) -> None:
    """
    Configure structured logging for a delay queue process.

    Sets up structlog with JSON or console output based on configuration
    and routes standard library logging through the same renderer, so
    modules keep using ``logging.getLogger(__name__)`` with ``extra`` fields.

    Args:
        process_name: Optional process role (dispatcher, reaper, worker, api)
            bound to every subsequent record.
    """
    settings = get_settings()

    # Unknown level names fall back to INFO
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    # Applied to structlog and stdlib records alike
    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,  # dispatcher_id, worker_id, process
        add_trace_context,
        add_service_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ExtraAdder(),  # fields passed via extra={...}
    ]

    # One JSON object per line in deployed processes
    if settings.log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        # Human-readable output for local runs
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    # structlog loggers hand off to the stdlib formatter below
    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Render stdlib records through the same processor chain
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    # Replace any handlers installed by uvicorn or a previous setup call
    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(log_level)

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    # Tag every record with the process role
    if process_name:
        bind_context(process=process_name)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structlog logger for code that prefers key-value calls over ``extra``.

    Args:
        name: Logger name, normally the module's ``__name__``.

    Returns:
        BoundLogger: A structlog logger writing through the root handler.
    """
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """
    Bind fields to every later record in the current context.

    Args:
        **kwargs: Fields such as ``dispatcher_id`` or ``worker_id``.
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear all bound context variables."""
    structlog.contextvars.clear_contextvars()
