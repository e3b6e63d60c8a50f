"""
Structured logging setup using structlog.

Modules log through the standard library (logging.getLogger(__name__) with
extra={...} fields); structlog renders those records as JSON or console
lines and adds trace and worker context.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from opentelemetry import trace

from jobqueue.config import get_settings


def add_trace_context(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Add the current span's trace and span ids to log records."""
    span = trace.get_current_span()
    if span and span.is_recording():
        ctx = span.get_span_context()
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


def add_service_name(service: str):
    """Build a processor that stamps every record with the service name."""

    def processor(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        event_dict.setdefault("service", service)
        return event_dict

    return processor


def setup_logging(level: str | None = None, log_format: str | None = None) -> None:
    """
    Configure structured logging for the process.

    Args:
        level: Log level name, defaults to the configured level.
        log_format: "json" or "console", defaults to the configured format.
    """
    settings = get_settings()
    level = level or settings.log_level
    log_format = log_format or settings.log_format

    log_level = getattr(logging, level.upper(), logging.INFO)

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        add_trace_context,
        add_service_name(settings.otel_service_name),
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ExtraAdder(),
    ]

    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

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

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(log_level)

    # Reduce noise from third-party libraries
    for noisy in ("uvicorn.access", "sqlalchemy.engine", "httpx", "aiosqlite", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def bind_context(**kwargs: Any) -> None:
    """
    Bind context variables to all subsequent log messages of this task.

    Each worker runs in its own asyncio task, so binding worker_id here
    tags only that worker's records.
    """
    structlog.contextvars.bind_contextvars(**kwargs)


@contextmanager
def job_log_context(job_id: int, attempt: int) -> Iterator[None]:
    """Tag every record logged while a job runs with its id and attempt."""
    with structlog.contextvars.bound_contextvars(job_id=job_id, attempt=attempt):
        yield
