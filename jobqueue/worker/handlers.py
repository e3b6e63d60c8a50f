"""
Job handlers registry and implementations.

Execution is at-least-once: a job can run again after a worker crash or a
lease expiry, so handlers must be idempotent.

A handler receives a JobContext and either returns a JobResult or raises.
Raising (HandlerFailure or anything else) counts as a failed attempt.
"""

import asyncio
import logging
import random
from typing import Awaitable, Callable

from jobqueue.constants import DEFAULT_JOB_TYPE
from jobqueue.exceptions import HandlerFailure
from jobqueue.types.job import JobContext, JobResult

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
        @register_handler("send_email")
        async def handle_send_email(context: JobContext) -> JobResult:
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


def job_type_of(payload: dict) -> str:
    """Read the handler key from a payload, falling back to the default type."""
    job_type = payload.get("job_type") if isinstance(payload, dict) else None
    return job_type or DEFAULT_JOB_TYPE


def resolve_handler(payload: dict) -> JobHandler | None:
    """Find the handler a payload asks for."""
    return get_handler(job_type_of(payload))


def _data(context: JobContext) -> dict:
    data = context.payload.get("data")
    return data if isinstance(data, dict) else {}


# ============================================================================
# Built-in job handlers
# ============================================================================


@register_handler("echo")
async def handle_echo(context: JobContext) -> JobResult:
    """
    Echo handler.

    Simply returns the input payload as output.
    """
    logger.info(
        "Echo job executing",
        extra={"job_id": context.job_id, "attempt": context.attempt}
    )

    return JobResult(
        success=True,
        output={"echo": context.payload},
    )


@register_handler("sleep")
async def handle_sleep(context: JobContext) -> JobResult:
    """
    Sleep handler for simulating work.

    Payload data may contain:
    - duration_seconds: How long to sleep (default 1)
    """
    duration = _data(context).get("duration_seconds", 1)

    logger.info(
        "Sleep job starting",
        extra={"job_id": context.job_id, "duration": duration}
    )

    await asyncio.sleep(duration)

    return JobResult(
        success=True,
        output={"slept_for": duration},
    )


@register_handler("failing_job")
async def handle_failing_job(context: JobContext) -> JobResult:
    """
    Handler that always fails - for exercising retry and backoff.
    """
    logger.info(
        "Failing job executing (will fail)",
        extra={"job_id": context.job_id, "attempt": context.attempt}
    )

    return JobResult.failure(f"Intentional failure on attempt {context.attempt}")


@register_handler("raising_job")
async def handle_raising_job(context: JobContext) -> JobResult:
    """
    Handler that raises instead of returning a failed result.
    """
    raise HandlerFailure(f"Intentional exception on attempt {context.attempt}")


@register_handler("random_failure")
async def handle_random_failure(context: JobContext) -> JobResult:
    """
    Handler that randomly fails.

    Payload data may contain:
    - failure_rate: Probability of failure (0.0 to 1.0)
    """
    failure_rate = _data(context).get("failure_rate", 0.5)

    if random.random() < failure_rate:
        logger.warning(
            "Random failure triggered",
            extra={"job_id": context.job_id, "attempt": context.attempt}
        )
        return JobResult.failure(f"Random failure on attempt {context.attempt}")

    return JobResult(
        success=True,
        output={"message": "Succeeded this time!"},
    )


@register_handler("http_request")
async def handle_http_request(context: JobContext) -> JobResult:
    """
    Make an HTTP request.

    Payload data should contain:
    - url: The URL to request
    - method: HTTP method (GET, POST, etc.)
    - headers: Optional headers
    - body: Optional request body

    Non-2xx responses and transport errors fail the attempt.
    """
    import httpx

    data = _data(context)
    url = data.get("url")
    method = data.get("method", "GET").upper()
    headers = data.get("headers", {})
    body = data.get("body")

    if not url:
        return JobResult.failure("Missing 'url' in payload")

    logger.info(
        "HTTP request job",
        extra={"job_id": context.job_id, "method": method, "url": url}
    )

    async with httpx.AsyncClient() as client:
        response = await client.request(
            method=method,
            url=url,
            headers=headers,
            json=body if method in ["POST", "PUT", "PATCH"] else None,
            timeout=30.0,
        )

    return JobResult(
        success=response.is_success,
        output={
            "status_code": response.status_code,
            "body": response.text[:1000],  # Truncate response
        },
        error=None if response.is_success else f"HTTP {response.status_code}",
    )
