"""
Health, readiness and metrics routes.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue import __version__
from jobqueue.db import STORE_ERRORS, get_async_session
from jobqueue.observability.metrics import get_metrics
from jobqueue.types.api import HealthResponse
from jobqueue.utils import utc_now

router = APIRouter(tags=["Health"])


async def _store_reachable(session: AsyncSession) -> bool:
    try:
        await session.execute(text("SELECT 1"))
    except STORE_ERRORS:
        await session.rollback()
        return False
    return True


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the health of the API and its job store.",
)
async def health_check(
    session: AsyncSession = Depends(get_async_session),
) -> HealthResponse:
    """
    Perform a health check.

    The API stays up while the store is unreachable and reports itself
    as degraded.
    """
    db_status = "healthy" if await _store_reachable(session) else "unhealthy"

    return HealthResponse(
        status="healthy" if db_status == "healthy" else "degraded",
        version=__version__,
        database=db_status,
        timestamp=utc_now(),
    )


@router.get(
    "/ready",
    summary="Readiness check",
    description="Check if the service is ready to receive traffic.",
)
async def readiness_check(
    session: AsyncSession = Depends(get_async_session),
) -> dict:
    """Kubernetes readiness probe endpoint."""
    return {"ready": await _store_reachable(session)}


@router.get(
    "/live",
    summary="Liveness check",
)
async def liveness_check() -> dict:
    return {"alive": True}


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics.",
)
async def metrics() -> Response:
    """Expose Prometheus metrics."""
    metrics_collector = get_metrics()
    return Response(
        content=metrics_collector.get_metrics(),
        media_type=metrics_collector.get_content_type(),
    )
