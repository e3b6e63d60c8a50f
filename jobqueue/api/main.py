"""
FastAPI application entry point.
"""

import logging
import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from jobqueue import __version__
from jobqueue.api.routes import health_router, jobs_router
from jobqueue.config import get_settings
from jobqueue.db import STORE_ERRORS, close_db, init_db
from jobqueue.exceptions import JobQueueError
from jobqueue.observability.logging import setup_logging
from jobqueue.observability.metrics import get_metrics, setup_metrics
from jobqueue.observability.tracing import (
    instrument_fastapi,
    setup_tracing,
    shutdown_tracing,
)
from jobqueue.types.api import ErrorResponse

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    # Startup
    setup_logging()
    setup_metrics()
    setup_tracing()
    await init_db()

    logger.info("Application started")

    yield

    # Shutdown
    await close_db()
    shutdown_tracing()
    logger.info("Application shutdown")


async def job_queue_exception_handler(request: Request, exc: JobQueueError) -> JSONResponse:
    """Handle queue errors that escaped a route."""
    logger.warning(
        "Job queue error",
        extra={"error": exc.__class__.__name__, "path": request.url.path}
    )
    return JSONResponse(
        status_code=409,
        content=ErrorResponse(error=exc.__class__.__name__, detail=str(exc)).model_dump(),
    )


async def store_unavailable_handler(request: Request, exc: Exception) -> JSONResponse:
    """Report an unreachable job store as 503."""
    logger.error(
        f"Job store unavailable: {exc}",
        extra={"path": request.url.path}
    )
    return JSONResponse(
        status_code=503,
        content=ErrorResponse(error="StoreUnavailable", detail="Job store unavailable").model_dump(),
    )


async def metrics_middleware(request: Request, call_next):
    """Record request count and latency per route template."""
    start_time = time.perf_counter()
    response = await call_next(request)
    duration = time.perf_counter() - start_time

    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)
    if endpoint != "/metrics":
        get_metrics().record_api_request(
            method=request.method,
            endpoint=endpoint,
            status=response.status_code,
            duration_seconds=duration,
        )
    return response


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        FastAPI: The configured application instance.
    """
    app = FastAPI(
        title="Job Queue API",
        description="Durable job queue backed by a relational job store",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(metrics_middleware)

    app.add_exception_handler(JobQueueError, job_queue_exception_handler)
    for error_type in STORE_ERRORS:
        app.add_exception_handler(error_type, store_unavailable_handler)

    # Include routers
    app.include_router(health_router)
    app.include_router(jobs_router)

    # Instrument with OpenTelemetry
    instrument_fastapi(app)

    return app


def run() -> None:
    """Run the API server."""
    settings = get_settings()
    app = create_app()

    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


# Create app instance for uvicorn
app = create_app()


if __name__ == "__main__":
    run()
