"""
Job management routes.

The API only inserts jobs and moves them out of pending/waiting/failed;
it never talks to workers.
"""

import logging
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.constants import API_V1_PREFIX, SORTABLE_FIELDS, JobStatus
from jobqueue.db import get_async_session
from jobqueue.db.repository import JobStore
from jobqueue.exceptions import NotCancellable, NotRetryable
from jobqueue.observability.metrics import get_metrics
from jobqueue.types.api import (
    CreateJobRequest,
    JobListResponse,
    JobResponse,
    JobStatsResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix=f"{API_V1_PREFIX}/jobs", tags=["Jobs"])

SortField = Literal[SORTABLE_FIELDS]


@router.post(
    "",
    response_model=JobResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a job",
    description="Submit a new job, optionally scheduled for a future time.",
)
async def create_job(
    request: CreateJobRequest,
    session: AsyncSession = Depends(get_async_session),
) -> JobResponse:
    """
    Create a new job.

    Args:
        request: Job creation request.
        session: Database session.

    Returns:
        The created job.
    """
    store = JobStore(session)
    job = await store.insert(
        payload=request.payload,
        scheduled_time=request.scheduled_time,
        max_retries=request.max_retries,
    )
    await session.commit()

    get_metrics().record_job_submitted()

    return JobResponse.model_validate(job)


@router.get(
    "",
    response_model=JobListResponse,
    summary="List jobs",
    description="List jobs with optional status filter, sorting and pagination.",
)
async def list_jobs(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    status: JobStatus | None = Query(default=None),
    sort: SortField = Query(default="scheduled_time"),
    order: Literal["asc", "desc"] = Query(default="desc"),
    session: AsyncSession = Depends(get_async_session),
) -> JobListResponse:
    """
    List jobs.

    Args:
        page: Page number (1-indexed).
        limit: Number of items per page.
        status: Optional status filter.
        sort: Column to sort by.
        order: Sort direction.
        session: Database session.

    Returns:
        JobListResponse with paginated jobs.
    """
    store = JobStore(session)
    offset = (page - 1) * limit

    jobs, total = await store.list_jobs(
        status=status,
        limit=limit,
        offset=offset,
        sort=sort,
        descending=order == "desc",
    )

    return JobListResponse(
        jobs=[JobResponse.model_validate(job) for job in jobs],
        page=page,
        limit=limit,
        total=total,
        has_next=(page * limit) < total,
    )


@router.get(
    "/stats/summary",
    response_model=JobStatsResponse,
    summary="Get job statistics",
    description="Get job counts by status and the current queue depth.",
)
async def get_job_stats(
    session: AsyncSession = Depends(get_async_session),
) -> JobStatsResponse:
    """Get job statistics."""
    store = JobStore(session)
    stats = await store.get_job_stats()
    queue_depth = await store.get_queue_depth()

    get_metrics().update_queue_depth(queue_depth)

    return JobStatsResponse(stats=stats, queue_depth=queue_depth)


@router.get(
    "/{job_id}",
    response_model=JobResponse,
    summary="Get job details",
    description="Get detailed information about a specific job.",
)
async def get_job(
    job_id: int,
    session: AsyncSession = Depends(get_async_session),
) -> JobResponse:
    """
    Get job details by ID.

    Raises:
        HTTPException: If job not found.
    """
    store = JobStore(session)
    job = await store.get_job(job_id)

    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found",
        )

    return JobResponse.model_validate(job)


@router.post(
    "/{job_id}/retry",
    response_model=JobResponse,
    summary="Retry a failed job",
    description="Return a failed job to pending with its retry count reset.",
)
async def retry_job(
    job_id: int,
    session: AsyncSession = Depends(get_async_session),
) -> JobResponse:
    """
    Retry a failed job.

    Raises:
        HTTPException: If job not found or not failed.
    """
    store = JobStore(session)

    try:
        job = await store.reset_for_retry(job_id)
    except NotRetryable:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found or not failed",
        )

    await session.commit()

    logger.info("Job retried by operator", extra={"job_id": job_id})

    return JobResponse.model_validate(job)


@router.post(
    "/{job_id}/cancel",
    response_model=JobResponse,
    summary="Cancel a job",
    description="Cancel a job that has not been claimed yet.",
)
async def cancel_job(
    job_id: int,
    session: AsyncSession = Depends(get_async_session),
) -> JobResponse:
    """
    Cancel a pending or waiting job.

    Raises:
        HTTPException: If job not found or not cancellable.
    """
    store = JobStore(session)

    try:
        job = await store.cancel(job_id)
    except NotCancellable:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found or not cancellable",
        )

    await session.commit()

    logger.info("Job cancelled by operator", extra={"job_id": job_id})

    return JobResponse.model_validate(job)
