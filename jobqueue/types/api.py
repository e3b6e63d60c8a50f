"""
API request and response type definitions.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from jobqueue.constants import MAX_RETRIES_LIMIT, JobStatus


class CreateJobRequest(BaseModel):
    """Request body for creating a new job."""

    payload: dict[str, Any] = Field(..., description="Job payload data")
    scheduled_time: datetime | None = Field(
        default=None, description="Earliest execution time, defaults to now"
    )
    max_retries: int | None = Field(
        default=None, ge=0, le=MAX_RETRIES_LIMIT, description="Maximum retry attempts"
    )


class JobResponse(BaseModel):
    """Full job details response."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    payload: dict[str, Any]
    status: JobStatus
    scheduled_time: datetime
    retries: int
    max_retries: int
    lease_owner: str | None
    lease_expires_at: datetime | None
    last_error: str | None
    created_at: datetime
    updated_at: datetime


class JobListResponse(BaseModel):
    """Paginated list of jobs."""

    jobs: list[JobResponse]
    page: int
    limit: int
    total: int
    has_next: bool


class JobStatsResponse(BaseModel):
    """Job counts by status."""

    stats: dict[str, int]
    queue_depth: int


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str
    timestamp: datetime


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str
    detail: str | None = None
