"""
Type definitions for the job queue.
Contains input/output type definitions grouped by module.
"""

from jobqueue.types.api import (
    CreateJobRequest,
    ErrorResponse,
    HealthResponse,
    JobListResponse,
    JobResponse,
    JobStatsResponse,
)
from jobqueue.types.job import (
    JobContext,
    JobResult,
)

__all__ = [
    # API types
    "CreateJobRequest",
    "JobResponse",
    "JobListResponse",
    "JobStatsResponse",
    "HealthResponse",
    "ErrorResponse",
    # Job types
    "JobContext",
    "JobResult",
]
