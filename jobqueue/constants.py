"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class JobStatus(StrEnum):
    """
    Job lifecycle states.

    State transitions:
    - PENDING/WAITING -> IN_PROGRESS (claimed by a worker)
    - IN_PROGRESS -> COMPLETED (success)
    - IN_PROGRESS -> WAITING (retryable failure, retries += 1)
    - IN_PROGRESS -> FAILED (retries exhausted)
    - IN_PROGRESS -> WAITING (lease expired - crash recovery)
    - PENDING/WAITING -> CANCELLED (operator cancel)
    - FAILED -> PENDING (operator retry, retries reset)
    """

    PENDING = "pending"
    WAITING = "waiting"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# States a worker may claim from
CLAIMABLE_STATUSES: tuple[JobStatus, ...] = (JobStatus.PENDING, JobStatus.WAITING)

# Default values
DEFAULT_MAX_RETRIES = 3
MAX_RETRIES_LIMIT = 25
DEFAULT_JOB_TYPE = "echo"

# Columns the listing endpoint may sort by
SORTABLE_FIELDS = ("id", "scheduled_time", "created_at", "updated_at", "status", "retries")

# API constants
API_V1_PREFIX = "/v1"

# Metrics names
METRIC_QUEUE_DEPTH = "job_queue_depth"
METRIC_JOBS_SUBMITTED = "jobs_submitted_total"
METRIC_JOBS_FINISHED = "jobs_finished_total"
METRIC_JOB_DURATION = "job_duration_seconds"
METRIC_JOBS_CLAIMED = "jobs_claimed_total"
METRIC_LEASE_EXPIRED = "lease_expired_total"
METRIC_STORE_ERRORS = "store_errors_total"
METRIC_API_REQUESTS = "api_requests_total"
METRIC_API_LATENCY = "api_request_latency_seconds"

# Trace span names
SPAN_CLAIM_JOB = "claim_job"
SPAN_EXECUTE_JOB = "execute_job"
SPAN_RECORD_OUTCOME = "record_outcome"
