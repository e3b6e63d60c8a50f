"""
Job-related type definitions for internal use.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import BaseModel


class JobResult(BaseModel):
    """
    Outcome of one job execution.
    Returned by job handlers after processing.
    """

    success: bool
    output: dict[str, Any] | None = None
    error: str | None = None
    duration_ms: float | None = None

    @classmethod
    def failure(cls, error: str) -> "JobResult":
        """Build a failed outcome."""
        return cls(success=False, error=error)


@dataclass
class JobContext:
    """
    Context passed to job handlers during execution.
    Contains job metadata and utilities for the handler.
    """

    job_id: int
    retries: int
    max_retries: int
    payload: dict[str, Any]
    worker_id: str
    scheduled_time: datetime

    @property
    def attempt(self) -> int:
        """One-based number of the attempt now running."""
        return self.retries + 1

    @property
    def is_last_attempt(self) -> bool:
        """Check if a failure now would be permanent."""
        return self.retries >= self.max_retries

    @property
    def remaining_retries(self) -> int:
        """Get how many more failures would still be retried."""
        return max(0, self.max_retries - self.retries)
