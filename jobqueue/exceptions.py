"""
Error taxonomy for the job queue.

Job-level failures are absorbed by the executor and turned into state
transitions. Only store connectivity problems reach the worker loop.
"""


class JobQueueError(Exception):
    """Base class for job queue errors."""


class InvalidTransition(JobQueueError):
    """A transition was requested from a state that does not permit it."""

    def __init__(self, job_id: int, action: str):
        self.job_id = job_id
        self.action = action
        super().__init__(f"Cannot {action} job {job_id} in its current state")


class NotCancellable(InvalidTransition):
    """The job is missing or not pending/waiting."""

    def __init__(self, job_id: int):
        super().__init__(job_id, "cancel")


class NotRetryable(InvalidTransition):
    """The job is missing or not failed."""

    def __init__(self, job_id: int):
        super().__init__(job_id, "retry")


class HandlerFailure(JobQueueError):
    """Raised by a job handler to fail the current attempt."""


class StoreUnavailable(JobQueueError):
    """The job store could not be reached."""
