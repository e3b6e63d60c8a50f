"""
Job store for database operations.
Implements the claim protocol and every job state transition.
"""

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Any, Sequence

from sqlalchemy import and_, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from jobqueue.config import get_settings
from jobqueue.constants import (
    CLAIMABLE_STATUSES,
    MAX_RETRIES_LIMIT,
    SORTABLE_FIELDS,
    JobStatus,
)
from jobqueue.db.models import Job
from jobqueue.exceptions import NotCancellable, NotRetryable
from jobqueue.utils import as_utc, utc_now

logger = logging.getLogger(__name__)


class JobStore:
    """
    Store for job database operations.

    Implements atomic operations for:
    - Job submission
    - Claiming with FOR UPDATE SKIP LOCKED
    - Conditional status transitions
    - Lease extension and expiry handling

    Every transition is a single UPDATE guarded by the expected source
    status, so a transition against a job in any other state matches no
    row and returns None. Methods never commit; callers own the
    transaction boundary.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize the store with a database session.

        Args:
            session: The async database session.
        """
        self._session = session
        self._settings = get_settings()

    @property
    def session(self) -> AsyncSession:
        """The session this store issues statements on."""
        return self._session

    async def insert(
        self,
        payload: dict[str, Any],
        scheduled_time: datetime | None = None,
        max_retries: int | None = None,
    ) -> Job:
        """
        Create a new job.

        The job starts as pending, or waiting when scheduled in the future.

        Args:
            payload: The job payload.
            scheduled_time: Earliest time the job may be claimed. Defaults to now.
            max_retries: Retry ceiling. Defaults to the configured default.

        Returns:
            The created Job.

        Raises:
            ValueError: If max_retries is outside 0..MAX_RETRIES_LIMIT.
        """
        now = utc_now()
        scheduled = as_utc(scheduled_time) if scheduled_time is not None else now
        if max_retries is None:
            max_retries = self._settings.default_max_retries
        if not 0 <= max_retries <= MAX_RETRIES_LIMIT:
            raise ValueError(
                f"max_retries must be between 0 and {MAX_RETRIES_LIMIT}, got {max_retries}"
            )

        job = Job(
            payload=payload,
            status=JobStatus.WAITING if scheduled > now else JobStatus.PENDING,
            scheduled_time=scheduled,
            retries=0,
            max_retries=max_retries,
            created_at=now,
            updated_at=now,
        )
        self._session.add(job)
        await self._session.flush()

        logger.info(
            "Created new job",
            extra={"job_id": job.id, "status": job.status.value},
        )
        return job

    async def get_job(self, job_id: int) -> Job | None:
        """
        Get a job by ID, always reading the current row.

        Args:
            job_id: The job ID.

        Returns:
            The Job or None if not found.
        """
        return await self._session.get(Job, job_id, populate_existing=True)

    async def list_jobs(
        self,
        status: JobStatus | None = None,
        limit: int = 10,
        offset: int = 0,
        sort: str = "scheduled_time",
        descending: bool = True,
    ) -> tuple[Sequence[Job], int]:
        """
        List jobs with optional filtering.

        Args:
            status: Optional status filter.
            limit: Maximum number of jobs to return.
            offset: Offset for pagination.
            sort: Column to sort by, one of SORTABLE_FIELDS.
            descending: Sort direction.

        Returns:
            Tuple of (jobs, total_count).

        Raises:
            ValueError: If sort is not a sortable column.
        """
        if sort not in SORTABLE_FIELDS:
            raise ValueError(f"Cannot sort by {sort!r}")

        filters = []
        if status is not None:
            filters.append(Job.status == status)

        count_stmt = select(func.count()).select_from(Job).where(*filters)
        count_result = await self._session.execute(count_stmt)
        total = count_result.scalar() or 0

        column = getattr(Job, sort)
        order = column.desc() if descending else column.asc()
        tiebreak = Job.id.desc() if descending else Job.id.asc()
        stmt = (
            select(Job)
            .where(*filters)
            .order_by(order, tiebreak)
            .limit(limit)
            .offset(offset)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        jobs = result.scalars().all()

        return jobs, total

    async def claim_next(
        self,
        worker_id: str,
        now: datetime | None = None,
    ) -> Job | None:
        """
        Claim the oldest eligible job using FOR UPDATE SKIP LOCKED.

        This is the critical path for job distribution. Selection, the
        eligibility check and the move to in-progress run as one UPDATE
        statement, and rows locked by a concurrent claim are skipped
        rather than waited on, so no two callers receive the same job.

        Args:
            worker_id: The claiming worker's identifier.
            now: Clock override, defaults to the current time.

        Returns:
            The claimed Job, or None if nothing is eligible.
        """
        now = as_utc(now) if now is not None else utc_now()
        lease_expires_at = now + timedelta(
            seconds=self._settings.worker_lease_duration_seconds
        )

        # Aliased so the subquery is not correlated to the UPDATE target
        candidate = aliased(Job, name="candidate")
        next_id = (
            select(candidate.id)
            .where(
                and_(
                    candidate.status.in_(CLAIMABLE_STATUSES),
                    candidate.scheduled_time <= now,
                )
            )
            .order_by(candidate.scheduled_time.asc(), candidate.id.asc())
            .limit(1)
            .with_for_update(skip_locked=True)
            .scalar_subquery()
        )

        stmt = (
            update(Job)
            .where(
                and_(
                    Job.id == next_id,
                    Job.status.in_(CLAIMABLE_STATUSES),
                )
            )
            .values(
                status=JobStatus.IN_PROGRESS,
                lease_owner=worker_id,
                lease_expires_at=lease_expires_at,
                updated_at=now,
            )
            .returning(Job.id)
            .execution_options(synchronize_session=False)
        )

        result = await self._session.execute(stmt)
        job_id = result.scalar_one_or_none()
        if job_id is None:
            return None

        logger.info(
            "Claimed job",
            extra={"job_id": job_id, "worker_id": worker_id},
        )
        return await self.get_job(job_id)

    async def mark_completed(
        self,
        job_id: int,
        worker_id: str | None = None,
    ) -> Job | None:
        """
        Mark an in-progress job as completed.

        A job that is already terminal matches no row, so repeating the
        call is a no-op.

        Args:
            job_id: The job ID.
            worker_id: If given, the transition also requires this lease owner.

        Returns:
            Updated Job or None if the job was not in progress.
        """
        job = await self._transition(
            job_id,
            from_statuses=[JobStatus.IN_PROGRESS],
            values={"status": JobStatus.COMPLETED},
            worker_id=worker_id,
        )

        if job:
            logger.info("Job completed successfully", extra={"job_id": job_id})

        return job

    async def mark_retry(
        self,
        job_id: int,
        delay_seconds: float = 0.0,
        error: str | None = None,
        worker_id: str | None = None,
    ) -> Job | None:
        """
        Send an in-progress job back to waiting for another attempt.

        Increments retries and pushes scheduled_time past the backoff
        window so the job stays invisible to claims until then.

        Args:
            job_id: The job ID.
            delay_seconds: Backoff before the job becomes claimable again.
            error: Error message from the failed attempt.
            worker_id: If given, the transition also requires this lease owner.

        Returns:
            Updated Job or None if the job was not in progress.
        """
        now = utc_now()
        job = await self._transition(
            job_id,
            from_statuses=[JobStatus.IN_PROGRESS],
            values={
                "status": JobStatus.WAITING,
                "retries": Job.retries + 1,
                "scheduled_time": now + timedelta(seconds=delay_seconds),
                "last_error": error,
            },
            worker_id=worker_id,
            now=now,
        )

        if job:
            logger.info(
                "Job queued for retry",
                extra={
                    "job_id": job_id,
                    "retries": job.retries,
                    "delay_seconds": delay_seconds,
                },
            )

        return job

    async def mark_failed(
        self,
        job_id: int,
        error: str | None = None,
        worker_id: str | None = None,
    ) -> Job | None:
        """
        Permanently fail an in-progress job.

        Args:
            job_id: The job ID.
            error: Error message from the final attempt.
            worker_id: If given, the transition also requires this lease owner.

        Returns:
            Updated Job or None if the job was not in progress.
        """
        job = await self._transition(
            job_id,
            from_statuses=[JobStatus.IN_PROGRESS],
            values={"status": JobStatus.FAILED, "last_error": error},
            worker_id=worker_id,
        )

        if job:
            logger.warning(
                f"Job failed permanently after {job.retries} retries",
                extra={"job_id": job_id, "error": error},
            )

        return job

    async def cancel(self, job_id: int) -> Job:
        """
        Cancel a pending or waiting job.

        Args:
            job_id: The job ID.

        Returns:
            The cancelled Job.

        Raises:
            NotCancellable: If the job is missing or not pending/waiting.
        """
        job = await self._transition(
            job_id,
            from_statuses=CLAIMABLE_STATUSES,
            values={"status": JobStatus.CANCELLED},
        )
        if job is None:
            raise NotCancellable(job_id)

        logger.info("Job cancelled", extra={"job_id": job_id})
        return job

    async def reset_for_retry(self, job_id: int) -> Job:
        """
        Return a failed job to pending with a fresh retry budget.

        Args:
            job_id: The job ID.

        Returns:
            The reset Job.

        Raises:
            NotRetryable: If the job is missing or not failed.
        """
        now = utc_now()
        job = await self._transition(
            job_id,
            from_statuses=[JobStatus.FAILED],
            values={
                "status": JobStatus.PENDING,
                "retries": 0,
                "scheduled_time": now,
                "last_error": None,
            },
            now=now,
        )
        if job is None:
            raise NotRetryable(job_id)

        logger.info("Failed job reset for retry", extra={"job_id": job_id})
        return job

    async def extend_lease(
        self,
        job_id: int,
        worker_id: str,
        extension_seconds: int | None = None,
    ) -> bool:
        """
        Extend the lease on an in-progress job (heartbeat).

        Args:
            job_id: The job ID.
            worker_id: The worker identifier.
            extension_seconds: Lease extension duration.

        Returns:
            True if lease was extended, False otherwise.
        """
        if extension_seconds is None:
            extension_seconds = self._settings.worker_lease_duration_seconds

        now = utc_now()
        stmt = (
            update(Job)
            .where(
                and_(
                    Job.id == job_id,
                    Job.lease_owner == worker_id,
                    Job.status == JobStatus.IN_PROGRESS,
                )
            )
            .values(lease_expires_at=now + timedelta(seconds=extension_seconds))
            .execution_options(synchronize_session=False)
        )

        result = await self._session.execute(stmt)
        return result.rowcount > 0

    async def recover_expired_leases(self, now: datetime | None = None) -> int:
        """
        Recover in-progress jobs whose lease has expired.

        This is called by the reaper to handle worker crashes. The jobs
        go back to waiting with their retry count unchanged.

        Args:
            now: Clock override, defaults to the current time.

        Returns:
            Number of recovered jobs.
        """
        now = as_utc(now) if now is not None else utc_now()

        stmt = (
            update(Job)
            .where(
                and_(
                    Job.status == JobStatus.IN_PROGRESS,
                    Job.lease_expires_at < now,
                )
            )
            .values(
                status=JobStatus.WAITING,
                lease_owner=None,
                lease_expires_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )

        result = await self._session.execute(stmt)
        count = result.rowcount

        if count > 0:
            logger.warning(f"Recovered {count} jobs with expired leases")

        return count

    async def get_queue_depth(self) -> int:
        """
        Get the number of jobs waiting to be claimed.

        Returns:
            Number of pending or waiting jobs.
        """
        stmt = (
            select(func.count())
            .select_from(Job)
            .where(Job.status.in_(CLAIMABLE_STATUSES))
        )
        result = await self._session.execute(stmt)
        return result.scalar() or 0

    async def get_job_stats(self) -> dict[str, int]:
        """
        Get job statistics by status.

        Returns:
            Dictionary of status -> count.
        """
        stmt = select(Job.status, func.count()).group_by(Job.status)
        result = await self._session.execute(stmt)
        return {JobStatus(status).value: count for status, count in result.all()}

    async def _transition(
        self,
        job_id: int,
        from_statuses: Iterable[JobStatus],
        values: dict[str, Any],
        worker_id: str | None = None,
        now: datetime | None = None,
    ) -> Job | None:
        """Apply a conditional single-row update and reload the row it matched."""
        now = now or utc_now()
        filters = [Job.id == job_id, Job.status.in_(list(from_statuses))]
        if worker_id is not None:
            filters.append(Job.lease_owner == worker_id)

        # Leaving in-progress always releases the lease
        if values.get("status") != JobStatus.IN_PROGRESS:
            values = {"lease_owner": None, "lease_expires_at": None, **values}

        stmt = (
            update(Job)
            .where(and_(*filters))
            .values(updated_at=now, **values)
            .returning(Job.id)
            .execution_options(synchronize_session=False)
        )

        result = await self._session.execute(stmt)
        matched = result.scalar_one_or_none()
        if matched is None:
            return None
        return await self.get_job(matched)
