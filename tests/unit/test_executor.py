"""
Unit tests for the job executor.
"""

from datetime import timedelta

import pytest
import pytest_asyncio
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.config import Settings
from jobqueue.constants import JobStatus
from jobqueue.db.models import Job
from jobqueue.db.repository import JobStore
from jobqueue.exceptions import StoreUnavailable
from jobqueue.types.job import JobContext, JobResult
from jobqueue.utils import as_utc, utc_now
from jobqueue.worker.executor import JobExecutor

WORKER_ID = "test-worker"


class TestJobExecutor:
    """Tests for JobExecutor outcome handling."""

    @pytest_asyncio.fixture
    async def store(self, db_session: AsyncSession) -> JobStore:
        return JobStore(db_session)

    @pytest.fixture
    def executor(self, db_session: AsyncSession, test_settings: Settings) -> JobExecutor:
        """Create an executor on the test session."""
        return JobExecutor(db_session, WORKER_ID, settings=test_settings)

    async def _claim(
        self,
        store: JobStore,
        payload: dict,
        max_retries: int = 3,
    ) -> Job:
        await store.insert(payload, max_retries=max_retries)
        await store.session.commit()
        job = await store.claim_next(WORKER_ID)
        await store.session.commit()
        return job

    async def test_success_completes_job(
        self,
        store: JobStore,
        executor: JobExecutor,
    ):
        """Test a successful handler completes the job."""
        job = await self._claim(store, {"job_type": "echo", "data": {"x": 1}})

        result = await executor.execute(job)

        assert result.success is True
        assert result.duration_ms is not None
        job = await store.get_job(job.id)
        assert job.status == JobStatus.COMPLETED
        assert job.lease_owner is None

    async def test_failure_with_retries_left_waits(
        self,
        store: JobStore,
        executor: JobExecutor,
    ):
        """Test a failed attempt with retries left goes back to waiting."""
        job = await self._claim(store, {"job_type": "failing_job"})

        result = await executor.execute(job)

        assert result.success is False
        job = await store.get_job(job.id)
        assert job.status == JobStatus.WAITING
        assert job.retries == 1
        assert job.last_error == "Intentional failure on attempt 1"

    async def test_backoff_grows_with_retries(
        self,
        store: JobStore,
        db_session: AsyncSession,
        test_settings: Settings,
    ):
        """Test each retry pushes scheduled_time back by base * 2 ** retries."""
        settings = test_settings.model_copy(update={"retry_base_delay_seconds": 2.0})
        executor = JobExecutor(db_session, WORKER_ID, settings=settings)
        job = await self._claim(store, {"job_type": "failing_job"})

        before = utc_now()
        await executor.execute(job)
        job = await store.get_job(job.id)
        assert as_utc(job.scheduled_time) >= before + timedelta(seconds=2)
        assert as_utc(job.scheduled_time) < before + timedelta(seconds=4)

        job = await store.claim_next(WORKER_ID, now=utc_now() + timedelta(seconds=3))
        await db_session.commit()
        before = utc_now()
        await executor.execute(job)
        job = await store.get_job(job.id)
        assert job.retries == 2
        assert as_utc(job.scheduled_time) >= before + timedelta(seconds=4)

    async def test_failure_without_retries_fails(
        self,
        store: JobStore,
        executor: JobExecutor,
    ):
        """Test a failed attempt with no retries left fails the job."""
        job = await self._claim(store, {"job_type": "failing_job"}, max_retries=0)

        await executor.execute(job)

        job = await store.get_job(job.id)
        assert job.status == JobStatus.FAILED
        assert job.retries == 0

    async def test_handler_failure_exception(
        self,
        store: JobStore,
        executor: JobExecutor,
    ):
        """Test a handler raising HandlerFailure counts as a failed attempt."""
        job = await self._claim(store, {"job_type": "raising_job"}, max_retries=0)

        result = await executor.execute(job)

        assert result.error == "Intentional exception on attempt 1"
        job = await store.get_job(job.id)
        assert job.status == JobStatus.FAILED

    async def test_unexpected_exception_is_absorbed(
        self,
        store: JobStore,
        db_session: AsyncSession,
        test_settings: Settings,
    ):
        """Test any exception from a handler becomes a failed attempt."""

        async def broken(context: JobContext) -> JobResult:
            raise RuntimeError("boom")

        executor = JobExecutor(db_session, WORKER_ID, handler=broken, settings=test_settings)
        job = await self._claim(store, {"job_type": "echo"})

        result = await executor.execute(job)

        assert result.success is False
        assert result.error == "Handler exception: boom"
        job = await store.get_job(job.id)
        assert job.status == JobStatus.WAITING
        assert job.last_error == "Handler exception: boom"

    async def test_none_result_is_success(
        self,
        store: JobStore,
        db_session: AsyncSession,
        test_settings: Settings,
    ):
        """Test a handler returning nothing succeeds."""

        async def quiet(context: JobContext) -> None:
            return None

        executor = JobExecutor(db_session, WORKER_ID, handler=quiet, settings=test_settings)
        job = await self._claim(store, {"job_type": "echo"})

        result = await executor.execute(job)

        assert result.success is True

    async def test_unknown_job_type_fails_attempt(
        self,
        store: JobStore,
        executor: JobExecutor,
    ):
        """Test a payload naming no registered handler fails the attempt."""
        job = await self._claim(store, {"job_type": "nonexistent"}, max_retries=0)

        result = await executor.execute(job)

        assert "No handler registered" in result.error
        job = await store.get_job(job.id)
        assert job.status == JobStatus.FAILED

    async def test_outcome_ignored_when_lease_lost(
        self,
        store: JobStore,
        db_session: AsyncSession,
        test_settings: Settings,
    ):
        """Test an executor that no longer holds the job writes nothing."""
        job = await self._claim(store, {"job_type": "echo"})
        other = JobExecutor(db_session, "other-worker", settings=test_settings)

        updated = await other.record_outcome(job, JobResult(success=True))

        assert updated is None
        job = await store.get_job(job.id)
        assert job.status == JobStatus.IN_PROGRESS

    async def test_store_error_raises_store_unavailable(
        self,
        store: JobStore,
        executor: JobExecutor,
        monkeypatch: pytest.MonkeyPatch,
    ):
        """Test connectivity errors while recording surface as StoreUnavailable."""
        job = await self._claim(store, {"job_type": "echo"})

        async def unreachable(*args, **kwargs):
            raise OperationalError("UPDATE jobs", {}, ConnectionRefusedError("down"))

        monkeypatch.setattr(executor._store, "mark_completed", unreachable)

        with pytest.raises(StoreUnavailable):
            await executor.record_outcome(job, JobResult(success=True))

    async def test_invalid_result_fails_attempt(
        self,
        store: JobStore,
        db_session: AsyncSession,
        test_settings: Settings,
    ):
        """Test a handler returning something other than JobResult fails the attempt."""

        async def sloppy(context: JobContext) -> dict:
            return {"ok": True}

        executor = JobExecutor(db_session, WORKER_ID, handler=sloppy, settings=test_settings)
        job = await self._claim(store, {"job_type": "echo"})

        result = await executor.execute(job)

        assert result.success is False
        assert result.error == "Handler returned dict, expected JobResult"
        job = await store.get_job(job.id)
        assert job.status == JobStatus.WAITING
        assert job.retries == 1

    async def test_failed_rollback_still_raises_store_unavailable(
        self,
        store: JobStore,
        executor: JobExecutor,
        monkeypatch: pytest.MonkeyPatch,
    ):
        """Test a dead connection during rollback does not mask StoreUnavailable."""
        job = await self._claim(store, {"job_type": "echo"})

        async def unreachable(*args, **kwargs):
            raise OperationalError("UPDATE jobs", {}, ConnectionRefusedError("down"))

        monkeypatch.setattr(executor._store, "mark_completed", unreachable)
        monkeypatch.setattr(AsyncSession, "rollback", unreachable)

        with pytest.raises(StoreUnavailable):
            await executor.record_outcome(job, JobResult(success=True))
