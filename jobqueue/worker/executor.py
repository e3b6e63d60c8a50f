"""
Job executor.

Runs the handler for one claimed job and writes the resulting transition
back to the store: completed on success, waiting with a pushed-back
scheduled_time while retries remain, failed once they are exhausted.
"""

import logging
import time

from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.config import Settings, get_settings
from jobqueue.constants import SPAN_EXECUTE_JOB, SPAN_RECORD_OUTCOME
from jobqueue.db.connection import STORE_ERRORS
from jobqueue.db.models import Job
from jobqueue.db.repository import JobStore
from jobqueue.exceptions import HandlerFailure, StoreUnavailable
from jobqueue.observability.metrics import get_metrics
from jobqueue.observability.tracing import job_span
from jobqueue.types.job import JobContext, JobResult
from jobqueue.worker.handlers import JobHandler, job_type_of, resolve_handler
from jobqueue.worker.retry import decide

logger = logging.getLogger(__name__)


class JobExecutor:
    """
    Executes claimed jobs for one worker.

    Handler failures, including handlers that raise, are always turned
    into a store transition and never propagate. Only store errors while
    recording the outcome escape, as StoreUnavailable.
    """

    def __init__(
        self,
        session: AsyncSession,
        worker_id: str,
        handler: JobHandler | None = None,
        settings: Settings | None = None,
    ):
        """
        Initialize the executor.

        Args:
            session: Session on the owning worker's connection.
            worker_id: Lease owner used to guard outcome writes.
            handler: Handler for every job. Defaults to lookup by the
                payload's job_type in the handler registry.
            settings: Retry policy settings.
        """
        self._session = session
        self._store = JobStore(session)
        self.worker_id = worker_id
        self._handler = handler
        self._settings = settings or get_settings()
        self._metrics = get_metrics()

    async def execute(self, job: Job) -> JobResult:
        """
        Run a claimed job and record its outcome.

        Args:
            job: A job this worker holds in-progress.

        Returns:
            The handler's result.

        Raises:
            StoreUnavailable: If the outcome could not be written.
        """
        start_time = time.perf_counter()

        with job_span(
            SPAN_EXECUTE_JOB,
            job_id=job.id,
            retries=job.retries,
            worker_id=self.worker_id,
        ) as span:
            result = await self.run_handler(job)
            span.set_attribute("success", result.success)

        duration = time.perf_counter() - start_time
        result.duration_ms = duration * 1000

        await self.record_outcome(job, result, duration)
        return result

    async def run_handler(self, job: Job) -> JobResult:
        """
        Invoke the job's handler, converting every failure into a result.

        Args:
            job: The job to run.

        Returns:
            JobResult from the handler, or a failed result.
        """
        handler = self._handler or resolve_handler(job.payload)

        if handler is None:
            job_type = job_type_of(job.payload)
            logger.error(
                f"No handler for job type: {job_type}",
                extra={"job_id": job.id}
            )
            return JobResult.failure(f"No handler registered for job type: {job_type}")

        context = JobContext(
            job_id=job.id,
            retries=job.retries,
            max_retries=job.max_retries,
            payload=job.payload,
            worker_id=self.worker_id,
            scheduled_time=job.scheduled_time,
        )

        logger.info(
            "Executing job",
            extra={"job_id": job.id, "attempt": context.attempt}
        )

        try:
            result = await handler(context)
        except HandlerFailure as e:
            logger.warning(
                "Handler reported failure",
                extra={"job_id": job.id, "error": str(e)}
            )
            return JobResult.failure(str(e))
        except Exception as e:
            logger.exception(
                "Handler raised exception",
                extra={"job_id": job.id, "error": str(e)}
            )
            return JobResult.failure(f"Handler exception: {e}")

        if result is None:
            return JobResult(success=True)
        if not isinstance(result, JobResult):
            logger.error(
                "Handler returned an invalid result",
                extra={"job_id": job.id, "result_type": type(result).__name__}
            )
            return JobResult.failure(
                f"Handler returned {type(result).__name__}, expected JobResult"
            )
        return result

    async def record_outcome(
        self,
        job: Job,
        result: JobResult,
        duration_seconds: float = 0.0,
    ) -> Job | None:
        """
        Write the transition that follows a result and commit it.

        Args:
            job: The job as it was claimed.
            result: The handler's result.
            duration_seconds: Execution time, for metrics.

        Returns:
            The updated Job, or None if this worker no longer held it.

        Raises:
            StoreUnavailable: If the store could not be reached.
        """
        job_id = job.id
        with job_span(SPAN_RECORD_OUTCOME, job_id=job_id, worker_id=self.worker_id) as span:
            try:
                if result.success:
                    outcome = "completed"
                    updated = await self._store.mark_completed(
                        job_id, worker_id=self.worker_id
                    )
                else:
                    decision = decide(
                        job.retries,
                        job.max_retries,
                        self._settings.retry_base_delay_seconds,
                        self._settings.retry_max_delay_seconds,
                    )
                    if decision.should_retry:
                        outcome = "retried"
                        updated = await self._store.mark_retry(
                            job_id,
                            delay_seconds=decision.delay_seconds,
                            error=result.error,
                            worker_id=self.worker_id,
                        )
                    else:
                        outcome = "failed"
                        updated = await self._store.mark_failed(
                            job_id,
                            error=result.error,
                            worker_id=self.worker_id,
                        )
                span.set_attribute("outcome", outcome)
                await self._session.commit()
            except STORE_ERRORS as e:
                await self.rollback()
                raise StoreUnavailable(
                    f"Could not record outcome of job {job_id}: {e}"
                ) from e

        if updated is None:
            logger.warning(
                "Outcome not recorded, job no longer held by this worker",
                extra={"job_id": job_id, "worker_id": self.worker_id}
            )
            return None

        self._metrics.record_job_finished(outcome, duration_seconds)
        return updated

    async def rollback(self) -> None:
        """Roll back the session, logging instead of raising if the store is gone."""
        try:
            await self._session.rollback()
        except STORE_ERRORS as e:
            logger.warning(
                f"Rollback failed: {e}",
                extra={"worker_id": self.worker_id}
            )
