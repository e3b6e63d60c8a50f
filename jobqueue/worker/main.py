"""
Worker loop for executing jobs.

A worker repeatedly claims the oldest eligible job, executes it, and goes
straight back for another; when nothing is eligible it idles for the poll
interval. It checks the shared stop token once per iteration and never in
the middle of a job.
"""

import asyncio
import logging
import os
import socket
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncSession, async_sessionmaker

from jobqueue.config import Settings, get_settings
from jobqueue.constants import SPAN_CLAIM_JOB
from jobqueue.db.connection import STORE_ERRORS
from jobqueue.db.models import Job
from jobqueue.db.repository import JobStore
from jobqueue.exceptions import StoreUnavailable
from jobqueue.observability.logging import bind_context, job_log_context
from jobqueue.observability.metrics import get_metrics
from jobqueue.observability.tracing import job_span
from jobqueue.worker.executor import JobExecutor
from jobqueue.worker.handlers import JobHandler

logger = logging.getLogger(__name__)


def default_worker_id() -> str:
    """Hostname, PID and a short random suffix."""
    return f"{socket.gethostname()}-{os.getpid()}-{uuid4().hex[:6]}"


class Worker:
    """
    Job worker bound to one dedicated store connection.

    Features:
    - Atomic claims using FOR UPDATE SKIP LOCKED
    - Lease heartbeat while a job runs
    - Cooperative shutdown via a shared stop token
    - Backoff on store connectivity errors
    """

    def __init__(
        self,
        connection: AsyncConnection,
        stop_event: asyncio.Event,
        worker_id: str | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        handler: JobHandler | None = None,
        settings: Settings | None = None,
    ):
        """
        Initialize the worker.

        Args:
            connection: Connection owned by this worker alone.
            stop_event: Shared token; once set the worker exits after its
                current iteration.
            worker_id: Unique worker identifier. Defaults to hostname + PID.
            session_factory: Source of short-lived sessions for lease
                heartbeats. Heartbeats are disabled without one.
            handler: Handler override passed to the executor.
            settings: Worker settings.
        """
        self._settings = settings or get_settings()
        self.worker_id = worker_id or default_worker_id()
        self.poll_interval = self._settings.worker_poll_interval_seconds
        self.heartbeat_interval = self._settings.worker_heartbeat_interval_seconds

        self._stop = stop_event
        self._session = AsyncSession(
            bind=connection,
            expire_on_commit=False,
            autoflush=False,
        )
        self._store = JobStore(self._session)
        self._executor = JobExecutor(
            self._session,
            self.worker_id,
            handler=handler,
            settings=self._settings,
        )
        self._session_factory = session_factory
        self._metrics = get_metrics()

        self.current_job_id: int | None = None
        self.jobs_processed = 0

    async def run(self) -> None:
        """
        Run the claim/execute loop until the stop token is set.

        Raises:
            StoreUnavailable: After too many consecutive store errors.
        """
        bind_context(worker_id=self.worker_id)
        logger.info("Worker starting", extra={"worker_id": self.worker_id})

        consecutive_failures = 0
        try:
            while not self._stop.is_set():
                try:
                    processed = await self.run_once()
                except StoreUnavailable as e:
                    consecutive_failures += 1
                    self._metrics.record_store_error(self.worker_id)
                    logger.warning(
                        f"Store unavailable: {e}",
                        extra={
                            "worker_id": self.worker_id,
                            "consecutive_failures": consecutive_failures,
                        }
                    )

                    if consecutive_failures >= self._settings.worker_max_consecutive_store_failures:
                        logger.error(
                            "Worker giving up after repeated store errors",
                            extra={"worker_id": self.worker_id}
                        )
                        raise

                    await self._idle(self._settings.worker_store_backoff_seconds)
                    continue
                except Exception as e:
                    # The job keeps its lease and is requeued by the reaper
                    logger.exception(
                        f"Error in worker loop: {e}",
                        extra={"worker_id": self.worker_id}
                    )
                    await self._executor.rollback()
                    await self._idle(self.poll_interval)
                    continue

                consecutive_failures = 0
                if not processed:
                    await self._idle(self.poll_interval)
        finally:
            await self._session.close()
            logger.info(
                "Worker stopped",
                extra={"worker_id": self.worker_id, "jobs_processed": self.jobs_processed}
            )

    async def run_once(self) -> bool:
        """
        Claim and execute at most one job.

        Returns:
            True if a job was executed, False if none was eligible.
        """
        job = await self.claim()
        if job is None:
            return False

        await self._process(job)
        return True

    async def claim(self) -> Job | None:
        """
        Claim the next eligible job and commit the claim.

        Raises:
            StoreUnavailable: If the store could not be reached.
        """
        with job_span(SPAN_CLAIM_JOB, worker_id=self.worker_id) as span:
            try:
                job = await self._store.claim_next(self.worker_id)
                await self._session.commit()
            except STORE_ERRORS as e:
                await self._executor.rollback()
                raise StoreUnavailable(f"Claim failed: {e}") from e

            if job is not None:
                span.set_attribute("job_id", job.id)
                self._metrics.record_job_claimed(self.worker_id)

        return job

    async def _process(self, job: Job) -> None:
        """Execute a claimed job while a heartbeat keeps its lease alive."""
        self.current_job_id = job.id
        heartbeat: asyncio.Task | None = None
        if self._session_factory is not None:
            heartbeat = asyncio.create_task(self._heartbeat_loop(job.id))

        try:
            with job_log_context(job.id, job.retries + 1):
                await self._executor.execute(job)
            self.jobs_processed += 1
        finally:
            if heartbeat is not None:
                heartbeat.cancel()
                try:
                    await heartbeat
                except asyncio.CancelledError:
                    pass
            self.current_job_id = None

    async def _heartbeat_loop(self, job_id: int) -> None:
        """
        Periodically extend the lease on the running job.

        Uses its own short-lived session so it never shares the worker's
        connection with the executor.
        """
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                async with self._session_factory() as session:
                    extended = await JobStore(session).extend_lease(job_id, self.worker_id)
                    await session.commit()
            except STORE_ERRORS as e:
                logger.warning(
                    f"Lease heartbeat failed: {e}",
                    extra={"job_id": job_id, "worker_id": self.worker_id}
                )
                continue

            if not extended:
                logger.warning(
                    "Lease lost while job running",
                    extra={"job_id": job_id, "worker_id": self.worker_id}
                )
                return
            logger.debug("Extended lease", extra={"job_id": job_id})

    async def _idle(self, seconds: float) -> None:
        """Sleep for up to `seconds`, returning early once stop is requested."""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
