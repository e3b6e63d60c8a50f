"""
Worker pool supervising a fixed number of workers.

Each worker gets its own store connection. Shutdown sets the shared stop
token, gives in-flight jobs a bounded grace period to reach a terminal or
retry state, then releases every connection.
"""

import asyncio
import logging
import signal

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from jobqueue.config import Settings, get_settings
from jobqueue.db.connection import (
    close_db,
    create_session_factory,
    get_engine,
    init_db,
)
from jobqueue.db.repository import JobStore
from jobqueue.observability.logging import setup_logging
from jobqueue.observability.metrics import get_metrics
from jobqueue.observability.tracing import (
    instrument_sqlalchemy,
    setup_tracing,
    shutdown_tracing,
)
from jobqueue.worker.handlers import JobHandler
from jobqueue.worker.main import Worker, default_worker_id

logger = logging.getLogger(__name__)


class WorkerPool:
    """
    Supervisor for N concurrent workers.

    Lifecycle:
    - start(): open one connection per worker and spawn the worker tasks
    - stop(): set the stop token (safe to call from a signal handler)
    - shutdown(): stop, wait up to the grace period, release connections
    - run(): start, wait until stopped, shut down
    """

    def __init__(
        self,
        engine: AsyncEngine,
        worker_count: int | None = None,
        handler: JobHandler | None = None,
        settings: Settings | None = None,
        name: str | None = None,
    ):
        """
        Initialize the pool.

        Args:
            engine: Engine the worker connections are drawn from.
            worker_count: Number of workers. Defaults to the configured count.
            handler: Handler override for every worker.
            settings: Pool and worker settings.
            name: Prefix for worker ids. Defaults to hostname + PID.
        """
        self._settings = settings or get_settings()
        self._engine = engine
        self._session_factory = create_session_factory(engine)
        if worker_count is None:
            worker_count = self._settings.worker_count
        if worker_count < 1:
            raise ValueError(f"worker_count must be at least 1, got {worker_count}")
        self.worker_count = worker_count
        self.grace_period = self._settings.shutdown_grace_period_seconds
        self.name = name or default_worker_id()
        self._handler = handler

        self.stop_event = asyncio.Event()
        self.workers: list[Worker] = []
        self._connections: list[AsyncConnection] = []
        self._tasks: list[asyncio.Task] = []
        self._started = False
        self._closed = False

    @property
    def running(self) -> bool:
        """True between start() and the end of shutdown()."""
        return self._started and not self._closed

    async def start(self) -> None:
        """Open connections and spawn the workers."""
        if self._started:
            raise RuntimeError("Worker pool already started")
        self._started = True

        if self._settings.worker_recover_orphans_on_start:
            await self.recover_orphans()

        logger.info(
            "Worker pool starting",
            extra={"pool": self.name, "worker_count": self.worker_count}
        )

        try:
            for index in range(self.worker_count):
                connection = await self._engine.connect()
                self._connections.append(connection)
                self.workers.append(
                    Worker(
                        connection,
                        self.stop_event,
                        worker_id=f"{self.name}-w{index}",
                        session_factory=self._session_factory,
                        handler=self._handler,
                        settings=self._settings,
                    )
                )
        except Exception:
            await self._release_connections()
            raise

        for worker in self.workers:
            task = asyncio.create_task(worker.run(), name=worker.worker_id)
            task.add_done_callback(self._on_worker_done)
            self._tasks.append(task)

    def stop(self) -> None:
        """Ask every worker to exit after its current job."""
        if not self.stop_event.is_set():
            logger.info("Worker pool stopping", extra={"pool": self.name})
            self.stop_event.set()

    async def wait(self) -> None:
        """Block until the stop token is set or every worker has exited."""
        if not self._tasks:
            await self.stop_event.wait()
            return

        stop_waiter = asyncio.create_task(self.stop_event.wait())
        workers_done = asyncio.gather(*self._tasks, return_exceptions=True)
        try:
            await asyncio.wait(
                {stop_waiter, workers_done},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            stop_waiter.cancel()

    async def shutdown(self) -> None:
        """
        Stop the workers and release their connections.

        Workers are given the grace period to finish the job they are
        executing. A worker still busy after that is cancelled; its job
        stays in-progress until the reaper requeues it on lease expiry.
        """
        if self._closed:
            return
        self.stop()

        if self._tasks:
            done, pending = await asyncio.wait(self._tasks, timeout=self.grace_period)
            if pending:
                busy = [w.current_job_id for w in self.workers if w.current_job_id is not None]
                logger.warning(
                    f"{len(pending)} workers still busy after {self.grace_period}s grace period",
                    extra={"pool": self.name, "job_ids": busy}
                )
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

        await self._release_connections()
        self._closed = True
        logger.info("Worker pool stopped", extra={"pool": self.name})

    async def run(self) -> None:
        """
        Run the pool until stop() is called, then shut down.

        Raises:
            StoreUnavailable: If every worker gave up on the store.
        """
        await self.start()
        try:
            await self.wait()
        finally:
            await self.shutdown()

        errors = self.worker_errors()
        if errors and len(errors) == len(self._tasks):
            logger.error(
                "All workers exited with errors",
                extra={"pool": self.name, "worker_count": len(errors)}
            )
            raise errors[0]

    def worker_errors(self) -> list[BaseException]:
        """Exceptions raised by worker tasks that have finished."""
        return [
            task.exception()
            for task in self._tasks
            if task.done() and not task.cancelled() and task.exception() is not None
        ]

    async def recover_orphans(self) -> int:
        """Requeue in-progress jobs whose lease expired while no pool was running."""
        async with self._session_factory() as session:
            count = await JobStore(session).recover_expired_leases()
            await session.commit()
        if count:
            get_metrics().record_leases_expired(count)
        return count

    def _on_worker_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                f"Worker exited with error: {error}",
                extra={"pool": self.name, "worker_id": task.get_name()}
            )

    async def _release_connections(self) -> None:
        for connection in self._connections:
            try:
                await connection.close()
            except Exception:
                logger.exception("Error closing worker connection")
        self._connections.clear()


async def run_async() -> None:
    """Run the worker pool asynchronously."""
    setup_logging()
    setup_tracing()
    await init_db()
    engine = get_engine()
    instrument_sqlalchemy(engine)

    pool = WorkerPool(engine)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, pool.stop)

    try:
        await pool.run()
    finally:
        await close_db()
        shutdown_tracing()


def run() -> None:
    """Run the worker pool."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
