"""
Lease reaper for recovering orphaned jobs.

A worker that crashes mid-job leaves it in-progress. Its lease stops
being extended, and once it expires the reaper moves the job back to
waiting so another worker can claim it. This keeps delivery at-least-once.
"""

import asyncio
import logging
import signal

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobqueue.config import get_settings
from jobqueue.db import close_db, get_session_context, init_db
from jobqueue.db.repository import JobStore
from jobqueue.observability.logging import setup_logging
from jobqueue.observability.metrics import get_metrics

logger = logging.getLogger(__name__)


class Reaper:
    """
    Lease reaper that recovers expired job leases.

    Runs periodically to:
    1. Find in-progress jobs whose lease_expires_at has passed
    2. Return them to waiting for reprocessing
    3. Record metrics for monitoring
    """

    def __init__(
        self,
        interval_seconds: float | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ):
        """
        Initialize the reaper.

        Args:
            interval_seconds: Seconds between reaper runs.
            session_factory: Session source. Defaults to the global one.
        """
        settings = get_settings()
        self.interval = interval_seconds or settings.reaper_interval_seconds
        self._session_factory = session_factory
        self._stop = asyncio.Event()
        self._metrics = get_metrics()

    async def start(self) -> None:
        """Start the reaper loop."""
        logger.info(f"Reaper starting with interval {self.interval}s")
        self._stop.clear()

        while not self._stop.is_set():
            try:
                await self.run_once()
            except Exception as e:
                logger.exception(f"Error in reaper loop: {e}")

            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Reaper stopped")

    def stop(self) -> None:
        """Stop the reaper."""
        logger.info("Reaper stopping")
        self._stop.set()

    async def run_once(self) -> int:
        """
        Recover expired leases once (also usable cron-style).

        Returns:
            Number of jobs recovered.
        """
        if self._session_factory is not None:
            async with self._session_factory() as session:
                count = await JobStore(session).recover_expired_leases()
                await session.commit()
        else:
            async with get_session_context() as session:
                count = await JobStore(session).recover_expired_leases()

        if count > 0:
            self._metrics.record_leases_expired(count)
            logger.info(f"Recovered {count} expired leases")

        return count


async def run_async() -> None:
    """Run the reaper asynchronously."""
    setup_logging()
    await init_db()

    reaper = Reaper()

    # Handle shutdown signals
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, reaper.stop)

    try:
        await reaper.start()
    finally:
        await close_db()


def run() -> None:
    """Run the reaper."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
