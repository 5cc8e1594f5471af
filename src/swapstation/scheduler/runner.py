"""Scheduler running the reconciliation jobs at fixed intervals."""

import asyncio
from collections.abc import Callable
from datetime import datetime

import structlog
from sqlalchemy import Engine

from swapstation.config.logging import SweepStats
from swapstation.config.settings import Settings
from swapstation.scheduler.jobs import ALL_JOBS, BaseSweepJob
from swapstation.services.notifications import Notifier
from swapstation.utils.exceptions import NotFoundError

logger = structlog.get_logger(__name__)


class ReconciliationScheduler:
    """Runs every sweep on its own interval in a single event loop.

    A job never overlaps with itself: a run requested while the previous run
    of the same job is in progress is skipped.
    """

    def __init__(
        self,
        engine: Engine,
        settings: Settings,
        notifier: Notifier,
        clock: Callable[[], datetime] = datetime.now,
        jobs: list[BaseSweepJob] | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            engine: SQLAlchemy engine.
            settings: Application settings.
            notifier: Channel for notifications produced by sweeps.
            clock: Source of the current time.
            jobs: Jobs to run (all reconciliation jobs by default).
        """
        self.engine = engine
        self.settings = settings
        self.notifier = notifier
        if jobs is None:
            jobs = [job_cls(engine, settings, notifier, clock) for job_cls in ALL_JOBS]
        self.jobs: dict[str, BaseSweepJob] = {job.name: job for job in jobs}
        self._locks: dict[str, asyncio.Lock] = {name: asyncio.Lock() for name in self.jobs}
        self._stop = asyncio.Event()

    @property
    def job_names(self) -> list[str]:
        return list(self.jobs)

    def is_running(self, name: str) -> bool:
        return self._locks[name].locked()

    async def run_job(self, name: str) -> SweepStats | None:
        """Run one job now.

        Args:
            name: Job name.

        Returns:
            Statistics of the run, or None if the job was already running.

        Raises:
            NotFoundError: If no job has this name.
        """
        job = self.jobs.get(name)
        if job is None:
            raise NotFoundError("Job", name)

        lock = self._locks[name]
        if lock.locked():
            logger.warning("Job already running, skipping", job=name)
            return None

        async with lock:
            try:
                return await job.run()
            except Exception as e:
                # Selection failed before any item was processed
                logger.error("Job run failed", job=name, error=str(e))
                stats = SweepStats(job_name=name)
                stats.add_error(name, str(e))
                stats.finish()
                return stats

    async def run_all(self) -> list[SweepStats]:
        """Run every job once, one after the other."""
        results = []
        for name in self.jobs:
            stats = await self.run_job(name)
            if stats is not None:
                results.append(stats)
        return results

    async def _loop(self, job: BaseSweepJob) -> None:
        interval = job.interval_seconds
        logger.info("Job scheduled", job=job.name, interval_seconds=interval)
        while not self._stop.is_set():
            await self.run_job(job.name)
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    async def run_forever(self) -> None:
        """Run all jobs on their intervals until :meth:`stop` is called."""
        self._stop.clear()
        logger.info("Scheduler started", jobs=self.job_names)
        await asyncio.gather(*(self._loop(job) for job in self.jobs.values()))
        logger.info("Scheduler stopped")

    def stop(self) -> None:
        """Ask all job loops to finish after their current run."""
        self._stop.set()
