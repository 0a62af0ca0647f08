"""
Scheduler for the periodic background jobs:
- liveness tick (every LIVENESS_INTERVAL_SECONDS)
- pending payment expiry and session timeouts (every SESSION_SWEEP_INTERVAL_SECONDS)
- failed notification retry (every NOTIFICATION_RETRY_INTERVAL_SECONDS)

Each job runs in its own asyncio task started in the FastAPI startup event
and cancelled on shutdown. A failing run is logged and the job keeps its
schedule.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional

from vacuum_backend.utils.date_formatter import Clock, now_local

logger = logging.getLogger(__name__)


@dataclass
class PeriodicJob:
    name: str
    interval_seconds: float
    func: Callable[[], Awaitable[object]]
    runs: int = 0
    failures: int = 0
    last_run_at: Optional[datetime] = None
    last_error: Optional[str] = None


class SchedulerService:

    def __init__(self, clock: Clock = now_local):
        self.clock = clock
        self._jobs: dict[str, PeriodicJob] = {}
        self._tasks: dict[str, asyncio.Task] = {}

    def add_job(self, name: str, interval_seconds: float, func: Callable[[], Awaitable[object]]) -> PeriodicJob:
        """
        Register a job. Must be called before start().

        Raises:
            ValueError: Duplicate name or non-positive interval
        """
        if name in self._jobs:
            raise ValueError(f"Job '{name}' already registered")
        if interval_seconds <= 0:
            raise ValueError(f"Job '{name}' needs a positive interval")

        job = PeriodicJob(name=name, interval_seconds=interval_seconds, func=func)
        self._jobs[name] = job
        return job

    @property
    def is_running(self) -> bool:
        return bool(self._tasks)

    def start(self) -> None:
        if self._tasks:
            logger.warning("Scheduler already running, skipping start")
            return

        for job in self._jobs.values():
            self._tasks[job.name] = asyncio.create_task(self._loop(job), name=f"job:{job.name}")
        logger.info(f"✅ Scheduler started with {len(self._jobs)} jobs: {', '.join(self._jobs)}")

    async def stop(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Scheduler stopped")

    async def _loop(self, job: PeriodicJob) -> None:
        while True:
            await asyncio.sleep(job.interval_seconds)
            await self._execute(job)

    async def _execute(self, job: PeriodicJob) -> None:
        job.last_run_at = self.clock()
        job.runs += 1
        try:
            await job.func()
            job.last_error = None
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Keep the schedule alive; the next run retries
            job.failures += 1
            job.last_error = str(e)
            logger.exception(f"❌ Job '{job.name}' failed: {e}")

    async def run_now(self, name: str) -> PeriodicJob:
        """
        Run one job immediately (POST /api/admin/jobs/{name}/run).

        Raises:
            KeyError: Unknown job
        """
        job = self._jobs[name]
        await self._execute(job)
        return job

    def status(self) -> list[dict]:
        return [
            {
                "name": job.name,
                "interval_seconds": job.interval_seconds,
                "runs": job.runs,
                "failures": job.failures,
                "last_run_at": job.last_run_at.isoformat() if job.last_run_at else None,
                "last_error": job.last_error,
                "running": job.name in self._tasks
            }
            for job in self._jobs.values()
        ]
