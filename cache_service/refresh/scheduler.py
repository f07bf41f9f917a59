"""In-process periodic refresh of cached namespaces."""

import asyncio
from typing import Awaitable, Callable, Dict

import structlog


logger = structlog.get_logger(__name__)

RefreshJob = Callable[[], Awaitable[object]]


class RefreshScheduler:
    """
    Runs named refresh jobs on fixed intervals.

    An alternative to hitting the cron routes from outside: each job runs
    once per interval until the scheduler stops. A failing run is logged and
    the job keeps its schedule.
    """

    def __init__(self, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.sleep = sleep
        self.jobs: Dict[str, RefreshJob] = {}
        self.refresh_intervals: Dict[str, float] = {}
        self.scheduled_refreshes: Dict[str, asyncio.Task] = {}
        self.is_running = False
        self.logger = structlog.get_logger("refresh-scheduler")

    def add_job(self, name: str, job: RefreshJob, interval_seconds: float) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.jobs[name] = job
        self.refresh_intervals[name] = interval_seconds

    async def start(self) -> None:
        """Start every registered job."""
        self.is_running = True
        for name in self.jobs:
            self.schedule_periodic_refresh(name)
        self.logger.info("Refresh scheduler started", jobs=list(self.jobs))

    async def stop(self) -> None:
        """Cancel all scheduled jobs."""
        self.is_running = False

        for task in self.scheduled_refreshes.values():
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        self.scheduled_refreshes.clear()
        self.logger.info("Refresh scheduler stopped")

    def schedule_periodic_refresh(self, name: str) -> None:
        if name in self.scheduled_refreshes:
            self.logger.warning("Periodic refresh already scheduled", job=name)
            return

        interval = self.refresh_intervals[name]

        async def run_periodic_refresh():
            while self.is_running:
                await self.run_once(name)
                await self.sleep(interval)

        self.scheduled_refreshes[name] = asyncio.create_task(run_periodic_refresh())
        self.logger.info("Scheduled periodic refresh", job=name, interval_seconds=interval)

    async def run_once(self, name: str) -> bool:
        """Run job ``name`` once; True when it completed without raising."""
        try:
            await self.jobs[name]()
        except Exception as e:
            self.logger.error("Periodic refresh failed", job=name, error=str(e))
            return False
        self.logger.info("Periodic refresh completed", job=name)
        return True

    def get_scheduled_refreshes(self):
        return list(self.scheduled_refreshes)
