"""Periodic crawl and notify cycles.

Both cycles are APScheduler interval jobs on the running event loop. Every
cycle holds one shared lock, so crawl and notify never run at the same time,
nor alongside a manually triggered cycle that uses the same lock.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger


logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[object]]


class Scheduler:
    """Run the crawl and notify jobs on their own intervals."""

    def __init__(
        self,
        crawl: Job,
        notify: Job,
        crawl_interval: float = 3600,
        notify_interval: float = 300,
        lock: Optional[asyncio.Lock] = None,
    ):
        self.crawl = crawl
        self.notify = notify
        self.crawl_interval = crawl_interval
        self.notify_interval = notify_interval
        self.lock = lock or asyncio.Lock()
        self._scheduler: Optional[AsyncIOScheduler] = None

    async def _run_job(self, name: str, job: Job) -> None:
        async with self.lock:
            try:
                result = await job()
                logger.info(f"{name} cycle finished: {result}")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"{name} cycle failed: {e}", exc_info=True)

    async def run_crawl_cycle(self) -> None:
        await self._run_job("Crawl", self.crawl)

    async def run_notify_cycle(self) -> None:
        await self._run_job("Notify", self.notify)

    def start(self) -> AsyncIOScheduler:
        """Add both interval jobs and start the scheduler.

        Must be called from a running event loop. Each job first runs one
        interval after start.
        """
        scheduler = AsyncIOScheduler(
            timezone="UTC",
            job_defaults={
                "coalesce": True,  # Collapse missed runs into one
                "max_instances": 1,
                "misfire_grace_time": None,
            },
        )

        scheduler.add_job(
            self.run_crawl_cycle,
            trigger=IntervalTrigger(seconds=self.crawl_interval),
            id="crawl",
            name=f"Feed crawl (every {self.crawl_interval}s)",
            replace_existing=True,
        )
        scheduler.add_job(
            self.run_notify_cycle,
            trigger=IntervalTrigger(seconds=self.notify_interval),
            id="notify",
            name=f"Notify (every {self.notify_interval}s)",
            replace_existing=True,
        )

        scheduler.start()
        for job in scheduler.get_jobs():
            logger.info(f"Scheduled job: {job.id} - next run: {job.next_run_time}")

        self._scheduler = scheduler
        return scheduler

    def shutdown(self) -> None:
        """Stop the scheduler without waiting for a running cycle."""
        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Scheduler stopped")

    async def run(self, stop: Optional[asyncio.Event] = None) -> None:
        """Run the schedule until `stop` is set or the task is cancelled."""
        if stop is None:
            stop = asyncio.Event()

        self.start()
        try:
            await stop.wait()
        finally:
            self.shutdown()
