"""Timer wrapper around the scheduled jobs.

Runs three background loops on the event loop:
  1. Hourly (aligned to the wall clock): rate snapshot, then news scrape
  2. Daily at ``daily_brief_hour``: daily brief
  3. Daily at ``local_analysis_hour``: local analysis

Manual triggers schedule the same job coroutines as fire-and-forget tasks.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta

from ratewatch.config import SchedulerSettings
from ratewatch.logging import get_logger
from ratewatch.scheduler.jobs import NarrativeJob, SnapshotJob

logger = get_logger(__name__)

# A boundary closer than this counts as already fired. asyncio.sleep runs on
# the monotonic clock and can wake a few ms before the wall-clock boundary.
MIN_DELAY_SECONDS = 1.0


def seconds_until_next_interval(now_ts: float, interval_seconds: int) -> float:
    """Seconds until the next multiple of ``interval_seconds`` since the epoch."""
    delay = interval_seconds - now_ts % interval_seconds
    if delay < MIN_DELAY_SECONDS:
        delay += interval_seconds
    return delay


def seconds_until_hour(now: datetime, hour: int) -> float:
    """Seconds until the next ``hour``:00 local time, today or tomorrow."""
    target = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if (target - now).total_seconds() < MIN_DELAY_SECONDS:
        target += timedelta(days=1)
    return (target - now).total_seconds()


class Scheduler:
    """Owns the job loops and the manually triggered job tasks."""

    def __init__(
        self,
        snapshot_job: SnapshotJob,
        narrative_job: NarrativeJob,
        settings: SchedulerSettings,
    ) -> None:
        self._snapshot_job = snapshot_job
        self._narrative_job = narrative_job
        self._settings = settings
        self._loops: list[asyncio.Task] = []
        self._triggered: set[asyncio.Task] = set()
        self._jobs: dict[str, Callable[[], Awaitable[bool]]] = {
            "snapshot": snapshot_job.run,
            "news_scrape": narrative_job.run_news_scrape,
            "news_refresh": narrative_job.run_refresh,
            "daily_brief": narrative_job.run_daily_brief,
            "local_analysis": narrative_job.run_local_analysis,
        }

    @property
    def is_running(self) -> bool:
        return bool(self._loops)

    async def start(self) -> None:
        if self._loops:
            logger.info("scheduler_already_running")
            return
        self._loops = [
            asyncio.create_task(self._hourly_loop(), name="scheduler-hourly"),
            asyncio.create_task(
                self._daily_loop("daily_brief", self._settings.daily_brief_hour),
                name="scheduler-daily-brief",
            ),
            asyncio.create_task(
                self._daily_loop("local_analysis", self._settings.local_analysis_hour),
                name="scheduler-local-analysis",
            ),
        ]
        if self._settings.run_on_startup:
            self.trigger("snapshot")
            self.trigger("news_refresh")
            self.trigger("local_analysis")
        logger.info(
            "scheduler_started",
            interval_seconds=self._settings.snapshot_interval_seconds,
            daily_brief_hour=self._settings.daily_brief_hour,
            local_analysis_hour=self._settings.local_analysis_hour,
        )

    async def stop(self) -> None:
        """Cancel the loops and any triggered job still running."""
        tasks = [*self._loops, *self._triggered]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._loops = []
        self._triggered.clear()
        logger.info("scheduler_stopped")

    def trigger(self, name: str) -> asyncio.Task:
        """Schedule a job run in the background and return immediately.

        Raises:
            ValueError: Unknown job name.
        """
        job = self._jobs.get(name)
        if job is None:
            raise ValueError(f"Unknown job: {name}")
        task = asyncio.create_task(job(), name=f"job-{name}")
        self._triggered.add(task)
        task.add_done_callback(self._triggered.discard)
        logger.info("job_triggered", job=name)
        return task

    async def _hourly_loop(self) -> None:
        interval = self._settings.snapshot_interval_seconds
        while True:
            delay = seconds_until_next_interval(time.time(), interval)
            await asyncio.sleep(delay)
            await self._snapshot_job.run()
            await self._narrative_job.run_news_scrape()

    async def _daily_loop(self, name: str, hour: int) -> None:
        job = self._jobs[name]
        while True:
            delay = seconds_until_hour(datetime.now(), hour)
            logger.debug("daily_job_scheduled", job=name, in_seconds=round(delay))
            await asyncio.sleep(delay)
            await job()
