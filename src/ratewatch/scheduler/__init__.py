"""Background jobs -- hourly rate snapshot, news scrape and narrative reports."""

from ratewatch.scheduler.jobs import NarrativeJob, SnapshotJob
from ratewatch.scheduler.runner import Scheduler

__all__ = ["NarrativeJob", "Scheduler", "SnapshotJob"]
