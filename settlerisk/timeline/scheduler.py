"""
Timeline Scan Scheduler.

Runs TimelineTracker.scan on a fixed interval inside the asyncio loop.
One scan at a time: a slow scan delays the next run rather than
overlapping it.
"""

from typing import Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from settlerisk.config import settings
from settlerisk.timeline.schemas import ScanReport
from settlerisk.timeline.tracker import TimelineTracker

logger = structlog.get_logger(__name__)


class TimelineScanScheduler:
    """Background scheduler for the overdue-milestone scan."""

    def __init__(
        self,
        tracker: TimelineTracker,
        interval_seconds: Optional[int] = None,
    ):
        self.tracker = tracker
        self.interval_seconds = interval_seconds or settings.scan_interval_seconds
        self.scheduler = AsyncIOScheduler()
        self.last_report: Optional[ScanReport] = None

    def start(self):
        """Register and start the scan job."""
        self.scheduler.add_job(
            self.run_scan,
            IntervalTrigger(seconds=self.interval_seconds),
            id="timeline_scan",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info("timeline_scheduler_started", interval_seconds=self.interval_seconds)

    def stop(self):
        """Gracefully stop the scheduler."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("timeline_scheduler_stopped")

    async def run_scan(self) -> ScanReport:
        try:
            self.last_report = await self.tracker.scan()
        except Exception as e:
            logger.error("timeline_scan_job_failed", error=str(e))
            raise
        return self.last_report
