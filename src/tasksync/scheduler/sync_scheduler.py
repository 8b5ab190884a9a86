"""Periodic trigger for sync passes."""

from typing import Any, Dict, Optional
from datetime import datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED

from ..core.connector import SyncConnector
from ..core.sync_engine import SyncResult
from ..utils.logging import get_logger
from ..utils.timestamps import utcnow


SYNC_JOB_ID = "sync_pass"


class SchedulerError(Exception):
    """Raised when scheduler operations fail."""
    pass


class SyncScheduler:
    """Runs a sync pass on a fixed interval, never two at once."""

    def __init__(self, connector: SyncConnector, interval_minutes: int = 5):
        """Initialize sync scheduler.

        Args:
            connector: Connector whose ``sync()`` is triggered
            interval_minutes: Minutes between passes
        """
        if interval_minutes < 1:
            raise SchedulerError("interval_minutes must be at least 1")

        self.connector = connector
        self.interval_minutes = interval_minutes
        self.logger = get_logger(self.__class__.__name__)

        self.scheduler = AsyncIOScheduler(
            job_defaults={
                'coalesce': True,
                'max_instances': 1,
                'misfire_grace_time': 60
            }
        )
        self.scheduler.add_listener(self._job_error, EVENT_JOB_ERROR)
        self.scheduler.add_listener(self._job_missed, EVENT_JOB_MISSED)

        self.run_count = 0
        self.error_count = 0
        self.last_run: Optional[datetime] = None
        self.last_result: Optional[SyncResult] = None

    @property
    def is_running(self) -> bool:
        return self.scheduler.running

    async def start(self) -> None:
        """Start the scheduler with the interval job."""
        if self.scheduler.running:
            self.logger.warning("Scheduler is already running")
            return

        try:
            self.scheduler.add_job(
                func=self._run_sync,
                trigger=IntervalTrigger(minutes=self.interval_minutes),
                id=SYNC_JOB_ID,
                name="Sync pass",
                replace_existing=True
            )
            self.scheduler.start()
        except Exception as e:
            self.logger.error("Failed to start scheduler", error=str(e))
            raise SchedulerError(f"Failed to start scheduler: {e}") from e

        self.logger.info("Sync scheduler started", interval_minutes=self.interval_minutes)

    async def stop(self, wait: bool = False) -> None:
        if not self.scheduler.running:
            self.logger.warning("Scheduler is not running")
            return

        self.scheduler.shutdown(wait=wait)
        self.logger.info("Sync scheduler stopped")

    async def trigger_now(self) -> Optional[SyncResult]:
        """Run a pass immediately, outside the interval."""
        return await self._run_sync()

    def get_stats(self) -> Dict[str, Any]:
        job = self.scheduler.get_job(SYNC_JOB_ID) if self.scheduler.running else None
        return {
            "is_running": self.scheduler.running,
            "interval_minutes": self.interval_minutes,
            "next_run": job.next_run_time.isoformat() if job and job.next_run_time else None,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "run_count": self.run_count,
            "error_count": self.error_count,
        }

    async def _run_sync(self) -> Optional[SyncResult]:
        self.run_count += 1
        self.last_run = utcnow()

        try:
            result = await self.connector.sync()
        except Exception as e:
            self.error_count += 1
            self.logger.error("Scheduled sync failed", error=str(e))
            return None

        self.last_result = result
        self.logger.info(
            "Scheduled sync finished",
            success=result.success,
            synced_items=result.synced_items,
            failed_items=result.failed_items
        )
        return result

    def _job_error(self, event):
        self.logger.error("Scheduler job raised", job_id=event.job_id, error=str(event.exception))

    def _job_missed(self, event):
        self.logger.warning("Scheduler job missed", job_id=event.job_id, scheduled_time=str(event.scheduled_run_time))
