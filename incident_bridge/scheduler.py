"""Background scheduler for the periodic data-sync"""

import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from incident_bridge.config import settings
from incident_bridge.exceptions import SyncInProgress
from incident_bridge.models.base import SessionLocal
from incident_bridge.services.sync_service import run_sync

logger = logging.getLogger(__name__)

JOB_ID = "incident_sync"


class SyncScheduler:
    """Runs the data-sync on a fixed interval, one run at a time"""

    def __init__(self, interval_minutes: int = settings.sync_interval_minutes, enabled: bool = settings.scheduler_enabled):
        self.scheduler = BackgroundScheduler()
        self.interval_minutes = interval_minutes
        self.enabled = enabled

    def start(self):
        """Start the scheduler"""
        if not self.enabled:
            logger.info("Sync scheduler disabled")
            return
        self.scheduler.add_job(
            func=self._sync_job,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id=JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        logger.info(f"Sync scheduler started, running every {self.interval_minutes} minutes")

    def stop(self):
        """Stop the scheduler"""
        if self.scheduler.running:
            self.scheduler.shutdown()
            logger.info("Sync scheduler stopped")

    def _sync_job(self):
        """Job function: one data-sync recorded as a SyncRun"""
        db = SessionLocal()
        try:
            logger.info("Running scheduled data-sync")
            run = run_sync(db)
            logger.info(f"Scheduled data-sync finished with {run.result.value}")
        except SyncInProgress:
            logger.info("Skipping scheduled data-sync, a manually triggered run is still in progress")
        except Exception as e:
            logger.error(f"Scheduled data-sync failed: {e}")
        finally:
            db.close()


# Global scheduler instance
scheduler = SyncScheduler()
