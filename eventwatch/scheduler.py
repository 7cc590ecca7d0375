import datetime
import logging
from enum import Enum

from apscheduler.schedulers.background import BackgroundScheduler

from .analyzer import AlertEvaluator
from .event_store import EventStore
from .models import EventType, Severity

logger = logging.getLogger(__name__)

CHECK_JOB_ID = 'system-checks'
CLEANUP_JOB_ID = 'event-cleanup'


class SchedulerState(str, Enum):
    STOPPED = 'stopped'
    RUNNING = 'running'


class MonitoringScheduler:
    """
    Runs the evaluation pass every few minutes and the retention sweep once a day.

    Each ``start`` builds a fresh APScheduler instance; ``stop`` shuts it down.
    State lives on the instance, so independent schedulers can coexist.
    """

    def __init__(self, evaluator: AlertEvaluator, store: EventStore,
                 check_interval_minutes=5, cleanup_interval_hours=24, retention_days=30,
                 scheduler_factory=BackgroundScheduler):
        self.evaluator = evaluator
        self.store = store
        self.check_interval_minutes = check_interval_minutes
        self.cleanup_interval_hours = cleanup_interval_hours
        self.retention_days = retention_days
        self.scheduler_factory = scheduler_factory

        self.state = SchedulerState.STOPPED
        self._scheduler = None
        self._check_job = None
        self._cleanup_job = None

    @property
    def is_running(self) -> bool:
        return self.state == SchedulerState.RUNNING

    def start(self):
        if self.is_running:
            logger.info("System monitoring already running")
            return

        logger.info("Starting system monitoring service...")
        scheduler = self.scheduler_factory()
        # First pass fires immediately, then repeats on the interval
        self._check_job = scheduler.add_job(
            func=self.run_checks_job,
            trigger='interval',
            minutes=self.check_interval_minutes,
            id=CHECK_JOB_ID,
            next_run_time=datetime.datetime.now(),
        )
        self._cleanup_job = scheduler.add_job(
            func=self.run_cleanup_job,
            trigger='interval',
            hours=self.cleanup_interval_hours,
            id=CLEANUP_JOB_ID,
        )
        scheduler.start()
        self._scheduler = scheduler
        self.state = SchedulerState.RUNNING

    def stop(self):
        if not self.is_running:
            return

        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
        self._check_job = None
        self._cleanup_job = None
        self.state = SchedulerState.STOPPED
        logger.info("System monitoring service stopped")

    def status(self) -> dict:
        return {
            'isRunning': self.is_running,
            'intervalExists': self._check_job is not None,
        }

    def run_checks_job(self):
        try:
            self.evaluator.run_checks()
        except Exception as e:
            logger.exception("Scheduled system check failed")
            try:
                self.store.create(
                    EventType.SYSTEM_ERROR,
                    Severity.ERROR,
                    'System Monitoring Error',
                    f"Failed to run scheduled system checks: {e}",
                    metadata={'error': str(e)},
                )
            except Exception as record_error:
                logger.error(f"Could not record monitoring failure: {record_error}")

    def run_cleanup_job(self):
        try:
            deleted = self.store.delete_older_than(self.retention_days)
            logger.info(f"Event cleanup removed {deleted} events")
        except Exception:
            logger.exception("Event cleanup failed")
