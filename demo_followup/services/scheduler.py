"""
APScheduler Service
Runs the follow-up sweep and the no-show check in the background
"""
import logging
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from demo_followup.services.executor import Executor

logger = logging.getLogger(__name__)


class SchedulerService:
    """Service to manage background scheduler tasks"""

    def __init__(
        self,
        executor_factory: Callable[[], Executor],
        no_show_check: Callable[[], object],
        sweep_interval_seconds: int = 60,
        no_show_interval_seconds: int = 300,
    ):
        self.executor_factory = executor_factory
        self.no_show_check = no_show_check
        self.scheduler = BackgroundScheduler(timezone="UTC")
        self._setup_jobs(sweep_interval_seconds, no_show_interval_seconds)

    def _setup_jobs(self, sweep_interval_seconds: int, no_show_interval_seconds: int):
        """Setup all background jobs"""
        # Sweeps never overlap inside one process; other processes are
        # kept apart by the job claim
        self.scheduler.add_job(
            self._run_sweep,
            IntervalTrigger(seconds=sweep_interval_seconds),
            id="followup_sweep",
            name="Send due follow-up messages",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

        self.scheduler.add_job(
            self._check_no_shows,
            IntervalTrigger(seconds=no_show_interval_seconds),
            id="no_show_check",
            name="Check for no-shows",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

    def _run_sweep(self):
        try:
            self.executor_factory().run_sweep()
        except Exception:
            logger.exception("Error in follow-up sweep job")

    def _check_no_shows(self):
        try:
            self.no_show_check()
        except Exception:
            logger.exception("Error in no-show check job")

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def start(self):
        """Start the scheduler"""
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Scheduler started")

    def stop(self):
        """Stop the scheduler"""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
