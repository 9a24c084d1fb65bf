"""Daily time trigger for the reminder sweep.

Wraps an APScheduler ``BackgroundScheduler`` with a single cron job that
calls ``ReminderScheduler.sweep`` at the configured wall-clock time. All
business logic stays in the scheduler service.
"""

from __future__ import annotations

import logging
import threading

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from .scheduler_service import ReminderScheduler

LOGGER = logging.getLogger(__name__)

JOB_ID = "daily_reminder_sweep"


class SweepTrigger:
    """Owns the background scheduler; start once, stop on shutdown."""

    def __init__(self, reminder_scheduler: ReminderScheduler) -> None:
        self.reminder_scheduler = reminder_scheduler
        self._cancel = threading.Event()
        self._scheduler: BackgroundScheduler | None = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        if self.running:
            LOGGER.info("Sweep trigger already running, skipping initialization")
            return

        policy = self.reminder_scheduler.policy
        self._cancel.clear()
        self._scheduler = BackgroundScheduler(timezone=policy.timezone)
        self._scheduler.add_job(
            self.run_sweep,
            trigger=CronTrigger(hour=policy.sweep_hour, minute=policy.sweep_minute, timezone=policy.timezone),
            id=JOB_ID,
            replace_existing=True,
            max_instances=1,  # no overlapping sweeps
            coalesce=True,  # merge runs missed while the server was down
        )
        self._scheduler.start()
        LOGGER.info(
            "Sweep trigger started: daily at %02d:%02d %s",
            policy.sweep_hour,
            policy.sweep_minute,
            policy.timezone,
        )

    def reschedule(self) -> None:
        """Re-read the sweep time from the current policy."""
        if not self.running:
            return
        policy = self.reminder_scheduler.policy
        self._scheduler.reschedule_job(
            JOB_ID,
            trigger=CronTrigger(hour=policy.sweep_hour, minute=policy.sweep_minute, timezone=policy.timezone),
        )
        LOGGER.info("Sweep trigger rescheduled to %02d:%02d %s", policy.sweep_hour, policy.sweep_minute, policy.timezone)

    def run_sweep(self) -> None:
        report = self.reminder_scheduler.sweep(cancel_event=self._cancel)
        LOGGER.info("Scheduled sweep finished with status=%s counts=%s", report.status, report.counts)

    def stop(self) -> None:
        """Cancel an in-flight sweep and shut the scheduler down."""
        self._cancel.set()
        if self._scheduler is not None:
            if self._scheduler.running:
                self._scheduler.shutdown(wait=False)
            self._scheduler = None
            LOGGER.info("Sweep trigger stopped")
