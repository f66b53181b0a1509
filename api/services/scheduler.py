"""
Cron scheduler for the activity sync and snapshot jobs.

A daemon thread wakes up every ``poll_seconds``, compares the current UTC
time with the next fire time of each cron expression and starts due jobs on
their own threads. A job that is still running when its next slot comes up
is skipped for that slot.
"""
import logging
import threading
from datetime import datetime
from typing import Callable, Optional

from croniter import croniter

from api.services import activity_jobs
from api.services.resilience import SyncAlreadyRunningError
from api.utils.datetime_utils import utc_now
from config.settings import settings

logger = logging.getLogger(__name__)


def next_fire_time(cron_expression: str, after: datetime) -> datetime:
    """Next time the cron expression fires strictly after ``after``."""
    return croniter(cron_expression, after).get_next(datetime)


class ActivityScheduler:
    """Background thread that triggers the sync and snapshot jobs on their crons."""

    def __init__(
        self,
        sync_cron: Optional[str] = None,
        snapshot_cron: Optional[str] = None,
        poll_seconds: float = 30.0,
        clock: Callable[[], datetime] = utc_now,
        start_sync: Callable[..., object] = activity_jobs.start_sync_job,
        start_snapshots: Callable[..., object] = activity_jobs.start_snapshot_job,
    ):
        self.sync_cron = sync_cron or settings.sync_cron
        self.snapshot_cron = snapshot_cron or settings.snapshot_cron
        self.poll_seconds = poll_seconds
        self._clock = clock
        self._jobs: dict[str, tuple[str, Callable[..., object]]] = {
            "activity sync": (self.sync_cron, start_sync),
            "snapshot regeneration": (self.snapshot_cron, start_snapshots),
        }
        self._next_run: dict[str, datetime] = {}
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def next_runs(self) -> dict[str, datetime]:
        return dict(self._next_run)

    def start(self):
        if self._thread and self._thread.is_alive():
            logger.warning("Activity scheduler already running")
            return

        now = self._clock()
        self._next_run = {
            name: next_fire_time(cron, now) for name, (cron, _) in self._jobs.items()
        }
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            daemon=True,
            name="ActivityScheduler",
        )
        self._thread.start()
        for name, when in self._next_run.items():
            logger.info(f"Scheduled {name} at {when.isoformat()}")
        logger.info("Activity scheduler started")

    def stop(self):
        """Stop the loop and cancel any job still running."""
        self._stop_event.set()
        activity_jobs.cancel_all()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5)
        logger.info("Activity scheduler stopped")

    def _run(self):
        """Main scheduler loop."""
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception as e:
                logger.error(f"Activity scheduler error: {e}")
            self._stop_event.wait(self.poll_seconds)

    def tick(self, now: Optional[datetime] = None) -> list[str]:
        """
        Start every job whose fire time has passed.

        Returns:
            Names of the jobs that were started
        """
        now = now or self._clock()
        started = []
        for name, (cron, start_job) in self._jobs.items():
            due = self._next_run.get(name)
            if due is None:
                self._next_run[name] = next_fire_time(cron, now)
                continue
            if now < due:
                continue

            self._next_run[name] = next_fire_time(cron, now)
            try:
                start_job(trigger="scheduled")
                started.append(name)
            except SyncAlreadyRunningError:
                logger.warning(f"Skipping scheduled {name}: previous run still in progress")
        return started


# Singleton instance
_scheduler: Optional[ActivityScheduler] = None


def get_activity_scheduler() -> ActivityScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = ActivityScheduler()
    return _scheduler


def reset_activity_scheduler() -> None:
    global _scheduler
    if _scheduler is not None:
        _scheduler.stop()
    _scheduler = None
