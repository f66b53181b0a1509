"""
Tests for the cron scheduler.

Job starters are injected so no real sync runs.
"""
from datetime import datetime, timezone

import pytest

from api.services.resilience import SyncAlreadyRunningError
from api.services.scheduler import ActivityScheduler, next_fire_time

pytestmark = pytest.mark.unit

UTC = timezone.utc
NOW = datetime(2025, 6, 15, 1, 0, tzinfo=UTC)


class RecordingStarter:
    def __init__(self, error=None):
        self.triggers = []
        self.error = error

    def __call__(self, trigger="manual"):
        self.triggers.append(trigger)
        if self.error:
            raise self.error


def make_scheduler(start_sync=None, start_snapshots=None, now=NOW):
    return ActivityScheduler(
        sync_cron="0 2 * * *",
        snapshot_cron="5 2 * * *",
        clock=lambda: now,
        start_sync=start_sync or RecordingStarter(),
        start_snapshots=start_snapshots or RecordingStarter(),
    )


class TestNextFireTime:

    def test_same_day(self):
        assert next_fire_time("0 2 * * *", NOW) == datetime(2025, 6, 15, 2, 0, tzinfo=UTC)

    def test_rolls_to_next_day(self):
        after = datetime(2025, 6, 15, 2, 0, tzinfo=UTC)
        assert next_fire_time("0 2 * * *", after) == datetime(2025, 6, 16, 2, 0, tzinfo=UTC)


class TestTick:

    def test_first_tick_only_schedules(self):
        sync = RecordingStarter()
        scheduler = make_scheduler(start_sync=sync)

        assert scheduler.tick(NOW) == []
        assert sync.triggers == []
        assert scheduler.next_runs["activity sync"] == datetime(2025, 6, 15, 2, 0, tzinfo=UTC)

    def test_due_jobs_start(self):
        sync, snapshots = RecordingStarter(), RecordingStarter()
        scheduler = make_scheduler(start_sync=sync, start_snapshots=snapshots)
        scheduler.tick(NOW)

        assert scheduler.tick(datetime(2025, 6, 15, 2, 1, tzinfo=UTC)) == ["activity sync"]
        assert sync.triggers == ["scheduled"]
        assert snapshots.triggers == []

        started = scheduler.tick(datetime(2025, 6, 15, 2, 6, tzinfo=UTC))
        assert started == ["snapshot regeneration"]
        assert snapshots.triggers == ["scheduled"]

    def test_next_run_advances(self):
        scheduler = make_scheduler()
        scheduler.tick(NOW)
        scheduler.tick(datetime(2025, 6, 15, 2, 1, tzinfo=UTC))

        assert scheduler.next_runs["activity sync"] == datetime(2025, 6, 16, 2, 0, tzinfo=UTC)
        assert scheduler.tick(datetime(2025, 6, 15, 2, 2, tzinfo=UTC)) == []

    def test_skips_when_still_running(self):
        sync = RecordingStarter(error=SyncAlreadyRunningError("sync"))
        scheduler = make_scheduler(start_sync=sync)
        scheduler.tick(NOW)

        assert scheduler.tick(datetime(2025, 6, 15, 2, 1, tzinfo=UTC)) == []
        assert sync.triggers == ["scheduled"]
        assert scheduler.next_runs["activity sync"] == datetime(2025, 6, 16, 2, 0, tzinfo=UTC)


class TestLifecycle:

    def test_start_and_stop(self):
        scheduler = make_scheduler()
        scheduler.poll_seconds = 0.01

        scheduler.start()
        try:
            assert set(scheduler.next_runs) == {"activity sync", "snapshot regeneration"}
            assert scheduler._thread.is_alive()
        finally:
            scheduler.stop()

        assert not scheduler._thread.is_alive()
