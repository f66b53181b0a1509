"""
Tests for the job wrappers: guard handling, cancellation and run history.
"""
import threading
from unittest.mock import patch

import pytest

from api.services import activity_jobs
from api.services.resilience import StoreWriteFailure, SyncAlreadyRunningError
from api.services.snapshot_cache import SnapshotCache
from api.services.sync_engine import ActivitySyncEngine
from api.services.sync_health import SyncStatus, get_last_run, get_recent_errors
from tests.fakes import TODAY, FakeActivitySource, calendar_from, days_ago

pytestmark = pytest.mark.unit


def make_engine(store, source, **kwargs):
    return ActivitySyncEngine(
        store=store,
        source=source,
        batch_size=kwargs.pop("batch_size", 50),
        batch_delay_ms=0,
        clock=lambda: TODAY,
        **kwargs,
    )


class BlockingSource(FakeActivitySource):
    """Blocks every fetch until ``release`` is set."""

    def __init__(self, calendars):
        super().__init__(calendars)
        self.entered = threading.Event()
        self.release = threading.Event()

    def fetch(self, handle, cancel_event=None):
        self.entered.set()
        self.release.wait(timeout=5)
        return super().fetch(handle, cancel_event)


class TestSyncJob:

    def test_success_recorded(self, store, history_db):
        store.add_entity("alice")
        source = FakeActivitySource({"alice": calendar_from("alice", {days_ago(1): 1})})

        summary = activity_jobs.run_sync_job("cli", engine=make_engine(store, source))

        assert summary.processed == 1
        run = get_last_run(activity_jobs.SYNC_SOURCE)
        assert run.status == SyncStatus.SUCCESS
        assert run.trigger_source == "cli"
        assert run.processed == 1

    def test_partial_recorded(self, store, history_db):
        store.add_entity("alice")
        store.add_entity("bob")
        source = FakeActivitySource({"alice": calendar_from("alice", {days_ago(1): 1})})

        activity_jobs.run_sync_job("manual", engine=make_engine(store, source))

        run = get_last_run(activity_jobs.SYNC_SOURCE)
        assert run.status == SyncStatus.PARTIAL
        assert run.failed == 1

    def test_store_failure_recorded_with_partial_counts(self, store, history_db):
        for handle in ["a", "b"]:
            store.add_entity(handle)
        source = FakeActivitySource({
            "a": calendar_from("a", {days_ago(1): 1}),
            "b": calendar_from("b", {days_ago(1): -1}),
        })

        with pytest.raises(StoreWriteFailure):
            activity_jobs.run_sync_job("manual", engine=make_engine(store, source, batch_size=1))

        run = get_last_run(activity_jobs.SYNC_SOURCE)
        assert run.status == SyncStatus.FAILED
        assert run.processed == 1
        assert get_recent_errors(activity_jobs.SYNC_SOURCE)[0]["error_type"] == "StoreWriteFailure"

    def test_background_job_rejects_concurrent_trigger(self, store, history_db):
        store.add_entity("alice")
        source = BlockingSource({"alice": calendar_from("alice", {days_ago(1): 1})})
        engine = make_engine(store, source)

        thread = activity_jobs.start_sync_job("manual", engine=engine)
        try:
            assert source.entered.wait(timeout=5)
            with pytest.raises(SyncAlreadyRunningError):
                activity_jobs.start_sync_job("scheduled", engine=engine)
            with pytest.raises(SyncAlreadyRunningError):
                activity_jobs.run_sync_job("cli", engine=engine)
        finally:
            source.release.set()
            thread.join(timeout=5)

        assert not engine.is_running
        assert get_last_run(activity_jobs.SYNC_SOURCE).status == SyncStatus.SUCCESS

    def test_cancel_running_sync(self, store, history_db):
        for handle in ["a", "b", "c"]:
            store.add_entity(handle)
        source = BlockingSource({h: calendar_from(h, {days_ago(1): 1}) for h in ["a", "b", "c"]})
        engine = make_engine(store, source)

        thread = activity_jobs.start_sync_job("manual", engine=engine)
        assert source.entered.wait(timeout=5)

        assert activity_jobs.cancel_sync(engine=engine) is True
        source.release.set()
        thread.join(timeout=5)

        run = get_last_run(activity_jobs.SYNC_SOURCE)
        assert run.status == SyncStatus.CANCELLED
        assert run.processed == 1

    def test_cancel_before_worker_starts_is_kept(self, store, history_db):
        store.add_entity("alice")
        source = FakeActivitySource({"alice": calendar_from("alice", {days_ago(1): 1})})
        engine = make_engine(store, source)
        cancel_sent = threading.Event()
        real_record_start = activity_jobs.record_sync_start

        def record_start_after_cancel(*args, **kwargs):
            cancel_sent.wait(timeout=5)
            return real_record_start(*args, **kwargs)

        with patch('api.services.activity_jobs.record_sync_start', side_effect=record_start_after_cancel):
            thread = activity_jobs.start_sync_job("manual", engine=engine)
            assert activity_jobs.cancel_sync(engine=engine) is True
            cancel_sent.set()
            thread.join(timeout=5)

        run = get_last_run(activity_jobs.SYNC_SOURCE)
        assert run.status == SyncStatus.CANCELLED
        assert source.calls == []

    def test_new_run_clears_previous_cancel(self, store, history_db):
        store.add_entity("alice")
        source = FakeActivitySource({"alice": calendar_from("alice", {days_ago(1): 1})})
        activity_jobs.cancel_all()

        summary = activity_jobs.run_sync_job("manual", engine=make_engine(store, source))

        assert summary.cancelled is False
        assert summary.processed == 1

    def test_cancel_when_idle(self, store, fake_source):
        assert activity_jobs.cancel_sync(engine=make_engine(store, fake_source)) is False


class TestSnapshotJob:

    def test_success_recorded(self, store, history_db):
        store.add_entity("alice")
        cache = SnapshotCache(store=store, clock=lambda: TODAY)

        summary = activity_jobs.run_snapshot_job("scheduled", cache=cache)

        assert summary.failed == 0
        run = get_last_run(activity_jobs.SNAPSHOT_SOURCE)
        assert run.status == SyncStatus.SUCCESS
        assert run.processed == summary.generated

    def test_failed_keys_recorded(self, store, history_db):
        def render(view_name, window, data):
            raise ValueError("no fonts")

        cache = SnapshotCache(store=store, render=render, clock=lambda: TODAY)
        summary = activity_jobs.run_snapshot_job("manual", cache=cache)

        run = get_last_run(activity_jobs.SNAPSHOT_SOURCE)
        assert run.status == SyncStatus.PARTIAL
        assert run.failed == summary.failed
        assert "trend_7d" in run.error_message

    def test_background_job_releases_guard(self, store, history_db):
        cache = SnapshotCache(store=store, clock=lambda: TODAY)

        thread = activity_jobs.start_snapshot_job("manual", cache=cache)
        thread.join(timeout=5)

        assert not cache.is_running
        assert cache.get("status", 7) is not None

    def test_concurrent_regeneration_rejected(self, store, history_db):
        cache = SnapshotCache(store=store, clock=lambda: TODAY)
        cache.guard.try_acquire()
        try:
            with pytest.raises(SyncAlreadyRunningError):
                activity_jobs.start_snapshot_job("manual", cache=cache)
        finally:
            cache.guard.release()
