"""
Job wrappers around the sync engine and the snapshot cache.

These are the operations the scheduler, the HTTP routes and the CLI call.
Each one takes the job's guard in the calling thread, so a racing trigger is
rejected immediately with SyncAlreadyRunningError, then runs the job and
records it in the run history.
"""
import logging
import threading
from typing import Optional

from api.services.resilience import StoreWriteFailure
from api.services.snapshot_cache import RegenerationSummary, SnapshotCache, get_snapshot_cache
from api.services.sync_engine import ActivitySyncEngine, SyncSummary, get_sync_engine
from api.services.sync_health import (
    SyncStatus,
    record_sync_complete,
    record_sync_error,
    record_sync_start,
)

logger = logging.getLogger(__name__)

SYNC_SOURCE = "activity_sync"
SNAPSHOT_SOURCE = "snapshots"

# One signal per job kind; cleared right after a new run takes its guard
_sync_cancel = threading.Event()
_snapshot_cancel = threading.Event()


def _sync_status(summary: SyncSummary) -> SyncStatus:
    if summary.cancelled:
        return SyncStatus.CANCELLED
    if summary.failed:
        return SyncStatus.PARTIAL
    return SyncStatus.SUCCESS


def _snapshot_status(summary: RegenerationSummary) -> SyncStatus:
    if summary.cancelled:
        return SyncStatus.CANCELLED
    if summary.failed:
        return SyncStatus.PARTIAL
    return SyncStatus.SUCCESS


# ============================================================================
# Activity sync
# ============================================================================

def _run_sync_locked(engine: ActivitySyncEngine, trigger: str) -> SyncSummary:
    run_id = record_sync_start(SYNC_SOURCE, trigger)
    try:
        summary = engine.run_locked(_sync_cancel)
    except StoreWriteFailure as e:
        partial = e.summary or SyncSummary()
        record_sync_complete(
            run_id,
            SyncStatus.FAILED,
            processed=partial.processed,
            failed=partial.failed,
            error_message=e.message,
        )
        record_sync_error(SYNC_SOURCE, e.message, type(e).__name__, context=f"trigger={trigger}")
        raise
    except Exception as e:
        record_sync_complete(run_id, SyncStatus.FAILED, error_message=str(e))
        record_sync_error(SYNC_SOURCE, str(e), type(e).__name__, context=f"trigger={trigger}")
        raise

    record_sync_complete(
        run_id,
        _sync_status(summary),
        processed=summary.processed,
        failed=summary.failed,
    )
    return summary


def run_sync_job(trigger: str = "manual", engine: Optional[ActivitySyncEngine] = None) -> SyncSummary:
    """
    Run a full activity sync in the calling thread.

    Raises:
        SyncAlreadyRunningError: If a sync is already running
        StoreWriteFailure: If a batch could not be committed
    """
    engine = engine or get_sync_engine()
    engine.guard.try_acquire()
    _sync_cancel.clear()
    try:
        return _run_sync_locked(engine, trigger)
    finally:
        engine.guard.release()


def start_sync_job(trigger: str = "manual", engine: Optional[ActivitySyncEngine] = None) -> threading.Thread:
    """
    Start a full activity sync on a background thread.

    The guard is acquired before this returns, so a concurrent trigger sees
    the rejection right away rather than from inside the thread.

    Raises:
        SyncAlreadyRunningError: If a sync is already running
    """
    engine = engine or get_sync_engine()
    engine.guard.try_acquire()
    _sync_cancel.clear()

    def _target():
        try:
            _run_sync_locked(engine, trigger)
        except Exception as e:
            logger.error(f"Activity sync ({trigger}) failed: {e}")
        finally:
            engine.guard.release()

    thread = threading.Thread(target=_target, daemon=True, name="ActivitySync")
    try:
        thread.start()
    except RuntimeError:
        engine.guard.release()
        raise
    logger.info(f"Activity sync started in background (trigger={trigger})")
    return thread


def cancel_sync(engine: Optional[ActivitySyncEngine] = None) -> bool:
    """
    Ask the running sync to stop.

    Returns:
        True if a sync was running when the signal was sent
    """
    engine = engine or get_sync_engine()
    if not engine.is_running:
        return False
    _sync_cancel.set()
    logger.info("Cancellation requested for running activity sync")
    return True


# ============================================================================
# Snapshot regeneration
# ============================================================================

def _run_snapshots_locked(cache: SnapshotCache, trigger: str) -> RegenerationSummary:
    run_id = record_sync_start(SNAPSHOT_SOURCE, trigger)
    try:
        summary = cache.regenerate_locked(_snapshot_cancel)
    except Exception as e:
        record_sync_complete(run_id, SyncStatus.FAILED, error_message=str(e))
        record_sync_error(SNAPSHOT_SOURCE, str(e), type(e).__name__, context=f"trigger={trigger}")
        raise

    record_sync_complete(
        run_id,
        _snapshot_status(summary),
        processed=summary.generated,
        failed=summary.failed,
        error_message=", ".join(summary.failed_keys) or None,
    )
    return summary


def run_snapshot_job(trigger: str = "manual", cache: Optional[SnapshotCache] = None) -> RegenerationSummary:
    """
    Regenerate all snapshots in the calling thread.

    Raises:
        SyncAlreadyRunningError: If a regeneration is already running
    """
    cache = cache or get_snapshot_cache()
    cache.guard.try_acquire()
    _snapshot_cancel.clear()
    try:
        return _run_snapshots_locked(cache, trigger)
    finally:
        cache.guard.release()


def start_snapshot_job(trigger: str = "manual", cache: Optional[SnapshotCache] = None) -> threading.Thread:
    """
    Start a snapshot regeneration on a background thread.

    Raises:
        SyncAlreadyRunningError: If a regeneration is already running
    """
    cache = cache or get_snapshot_cache()
    cache.guard.try_acquire()
    _snapshot_cancel.clear()

    def _target():
        try:
            _run_snapshots_locked(cache, trigger)
        except Exception as e:
            logger.error(f"Snapshot regeneration ({trigger}) failed: {e}")
        finally:
            cache.guard.release()

    thread = threading.Thread(target=_target, daemon=True, name="SnapshotRegeneration")
    try:
        thread.start()
    except RuntimeError:
        cache.guard.release()
        raise
    logger.info(f"Snapshot regeneration started in background (trigger={trigger})")
    return thread


def cancel_all() -> None:
    """Signal every running job to stop. Used on shutdown."""
    _sync_cancel.set()
    _snapshot_cancel.set()
