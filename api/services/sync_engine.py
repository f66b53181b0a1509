"""
Activity Sync Engine.

Pulls the contribution calendar of every tracked entity, merges it into the
ledger and reclassifies the entity. Entities are processed in handle order,
in batches of ``batch_size``, with a cancellable pause of ``batch_delay_ms``
between batches to stay inside the upstream rate budget.

Each batch is fetched first and then written in one transaction, so a fetch
failure never touches the database and a store failure rolls back exactly
that batch.
"""
import logging
import sqlite3
import threading
import time
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from datetime import date
from typing import Callable, Iterator, Optional

from api.services.activity_store import ActivityStore, StoreTransaction, TrackedEntity, get_activity_store
from api.services.classifier import classify, last_active_day, window_start
from api.services.github_activity import ActivityCalendar, ActivitySource, get_activity_source
from api.services.resilience import StoreWriteFailure, SyncAlreadyRunningError
from api.utils.datetime_utils import start_of_day, utc_now, utc_today
from config.settings import settings

logger = logging.getLogger(__name__)


class SyncGuard:
    """
    Try-acquire mutual exclusion for a single-run job.

    A second caller is rejected immediately with SyncAlreadyRunningError
    instead of waiting for the first run to finish.
    """

    def __init__(self, job: str = "sync"):
        self.job = job
        self._lock = threading.Lock()

    def try_acquire(self) -> None:
        if not self._lock.acquire(blocking=False):
            raise SyncAlreadyRunningError(self.job)

    def release(self) -> None:
        self._lock.release()

    @property
    def locked(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def hold(self) -> Iterator[None]:
        self.try_acquire()
        try:
            yield
        finally:
            self.release()


@dataclass
class SyncSummary:
    """Outcome of one sync run. Partial when cancelled or aborted."""
    processed: int = 0
    failed: int = 0
    elapsed_seconds: float = 0.0
    cancelled: bool = False
    batches_committed: int = 0
    total_entities: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class ActivitySyncEngine:
    """Batched fetch, upsert, reclassify and persist over all entities."""

    def __init__(
        self,
        store: ActivityStore,
        source: ActivitySource,
        batch_size: int = 50,
        batch_delay_ms: int = 5000,
        inactive_days: int = 30,
        pending_removal_days: int = 60,
        guard: Optional[SyncGuard] = None,
        clock: Callable[[], date] = utc_today,
    ):
        """
        Initialize the sync engine.

        Args:
            store: Entity and ledger storage
            source: Activity source adapter
            batch_size: Entities per batch and per transaction
            batch_delay_ms: Pause between batches
            inactive_days: Short classification window
            pending_removal_days: Long classification window
            guard: Single-run guard (a private one if omitted)
            clock: Returns "today" in UTC
        """
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        if batch_delay_ms < 0:
            raise ValueError("batch_delay_ms must not be negative")

        self.store = store
        self.source = source
        self.batch_size = batch_size
        self.batch_delay_ms = batch_delay_ms
        self.inactive_days = inactive_days
        self.pending_removal_days = pending_removal_days
        self.guard = guard or SyncGuard("sync")
        self._clock = clock

    @property
    def is_running(self) -> bool:
        return self.guard.locked

    def run_full_sync(self, cancel_event: Optional[threading.Event] = None) -> SyncSummary:
        """
        Run one complete sync.

        Args:
            cancel_event: Set to stop the run between entities or batches

        Returns:
            SyncSummary with processed/failed counts and elapsed time

        Raises:
            SyncAlreadyRunningError: If another run holds the guard
            StoreWriteFailure: If a batch could not be committed
        """
        with self.guard.hold():
            return self.run_locked(cancel_event)

    def run_locked(self, cancel_event: Optional[threading.Event] = None) -> SyncSummary:
        """Run a sync. The caller must already hold ``self.guard``."""
        cancel_event = cancel_event or threading.Event()
        started = time.monotonic()
        today = self._clock()
        summary = SyncSummary()

        entities = self.store.list_entities()
        summary.total_entities = len(entities)
        batches = [
            entities[i:i + self.batch_size]
            for i in range(0, len(entities), self.batch_size)
        ]
        logger.info(
            f"Starting activity sync: {len(entities)} entities in {len(batches)} batches "
            f"(batch_size={self.batch_size}, delay={self.batch_delay_ms}ms)"
        )

        for index, batch in enumerate(batches):
            if index > 0 and self.batch_delay_ms > 0:
                logger.debug(f"Waiting {self.batch_delay_ms}ms before batch {index + 1}")
                cancel_event.wait(self.batch_delay_ms / 1000)

            if cancel_event.is_set():
                summary.cancelled = True
                break

            try:
                self._run_batch(batch, today, cancel_event, summary)
            except StoreWriteFailure as e:
                summary.elapsed_seconds = time.monotonic() - started
                e.summary = summary
                logger.error(
                    f"Activity sync aborted in batch {index + 1}/{len(batches)} "
                    f"({batch[0].handle}..{batch[-1].handle}): {e.message}"
                )
                raise

            if summary.cancelled:
                break

        summary.elapsed_seconds = time.monotonic() - started
        status = "cancelled" if summary.cancelled else "complete"
        logger.info(
            f"Activity sync {status}: processed={summary.processed}, failed={summary.failed}, "
            f"batches={summary.batches_committed}, elapsed={summary.elapsed_seconds:.1f}s"
        )
        return summary

    def _run_batch(
        self,
        batch: list[TrackedEntity],
        today: date,
        cancel_event: threading.Event,
        summary: SyncSummary,
    ) -> None:
        """Fetch every entity of the batch, then write the successes in one transaction."""
        fetched: list[tuple[TrackedEntity, ActivityCalendar]] = []
        for entity in batch:
            if cancel_event.is_set():
                summary.cancelled = True
                break
            calendar = self._fetch(entity, cancel_event)
            if calendar is None:
                summary.failed += 1
                continue
            fetched.append((entity, calendar))

        if not fetched:
            return

        try:
            with self.store.transaction() as tx:
                for entity, calendar in fetched:
                    self._apply(tx, entity, calendar, today)
        except sqlite3.Error as e:
            raise StoreWriteFailure(f"Batch write failed: {e}") from e

        summary.processed += len(fetched)
        summary.batches_committed += 1

    def _fetch(
        self, entity: TrackedEntity, cancel_event: threading.Event
    ) -> Optional[ActivityCalendar]:
        try:
            calendar = self.source.fetch(entity.handle, cancel_event)
        except Exception as e:
            logger.warning(f"Failed to fetch activity for {entity.handle}: {e}")
            return None
        if calendar is None:
            logger.warning(f"No activity calendar returned for {entity.handle}")
        return calendar

    def _apply(
        self,
        tx: StoreTransaction,
        entity: TrackedEntity,
        calendar: ActivityCalendar,
        today: date,
    ) -> None:
        """Upsert the calendar, recompute last_active and status, save the entity."""
        days = calendar.pairs()
        tx.upsert_daily_records(entity.id, days)

        latest = last_active_day(days)
        if latest is not None:
            entity.last_active = start_of_day(latest)

        pending_sum = tx.sum_counts(
            entity.id, window_start(today, self.pending_removal_days), today
        )
        inactive_sum = tx.sum_counts(
            entity.id, window_start(today, self.inactive_days), today
        )
        entity.status = classify(pending_sum, inactive_sum)
        entity.updated_at = utc_now()

        if not tx.save_sync_state(entity):
            raise sqlite3.IntegrityError(f"entity {entity.handle} disappeared during sync")

        logger.debug(
            f"{entity.handle}: {len(days)} days, {self.pending_removal_days}d={pending_sum}, "
            f"{self.inactive_days}d={inactive_sum} -> {entity.status.value}"
        )


# Singleton instance
_sync_engine: Optional[ActivitySyncEngine] = None
_sync_engine_lock = threading.Lock()


def get_sync_engine() -> ActivitySyncEngine:
    """Get or create the singleton engine wired to the configured store and source."""
    global _sync_engine
    # A single engine, so a single guard
    with _sync_engine_lock:
        if _sync_engine is None:
            _sync_engine = ActivitySyncEngine(
                store=get_activity_store(),
                source=get_activity_source(),
                batch_size=settings.batch_size,
                batch_delay_ms=settings.batch_delay_ms,
                inactive_days=settings.inactive_days,
                pending_removal_days=settings.pending_removal_days,
            )
        return _sync_engine


def reset_sync_engine() -> None:
    global _sync_engine
    with _sync_engine_lock:
        _sync_engine = None
