"""
Snapshot Cache - precomputed analytical views over the activity ledger.

regenerate() opens one read snapshot of the store, computes every
(view, window) pair of the catalog and renders it to bytes. Each finished
blob replaces the previous one for its key in a single dict assignment under
a lock, so get() never waits on a regeneration and never sees a half-built
value.

A failure for one key is logged and counted; the other keys still
regenerate and the failed key keeps serving its previous blob.
"""
import logging
import re
import threading
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, Optional, Union

from api.services.activity_store import ActivityStore, LedgerReader, get_activity_store
from api.services.classifier import EntityStatus, window_start
from api.services.resilience import SnapshotRenderFailure
from api.services.snapshot_render import render_json
from api.services.sync_engine import SyncGuard
from api.utils.datetime_utils import utc_now, utc_today
from config.activity_config import DistributionConfig, FunnelConfig, SnapshotConfig, UtilizationConfig

logger = logging.getLogger(__name__)

Renderer = Callable[[str, int, dict], bytes]

_WINDOW_PATTERN = re.compile(r"^\s*(\d+)\s*d?\s*$", re.IGNORECASE)


def snapshot_key(view_name: str, window: int) -> str:
    """Cache key for a (view, window) pair, e.g. ``trend_7d``."""
    return f"{view_name}_{window}d"


def parse_window(value: Union[int, str]) -> int:
    """
    Parse a window given as ``7``, ``"7"`` or ``"7d"``.

    Raises:
        ValueError: If the value is not a positive number of days
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid window: {value!r}")
    if isinstance(value, int):
        days = value
    else:
        match = _WINDOW_PATTERN.match(str(value))
        if not match:
            raise ValueError(f"Invalid window: {value!r}")
        days = int(match.group(1))
    if days <= 0:
        raise ValueError(f"Window must be positive, got {days}")
    return days


def catalog() -> list[tuple[str, int]]:
    """Every (view, window) pair a regeneration produces, in generation order."""
    return [
        (view, window)
        for window in SnapshotConfig.WINDOWS
        for view in SnapshotConfig.views()
    ]


@dataclass(frozen=True)
class SnapshotEntry:
    """One rendered view."""
    key: str
    view: str
    window: int
    blob: bytes
    generated_at: datetime

    def describe(self) -> dict:
        return {
            "key": self.key,
            "view": self.view,
            "window_days": self.window,
            "size_bytes": len(self.blob),
            "generated_at": self.generated_at.isoformat(),
        }


@dataclass
class RegenerationSummary:
    generated: int = 0
    failed: int = 0
    failed_keys: list[str] = field(default_factory=list)
    cancelled: bool = False
    elapsed_seconds: float = 0.0

    def to_dict(self) -> dict:
        return {
            "generated": self.generated,
            "failed": self.failed,
            "failed_keys": list(self.failed_keys),
            "cancelled": self.cancelled,
            "elapsed_seconds": self.elapsed_seconds,
        }


# ============================================================================
# View aggregations
#
# Each takes (reader, since, today, window) and returns a JSON-friendly dict
# that always carries ``has_data``.
# ============================================================================

def _date_range(since: date, until: date) -> list[date]:
    return [since + timedelta(days=i) for i in range((until - since).days + 1)]


def _activity_view(reader: LedgerReader, since: date, today: date, window: int) -> dict:
    """Total contributions per day, zero-filled over the window."""
    rows = {row["date"]: row for row in reader.daily_totals(since, today)}
    days = _date_range(since, today)
    totals = [rows[d]["total"] if d in rows else 0 for d in days]
    grand_total = sum(totals)

    peak = None
    if rows:
        peak_index = totals.index(max(totals))
        peak = {"date": days[peak_index], "total": totals[peak_index]}

    return {
        "has_data": bool(rows),
        "dates": days,
        "totals": totals,
        "total": grand_total,
        "average_per_day": round(grand_total / len(days), 2) if days else 0.0,
        "peak": peak,
    }


def _distribution_view(reader: LedgerReader, since: date, today: date, window: int) -> dict:
    """Histogram of per-entity totals within the window."""
    totals = [row["total"] for row in reader.entity_totals(since, today)]
    bins = []
    for label, low, high in DistributionConfig.BINS:
        count = sum(1 for t in totals if t >= low and (high is None or t <= high))
        bins.append({"label": label, "count": count})

    ordered = sorted(totals)
    median = 0.0
    if ordered:
        mid = len(ordered) // 2
        median = float(ordered[mid]) if len(ordered) % 2 else (ordered[mid - 1] + ordered[mid]) / 2

    return {
        "has_data": bool(totals),
        "total_entities": len(totals),
        "bins": bins,
        "zero_activity": sum(1 for t in totals if t == 0),
        "median": median,
        "max": max(totals) if totals else 0,
    }


def _trend_view(reader: LedgerReader, since: date, today: date, window: int) -> dict:
    """Daily totals and active entity counts, with the overall direction."""
    rows = reader.daily_totals(since, today)
    totals = [row["total"] for row in rows]
    active = [row["active_entities"] for row in rows]

    if len(totals) < 2:
        direction = "n/a"
    elif totals[-1] > totals[0]:
        direction = "up"
    elif totals[-1] < totals[0]:
        direction = "down"
    else:
        direction = "flat"

    return {
        "has_data": bool(rows),
        "dates": [row["date"] for row in rows],
        "totals": totals,
        "active_entities": active,
        "direction": direction,
        "total": sum(totals),
        "average_per_day": round(sum(totals) / len(totals), 2) if totals else 0.0,
        "average_active": round(sum(active) / len(active), 2) if active else 0.0,
    }


def _risk_label(utilization: float) -> str:
    if utilization >= UtilizationConfig.HEALTHY:
        return "healthy"
    if utilization >= UtilizationConfig.MODERATE:
        return "moderate"
    if utilization >= UtilizationConfig.CONCERNING:
        return "concerning"
    return "critical"


def _status_view(reader: LedgerReader, since: date, today: date, window: int) -> dict:
    """Entity count per lifecycle status and the share that is active."""
    counts = reader.status_counts()
    total = sum(counts.values())
    utilization = round(counts[EntityStatus.ACTIVE] / total * 100, 1) if total else 0.0
    return {
        "has_data": total > 0,
        "total_entities": total,
        "counts": {status.value: count for status, count in counts.items()},
        "utilization_pct": utilization,
        "risk": _risk_label(utilization) if total else "n/a",
    }


def _stacked_view(reader: LedgerReader, since: date, today: date, window: int) -> dict:
    """Daily totals split by the current status of the contributing entities."""
    rows = reader.daily_totals_by_status(since, today)
    series = {
        status.value: [row[status.value] for row in rows]
        for status in EntityStatus
    }
    return {
        "has_data": bool(rows),
        "dates": [row["date"] for row in rows],
        "series": series,
    }


def _scatter_view(reader: LedgerReader, since: date, today: date, window: int) -> dict:
    """Per-entity total against number of active days."""
    points = [
        {
            "handle": row["handle"],
            "total": row["total"],
            "active_days": row["active_days"],
            "status": row["status"].value,
        }
        for row in reader.entity_totals(since, today)
        if row["total"] > 0
    ]
    return {
        "has_data": bool(points),
        "points": points,
    }


def _funnel_view(reader: LedgerReader, since: date, today: date, window: int) -> dict:
    """Engagement funnel from all entities down to top contributors."""
    total = reader.count_entities()
    active_status = reader.status_counts()[EntityStatus.ACTIVE]
    weekly_since = window_start(today, FunnelConfig.WEEKLY_ACTIVE_DAYS)
    yesterday = today - timedelta(days=1)
    top = sum(
        1 for row in reader.entity_totals(since, today)
        if row["total"] > FunnelConfig.TOP_CONTRIBUTOR_THRESHOLD
    )
    stages = [
        {"stage": "total", "count": total},
        {"stage": "active_status", "count": active_status},
        {"stage": "weekly_active", "count": reader.active_entity_count(weekly_since, today)},
        {"stage": "daily_active", "count": reader.active_entity_count(yesterday, yesterday)},
        {"stage": "top_contributors", "count": top},
    ]
    return {
        "has_data": total > 0,
        "stages": stages,
    }


VIEW_AGGREGATORS: dict[str, Callable[[LedgerReader, date, date, int], dict]] = {
    "activity": _activity_view,
    "distribution": _distribution_view,
    "trend": _trend_view,
    "status": _status_view,
    "stacked": _stacked_view,
    "scatter": _scatter_view,
    "funnel": _funnel_view,
}


class SnapshotCache:
    """In-memory store of rendered views, rebuilt by regenerate()."""

    def __init__(
        self,
        store: ActivityStore,
        render: Renderer = render_json,
        clock: Callable[[], date] = utc_today,
        guard: Optional[SyncGuard] = None,
        aggregators: Optional[dict[str, Callable[[LedgerReader, date, date, int], dict]]] = None,
        media_type: str = "application/json",
    ):
        """
        Initialize the snapshot cache.

        Args:
            store: Store to read the ledger from (read-only)
            render: Turns (view_name, window, data) into bytes
            clock: Returns "today" in UTC
            guard: Rejects overlapping regenerations (a private one if omitted)
            aggregators: View name to aggregation function (defaults to all views)
            media_type: Content type of the rendered bytes
        """
        self.store = store
        self.render = render
        self._clock = clock
        self.guard = guard or SyncGuard("snapshot regeneration")
        self.aggregators = aggregators if aggregators is not None else dict(VIEW_AGGREGATORS)
        self.media_type = media_type
        self._entries: dict[str, SnapshotEntry] = {}
        self._lock = threading.Lock()
        self.last_regenerated: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return self.guard.locked

    def get(self, view_name: str, window: Union[int, str]) -> Optional[bytes]:
        """Rendered bytes for a key, or None if never generated or not a valid window."""
        entry = self.get_entry(view_name, window)
        return entry.blob if entry else None

    def get_entry(self, view_name: str, window: Union[int, str]) -> Optional[SnapshotEntry]:
        try:
            days = parse_window(window)
        except ValueError:
            return None
        with self._lock:
            return self._entries.get(snapshot_key(view_name, days))

    def entries(self) -> list[SnapshotEntry]:
        with self._lock:
            return sorted(self._entries.values(), key=lambda e: e.key)

    def regenerate(self, cancel_event: Optional[threading.Event] = None) -> RegenerationSummary:
        """
        Recompute every key of the catalog.

        Raises:
            SyncAlreadyRunningError: If another regeneration is in progress
        """
        with self.guard.hold():
            return self.regenerate_locked(cancel_event)

    def regenerate_locked(self, cancel_event: Optional[threading.Event] = None) -> RegenerationSummary:
        """Regenerate the catalog. The caller must already hold ``self.guard``."""
        cancel_event = cancel_event or threading.Event()
        started = time.monotonic()
        today = self._clock()
        summary = RegenerationSummary()
        logger.info("Generating activity snapshots...")

        with self.store.read_snapshot() as reader:
            for view_name, window in catalog():
                if cancel_event.is_set():
                    summary.cancelled = True
                    break

                key = snapshot_key(view_name, window)
                try:
                    blob = self._build(reader, view_name, window, today)
                except SnapshotRenderFailure as e:
                    logger.warning(f"Snapshot {key} failed: {e.message}")
                    summary.failed += 1
                    summary.failed_keys.append(key)
                    continue

                entry = SnapshotEntry(
                    key=key,
                    view=view_name,
                    window=window,
                    blob=blob,
                    generated_at=utc_now(),
                )
                with self._lock:
                    self._entries[key] = entry
                summary.generated += 1

        if not summary.cancelled:
            self.last_regenerated = utc_now()

        summary.elapsed_seconds = time.monotonic() - started
        logger.info(
            f"Snapshots {'cancelled' if summary.cancelled else 'complete'}: "
            f"generated={summary.generated}, failed={summary.failed}, "
            f"elapsed={summary.elapsed_seconds:.1f}s"
        )
        return summary

    def _build(self, reader: LedgerReader, view_name: str, window: int, today: date) -> bytes:
        key = snapshot_key(view_name, window)
        aggregate = self.aggregators.get(view_name)
        if aggregate is None:
            raise SnapshotRenderFailure(key, "no aggregation registered for view")

        try:
            data = aggregate(reader, window_start(today, window), today, window)
            blob = self.render(view_name, window, data)
        except SnapshotRenderFailure:
            raise
        except Exception as e:
            raise SnapshotRenderFailure(key, f"{type(e).__name__}: {e}") from e

        if not isinstance(blob, (bytes, bytearray)) or not blob:
            raise SnapshotRenderFailure(key, "renderer returned no bytes")
        return bytes(blob)

    def clear(self) -> None:
        with self._lock:
            self._entries = {}
        self.last_regenerated = None


# Singleton instance
_snapshot_cache: Optional[SnapshotCache] = None
_snapshot_cache_lock = threading.Lock()


def get_snapshot_cache() -> SnapshotCache:
    """Get or create the singleton snapshot cache over the configured store."""
    global _snapshot_cache
    with _snapshot_cache_lock:
        if _snapshot_cache is None:
            _snapshot_cache = SnapshotCache(store=get_activity_store())
        return _snapshot_cache


def reset_snapshot_cache() -> None:
    global _snapshot_cache
    with _snapshot_cache_lock:
        _snapshot_cache = None
