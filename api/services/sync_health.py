"""
Run history and health for the scheduled jobs.

Every activity sync and snapshot regeneration records a row in sync_runs
(start, completion, counts, trigger). Aborts additionally land in
sync_errors. Jobs must complete at least daily or they are flagged stale.
"""
import sqlite3
import logging
from dataclasses import dataclass
from datetime import datetime, timezone, timedelta
from enum import Enum
from pathlib import Path
from typing import Optional

from api.utils.db_paths import get_sync_health_db_path

logger = logging.getLogger(__name__)

# Overridden in tests; resolved from settings when None
SYNC_HEALTH_DB_PATH: Optional[Path] = None

# Maximum age before a job is considered stale (24 hours)
SYNC_STALE_HOURS = 24

SYNC_SOURCES = {
    "activity_sync": {
        "description": "GitHub contribution calendars into the activity ledger",
        "frequency": "daily",
    },
    "snapshots": {
        "description": "Precomputed analytics snapshots",
        "frequency": "daily",
    },
}


class SyncStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"  # finished, some entities failed to fetch
    CANCELLED = "cancelled"
    FAILED = "failed"
    RUNNING = "running"


@dataclass
class SyncRun:
    """One recorded job run."""
    id: int
    source: str
    status: SyncStatus
    trigger_source: str
    started_at: datetime
    completed_at: Optional[datetime]
    processed: int
    failed: int
    error_message: Optional[str]
    duration_seconds: Optional[float]

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "SyncRun":
        return cls(
            id=row["id"],
            source=row["source"],
            status=SyncStatus(row["status"]),
            trigger_source=row["trigger_source"] or "unknown",
            started_at=_parse(row["started_at"]),
            completed_at=_parse(row["completed_at"]) if row["completed_at"] else None,
            processed=row["processed"] or 0,
            failed=row["failed"] or 0,
            error_message=row["error_message"],
            duration_seconds=row["duration_seconds"],
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "source": self.source,
            "status": self.status.value,
            "trigger_source": self.trigger_source,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "processed": self.processed,
            "failed": self.failed,
            "error_message": self.error_message,
            "duration_seconds": self.duration_seconds,
        }


@dataclass
class SyncHealth:
    """Health status for a job."""
    source: str
    description: str
    last_sync: Optional[datetime]
    last_status: Optional[SyncStatus]
    last_error: Optional[str]
    is_stale: bool
    hours_since_sync: Optional[float]
    expected_frequency: str

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "description": self.description,
            "last_sync": self.last_sync.isoformat() if self.last_sync else None,
            "last_status": self.last_status.value if self.last_status else None,
            "last_error": self.last_error,
            "is_stale": self.is_stale,
            "hours_since_sync": self.hours_since_sync,
            "expected_frequency": self.expected_frequency,
        }


def _parse(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def get_sync_health_db() -> sqlite3.Connection:
    """Get connection to the run history database."""
    db_path = SYNC_HEALTH_DB_PATH or get_sync_health_db_path()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path), timeout=30.0)
    conn.row_factory = sqlite3.Row
    _init_schema(conn)
    return conn


def _init_schema(conn: sqlite3.Connection):
    """Initialize run history schema."""
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS sync_runs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            source TEXT NOT NULL,
            status TEXT NOT NULL,
            started_at TEXT NOT NULL,
            completed_at TEXT,
            processed INTEGER DEFAULT 0,
            error_message TEXT,
            duration_seconds REAL
        );

        CREATE INDEX IF NOT EXISTS idx_sync_runs_source ON sync_runs(source);
        CREATE INDEX IF NOT EXISTS idx_sync_runs_started ON sync_runs(started_at DESC);

        CREATE TABLE IF NOT EXISTS sync_errors (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            source TEXT NOT NULL,
            timestamp TEXT NOT NULL,
            error_type TEXT,
            error_message TEXT NOT NULL,
            context TEXT
        );

        CREATE INDEX IF NOT EXISTS idx_sync_errors_source ON sync_errors(source);
    """)
    conn.commit()

    # Migration: failure counts and trigger source were added later
    cursor = conn.execute("PRAGMA table_info(sync_runs)")
    columns = {row[1] for row in cursor.fetchall()}
    migrations = []
    if "failed" not in columns:
        migrations.append("ALTER TABLE sync_runs ADD COLUMN failed INTEGER DEFAULT 0")
    if "trigger_source" not in columns:
        migrations.append("ALTER TABLE sync_runs ADD COLUMN trigger_source TEXT DEFAULT 'unknown'")

    for sql in migrations:
        conn.execute(sql)
    if migrations:
        conn.commit()
        logger.info(f"Migrated sync_runs table: added {len(migrations)} columns")


def record_sync_start(source: str, trigger_source: str = "unknown") -> int:
    """
    Record the start of a job run.

    Returns:
        Run ID for updating completion status
    """
    conn = get_sync_health_db()
    try:
        cursor = conn.execute(
            """
            INSERT INTO sync_runs (source, status, started_at, trigger_source)
            VALUES (?, ?, ?, ?)
            """,
            (source, SyncStatus.RUNNING.value, datetime.now(timezone.utc).isoformat(), trigger_source)
        )
        conn.commit()
        run_id = cursor.lastrowid
    finally:
        conn.close()
    logger.info(f"Started {source} run (run_id={run_id}, trigger={trigger_source})")
    return run_id


def record_sync_complete(
    run_id: int,
    status: SyncStatus,
    processed: int = 0,
    failed: int = 0,
    error_message: Optional[str] = None,
):
    """Record completion of a job run."""
    conn = get_sync_health_db()
    try:
        row = conn.execute(
            "SELECT started_at FROM sync_runs WHERE id = ?", (run_id,)
        ).fetchone()

        completed = datetime.now(timezone.utc)
        duration = None
        if row:
            duration = (completed - _parse(row["started_at"])).total_seconds()

        conn.execute(
            """
            UPDATE sync_runs SET
                status = ?,
                completed_at = ?,
                processed = ?,
                failed = ?,
                error_message = ?,
                duration_seconds = ?
            WHERE id = ?
            """,
            (
                status.value,
                completed.isoformat(),
                processed,
                failed,
                error_message,
                duration,
                run_id,
            )
        )
        conn.commit()
    finally:
        conn.close()

    if status == SyncStatus.FAILED:
        logger.error(f"Run {run_id} failed: {error_message}")
    else:
        logger.info(f"Run {run_id} finished: {status.value} (processed={processed}, failed={failed})")


def record_sync_error(
    source: str,
    error_message: str,
    error_type: Optional[str] = None,
    context: Optional[str] = None,
):
    """Record a job abort for later analysis."""
    conn = get_sync_health_db()
    try:
        conn.execute(
            """
            INSERT INTO sync_errors (source, timestamp, error_type, error_message, context)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                source,
                datetime.now(timezone.utc).isoformat(),
                error_type,
                error_message,
                context,
            )
        )
        conn.commit()
    finally:
        conn.close()
    logger.error(f"Recorded {source} error: {error_message}")


def get_recent_runs(source: Optional[str] = None, limit: int = 20) -> list[SyncRun]:
    """Most recent runs first, optionally for one source."""
    conn = get_sync_health_db()
    try:
        if source:
            rows = conn.execute(
                "SELECT * FROM sync_runs WHERE source = ? ORDER BY started_at DESC, id DESC LIMIT ?",
                (source, limit)
            ).fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM sync_runs ORDER BY started_at DESC, id DESC LIMIT ?",
                (limit,)
            ).fetchall()
    finally:
        conn.close()
    return [SyncRun.from_row(row) for row in rows]


def get_last_run(source: str) -> Optional[SyncRun]:
    runs = get_recent_runs(source, limit=1)
    return runs[0] if runs else None


def get_recent_errors(source: Optional[str] = None, limit: int = 50) -> list[dict]:
    """Get recent recorded errors."""
    conn = get_sync_health_db()
    try:
        if source:
            rows = conn.execute(
                "SELECT * FROM sync_errors WHERE source = ? ORDER BY timestamp DESC LIMIT ?",
                (source, limit)
            ).fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM sync_errors ORDER BY timestamp DESC LIMIT ?",
                (limit,)
            ).fetchall()
    finally:
        conn.close()
    return [dict(row) for row in rows]


def get_sync_health(source: str) -> SyncHealth:
    """Get health status for a specific job."""
    source_info = SYNC_SOURCES.get(source, {
        "description": f"Unknown source: {source}",
        "frequency": "unknown",
    })

    conn = get_sync_health_db()
    try:
        row = conn.execute(
            """
            SELECT status, completed_at, error_message
            FROM sync_runs
            WHERE source = ? AND status != 'running'
            ORDER BY completed_at DESC
            LIMIT 1
            """,
            (source,)
        ).fetchone()
    finally:
        conn.close()

    last_sync = None
    last_status = None
    last_error = None
    hours_since = None
    is_stale = True

    if row:
        if row["completed_at"]:
            last_sync = _parse(row["completed_at"])
            hours_since = (datetime.now(timezone.utc) - last_sync).total_seconds() / 3600
            is_stale = hours_since > SYNC_STALE_HOURS
        last_status = SyncStatus(row["status"])
        last_error = row["error_message"]

    return SyncHealth(
        source=source,
        description=source_info["description"],
        last_sync=last_sync,
        last_status=last_status,
        last_error=last_error,
        is_stale=is_stale,
        hours_since_sync=hours_since,
        expected_frequency=source_info.get("frequency", "unknown"),
    )


def get_all_sync_health() -> list[SyncHealth]:
    return [get_sync_health(source) for source in SYNC_SOURCES]


def get_failed_runs(hours: int = 24) -> list[SyncRun]:
    """Failed runs started in the last N hours."""
    cutoff = (datetime.now(timezone.utc) - timedelta(hours=hours)).isoformat()
    conn = get_sync_health_db()
    try:
        rows = conn.execute(
            """
            SELECT * FROM sync_runs
            WHERE status = 'failed' AND started_at > ?
            ORDER BY started_at DESC
            """,
            (cutoff,)
        ).fetchall()
    finally:
        conn.close()
    return [SyncRun.from_row(row) for row in rows]


def check_sync_health() -> tuple[bool, str]:
    """
    Check overall job health.

    Returns:
        Tuple of (is_healthy, message)
    """
    all_health = get_all_sync_health()
    stale = [h.source for h in all_health if h.is_stale]
    failed = [h.source for h in all_health if h.last_status == SyncStatus.FAILED]

    if not stale and not failed:
        return True, f"All {len(all_health)} jobs are healthy"

    issues = []
    if stale:
        issues.append(f"{len(stale)} stale: {', '.join(stale)}")
    if failed:
        issues.append(f"{len(failed)} failed: {', '.join(failed)}")
    return False, "; ".join(issues)
