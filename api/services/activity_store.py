"""
Activity Store for the activity monitor.

Two tables, joined by id:
- entities: one row per tracked account (handle, contact metadata, status)
- daily_activity: the ledger, one count per (entity_id, date)

The sync engine is the only writer. Writes happen inside ``transaction()``
(one per batch); readers use ``read_snapshot()`` and see a consistent
point-in-time view thanks to SQLite's WAL journal.
"""
import sqlite3
import uuid
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable, Iterator, Optional

from api.services.classifier import EntityStatus
from api.utils.datetime_utils import parse_timestamp, utc_now
from api.utils.db_paths import get_activity_db_path

logger = logging.getLogger(__name__)


@dataclass
class TrackedEntity:
    """
    A monitored account.

    Created by the admin/import surface. The sync engine only touches
    status, last_active and updated_at.
    """

    id: str
    handle: str  # External login, unique
    external_id: str = ""  # e.g. university id
    email: str = ""
    last_active: Optional[datetime] = None
    status: EntityStatus = EntityStatus.ACTIVE
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        """Convert to dict for JSON serialization."""
        return {
            "id": self.id,
            "handle": self.handle,
            "external_id": self.external_id,
            "email": self.email,
            "last_active": self.last_active.isoformat() if self.last_active else None,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "TrackedEntity":
        """Create TrackedEntity from SQLite row."""
        return cls(
            id=row["id"],
            handle=row["handle"],
            external_id=row["external_id"] or "",
            email=row["email"] or "",
            last_active=parse_timestamp(row["last_active"]),
            status=EntityStatus(row["status"]),
            created_at=parse_timestamp(row["created_at"]) or utc_now(),
            updated_at=parse_timestamp(row["updated_at"]) or utc_now(),
        )


@dataclass(frozen=True)
class DailyActivityRecord:
    """One ledger row: the activity count of an entity on a UTC date."""

    entity_id: str
    date: date
    count: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "DailyActivityRecord":
        return cls(
            entity_id=row["entity_id"],
            date=date.fromisoformat(row["date"]),
            count=row["count"],
        )


_SCHEMA = """
    CREATE TABLE IF NOT EXISTS entities (
        id TEXT PRIMARY KEY,
        handle TEXT NOT NULL UNIQUE,
        external_id TEXT NOT NULL DEFAULT '',
        email TEXT NOT NULL DEFAULT '',
        last_active TIMESTAMP,
        status TEXT NOT NULL DEFAULT 'active',
        created_at TIMESTAMP NOT NULL,
        updated_at TIMESTAMP NOT NULL
    );

    CREATE TABLE IF NOT EXISTS daily_activity (
        entity_id TEXT NOT NULL REFERENCES entities(id) ON DELETE CASCADE,
        date TEXT NOT NULL,
        count INTEGER NOT NULL DEFAULT 0 CHECK (count >= 0),
        PRIMARY KEY (entity_id, date)
    );

    CREATE INDEX IF NOT EXISTS idx_daily_activity_date
    ON daily_activity(date);

    CREATE INDEX IF NOT EXISTS idx_entities_status
    ON entities(status);
"""


class StoreTransaction:
    """
    Store operations bound to one open transaction.

    Reads issued here see the transaction's own uncommitted writes, so
    rolling sums computed mid-batch include freshly upserted days.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    # ----- entities -----

    def list_entities(self, status: Optional[EntityStatus] = None) -> list[TrackedEntity]:
        """All entities ordered by handle, optionally filtered by status."""
        if status is None:
            cursor = self.conn.execute("SELECT * FROM entities ORDER BY handle")
        else:
            cursor = self.conn.execute(
                "SELECT * FROM entities WHERE status = ? ORDER BY handle",
                (EntityStatus(status).value,),
            )
        return [TrackedEntity.from_row(row) for row in cursor.fetchall()]

    def get_entity(self, entity_id: str) -> Optional[TrackedEntity]:
        row = self.conn.execute(
            "SELECT * FROM entities WHERE id = ?", (entity_id,)
        ).fetchone()
        return TrackedEntity.from_row(row) if row else None

    def get_entity_by_handle(self, handle: str) -> Optional[TrackedEntity]:
        row = self.conn.execute(
            "SELECT * FROM entities WHERE handle = ?", (handle,)
        ).fetchone()
        return TrackedEntity.from_row(row) if row else None

    def insert_entity(self, entity: TrackedEntity) -> TrackedEntity:
        self.conn.execute(
            """
            INSERT INTO entities
            (id, handle, external_id, email, last_active, status, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entity.id,
                entity.handle,
                entity.external_id,
                entity.email,
                entity.last_active.isoformat() if entity.last_active else None,
                entity.status.value,
                entity.created_at.isoformat(),
                entity.updated_at.isoformat(),
            ),
        )
        return entity

    def save_entity(self, entity: TrackedEntity) -> bool:
        """
        Persist the mutable fields of an existing entity.

        Returns:
            True if a row was updated, False if the entity no longer exists
        """
        cursor = self.conn.execute(
            """
            UPDATE entities
            SET external_id = ?, email = ?, last_active = ?, status = ?, updated_at = ?
            WHERE id = ?
            """,
            (
                entity.external_id,
                entity.email,
                entity.last_active.isoformat() if entity.last_active else None,
                entity.status.value,
                entity.updated_at.isoformat(),
                entity.id,
            ),
        )
        return cursor.rowcount > 0

    def save_sync_state(self, entity: TrackedEntity) -> bool:
        """
        Persist only the fields a sync derives: last_active, status, updated_at.

        Contact metadata is left as stored, so admin edits made while a run
        is in progress survive it.

        Returns:
            True if a row was updated, False if the entity no longer exists
        """
        cursor = self.conn.execute(
            """
            UPDATE entities
            SET last_active = ?, status = ?, updated_at = ?
            WHERE id = ?
            """,
            (
                entity.last_active.isoformat() if entity.last_active else None,
                entity.status.value,
                entity.updated_at.isoformat(),
                entity.id,
            ),
        )
        return cursor.rowcount > 0

    # ----- ledger -----

    def upsert_daily_record(self, entity_id: str, day: date, count: int) -> None:
        """Insert or overwrite the count for (entity_id, day). Last write wins."""
        self.conn.execute(
            """
            INSERT INTO daily_activity (entity_id, date, count)
            VALUES (?, ?, ?)
            ON CONFLICT(entity_id, date) DO UPDATE SET count = excluded.count
            """,
            (entity_id, day.isoformat(), count),
        )

    def upsert_daily_records(self, entity_id: str, days: Iterable[tuple[date, int]]) -> int:
        """Upsert many (date, count) pairs for one entity. Returns rows touched."""
        rows = [(entity_id, day.isoformat(), count) for day, count in days]
        if not rows:
            return 0
        self.conn.executemany(
            """
            INSERT INTO daily_activity (entity_id, date, count)
            VALUES (?, ?, ?)
            ON CONFLICT(entity_id, date) DO UPDATE SET count = excluded.count
            """,
            rows,
        )
        return len(rows)

    def get_daily_record(self, entity_id: str, day: date) -> Optional[DailyActivityRecord]:
        row = self.conn.execute(
            "SELECT * FROM daily_activity WHERE entity_id = ? AND date = ?",
            (entity_id, day.isoformat()),
        ).fetchone()
        return DailyActivityRecord.from_row(row) if row else None

    def list_daily_records(
        self, entity_id: str, since: Optional[date] = None
    ) -> list[DailyActivityRecord]:
        """Ledger rows for an entity, oldest first."""
        if since is None:
            cursor = self.conn.execute(
                "SELECT * FROM daily_activity WHERE entity_id = ? ORDER BY date",
                (entity_id,),
            )
        else:
            cursor = self.conn.execute(
                "SELECT * FROM daily_activity WHERE entity_id = ? AND date >= ? ORDER BY date",
                (entity_id, since.isoformat()),
            )
        return [DailyActivityRecord.from_row(row) for row in cursor.fetchall()]

    def sum_counts(self, entity_id: str, since: date, until: date) -> int:
        """Total count for an entity over the inclusive date range [since, until]."""
        row = self.conn.execute(
            """
            SELECT COALESCE(SUM(count), 0)
            FROM daily_activity
            WHERE entity_id = ? AND date >= ? AND date <= ?
            """,
            (entity_id, since.isoformat(), until.isoformat()),
        ).fetchone()
        return int(row[0])


class LedgerReader(StoreTransaction):
    """
    Aggregate queries over one read transaction.

    Every query issued through the same reader sees the same snapshot of the
    database, even while a sync batch commits concurrently.
    """

    def count_entities(self) -> int:
        return int(self.conn.execute("SELECT COUNT(*) FROM entities").fetchone()[0])

    def status_counts(self) -> dict[EntityStatus, int]:
        """Entity count per status, zero-filled for absent statuses."""
        counts = {status: 0 for status in EntityStatus}
        cursor = self.conn.execute(
            "SELECT status, COUNT(*) FROM entities GROUP BY status"
        )
        for status, count in cursor.fetchall():
            counts[EntityStatus(status)] = count
        return counts

    def daily_totals(self, since: date, until: date) -> list[dict]:
        """
        Per-date totals across all entities.

        Returns:
            List of {date, total, active_entities}, oldest first. Only dates
            present in the ledger appear.
        """
        cursor = self.conn.execute(
            """
            SELECT
                date,
                SUM(count) AS total,
                SUM(CASE WHEN count > 0 THEN 1 ELSE 0 END) AS active_entities
            FROM daily_activity
            WHERE date >= ? AND date <= ?
            GROUP BY date
            ORDER BY date
            """,
            (since.isoformat(), until.isoformat()),
        )
        return [
            {
                "date": date.fromisoformat(row["date"]),
                "total": row["total"],
                "active_entities": row["active_entities"],
            }
            for row in cursor.fetchall()
        ]

    def entity_totals(self, since: date, until: date) -> list[dict]:
        """
        Per-entity totals within the window, including entities with no rows.

        Returns:
            List of {entity_id, handle, status, total, active_days} ordered by handle
        """
        cursor = self.conn.execute(
            """
            SELECT
                e.id AS entity_id,
                e.handle,
                e.status,
                COALESCE(SUM(d.count), 0) AS total,
                COALESCE(SUM(CASE WHEN d.count > 0 THEN 1 ELSE 0 END), 0) AS active_days
            FROM entities e
            LEFT JOIN daily_activity d
                ON d.entity_id = e.id
                AND d.date >= ?
                AND d.date <= ?
            GROUP BY e.id, e.handle, e.status
            ORDER BY e.handle
            """,
            (since.isoformat(), until.isoformat()),
        )
        return [
            {
                "entity_id": row["entity_id"],
                "handle": row["handle"],
                "status": EntityStatus(row["status"]),
                "total": row["total"],
                "active_days": row["active_days"],
            }
            for row in cursor.fetchall()
        ]

    def daily_totals_by_status(self, since: date, until: date) -> list[dict]:
        """
        Per-date totals split by the entities' current status.

        Returns:
            List of {date, active, inactive, pending_removal}, oldest first
        """
        cursor = self.conn.execute(
            """
            SELECT d.date, e.status, SUM(d.count) AS total
            FROM daily_activity d
            JOIN entities e ON e.id = d.entity_id
            WHERE d.date >= ? AND d.date <= ?
            GROUP BY d.date, e.status
            ORDER BY d.date
            """,
            (since.isoformat(), until.isoformat()),
        )
        by_date: dict[str, dict] = {}
        for row in cursor.fetchall():
            entry = by_date.setdefault(
                row["date"],
                {"date": date.fromisoformat(row["date"]), **{s.value: 0 for s in EntityStatus}},
            )
            entry[EntityStatus(row["status"]).value] = row["total"]
        return list(by_date.values())

    def active_entity_count(self, since: date, until: date) -> int:
        """Distinct entities with a positive count within [since, until]."""
        row = self.conn.execute(
            """
            SELECT COUNT(DISTINCT entity_id)
            FROM daily_activity
            WHERE date >= ? AND date <= ? AND count > 0
            """,
            (since.isoformat(), until.isoformat()),
        ).fetchone()
        return int(row[0])


class ActivityStore:
    """
    SQLite-backed entity and ledger storage.

    Guarantees one ledger row per (entity_id, date) through the composite
    primary key.
    """

    def __init__(self, db_path: Optional[str] = None):
        """
        Initialize activity store.

        Args:
            db_path: Path to SQLite database (default from settings)
        """
        self.db_path = db_path or get_activity_db_path()
        self._init_db()

    def _init_db(self):
        """Create database tables if they don't exist."""
        conn = self._get_connection()
        try:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript(_SCHEMA)

            # Migration: contact columns were added after the first release
            cursor = conn.execute("PRAGMA table_info(entities)")
            columns = {row[1] for row in cursor.fetchall()}
            if "external_id" not in columns:
                conn.execute("ALTER TABLE entities ADD COLUMN external_id TEXT NOT NULL DEFAULT ''")
                logger.info("Added external_id column to entities table")
            if "email" not in columns:
                conn.execute("ALTER TABLE entities ADD COLUMN email TEXT NOT NULL DEFAULT ''")
                logger.info("Added email column to entities table")

            logger.info(f"Initialized activity database at {self.db_path}")
        finally:
            conn.close()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with explicit transaction control."""
        conn = sqlite3.connect(self.db_path, isolation_level=None, timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def transaction(self) -> Iterator[StoreTransaction]:
        """
        Open a write transaction.

        Commits when the block exits normally, rolls back on any exception
        and re-raises it.
        """
        conn = self._get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield StoreTransaction(conn)
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    @contextmanager
    def read_snapshot(self) -> Iterator[LedgerReader]:
        """Open a read transaction; all queries see the same snapshot."""
        conn = self._get_connection()
        try:
            conn.execute("BEGIN")
            try:
                yield LedgerReader(conn)
            finally:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
        finally:
            conn.close()

    # ----- admin/import surface -----

    def add_entity(self, handle: str, external_id: str = "", email: str = "") -> TrackedEntity:
        """
        Register a new entity to track.

        Raises:
            ValueError: If the handle is empty or already tracked
        """
        handle = handle.strip()
        if not handle:
            raise ValueError("handle must not be empty")

        now = utc_now()
        entity = TrackedEntity(
            id=str(uuid.uuid4()),
            handle=handle,
            external_id=external_id,
            email=email,
            created_at=now,
            updated_at=now,
        )
        try:
            with self.transaction() as tx:
                tx.insert_entity(entity)
        except sqlite3.IntegrityError as e:
            raise ValueError(f"Entity with handle {handle!r} already exists") from e
        logger.info(f"Added entity {handle} ({entity.id})")
        return entity

    # ----- single-operation conveniences -----

    def list_entities(self, status: Optional[EntityStatus] = None) -> list[TrackedEntity]:
        with self.read_snapshot() as reader:
            return reader.list_entities(status)

    def get_entity(self, entity_id: str) -> Optional[TrackedEntity]:
        with self.read_snapshot() as reader:
            return reader.get_entity(entity_id)

    def get_entity_by_handle(self, handle: str) -> Optional[TrackedEntity]:
        with self.read_snapshot() as reader:
            return reader.get_entity_by_handle(handle)

    def save_entity(self, entity: TrackedEntity) -> bool:
        with self.transaction() as tx:
            return tx.save_entity(entity)

    def upsert_daily_record(self, entity_id: str, day: date, count: int) -> None:
        with self.transaction() as tx:
            tx.upsert_daily_record(entity_id, day, count)

    def get_daily_record(self, entity_id: str, day: date) -> Optional[DailyActivityRecord]:
        with self.read_snapshot() as reader:
            return reader.get_daily_record(entity_id, day)

    def list_daily_records(
        self, entity_id: str, since: Optional[date] = None
    ) -> list[DailyActivityRecord]:
        with self.read_snapshot() as reader:
            return reader.list_daily_records(entity_id, since)

    def sum_counts(self, entity_id: str, since: date, until: date) -> int:
        with self.read_snapshot() as reader:
            return reader.sum_counts(entity_id, since, until)

    def get_statistics(self) -> dict:
        """Get entity and ledger counts."""
        with self.read_snapshot() as reader:
            record_row = reader.conn.execute(
                "SELECT COUNT(*), MIN(date), MAX(date) FROM daily_activity"
            ).fetchone()
            return {
                "total_entities": reader.count_entities(),
                "by_status": {s.value: c for s, c in reader.status_counts().items()},
                "total_records": record_row[0],
                "first_date": record_row[1],
                "last_date": record_row[2],
            }


# Singleton instance
_activity_store: Optional[ActivityStore] = None


def get_activity_store(db_path: Optional[str] = None) -> ActivityStore:
    """
    Get or create the singleton ActivityStore.

    Args:
        db_path: Path to SQLite database (only used on first call)

    Returns:
        ActivityStore instance
    """
    global _activity_store
    if _activity_store is None:
        _activity_store = ActivityStore(db_path)
    return _activity_store


def reset_activity_store() -> None:
    """Drop the singleton so the next call builds a fresh store."""
    global _activity_store
    _activity_store = None
