"""
Activity Monitor Services Package.

This package contains all business logic and data access services.
Use this module to import commonly-used services.

Example:
    from api.services import (
        get_activity_store,
        get_sync_engine,
        get_snapshot_cache,
    )

Key service modules:
- activity_store: TrackedEntity model, ledger and SQLite store
- classifier: lifecycle status from rolling-window sums
- github_activity: GitHub contribution calendar client
- sync_engine: batched fetch/upsert/reclassify run
- snapshot_cache: precomputed views over the ledger
- activity_jobs / scheduler: run history wrappers and cron triggers
"""

# ============================================================================
# Storage & Classification
# ============================================================================

from api.services.activity_store import (
    ActivityStore,
    DailyActivityRecord,
    TrackedEntity,
    get_activity_store,
)

from api.services.classifier import (
    EntityStatus,
    classify,
)

# ============================================================================
# Sync & Snapshots
# ============================================================================

from api.services.github_activity import (
    ActivityCalendar,
    GitHubActivityClient,
    get_activity_source,
)

from api.services.sync_engine import (
    ActivitySyncEngine,
    SyncGuard,
    SyncSummary,
    get_sync_engine,
)

from api.services.snapshot_cache import (
    RegenerationSummary,
    SnapshotCache,
    get_snapshot_cache,
)

# ============================================================================
# Shared Utilities (re-exported from api.utils)
# ============================================================================

from api.utils import make_aware, get_activity_db_path


__all__ = [
    # Storage
    "ActivityStore",
    "DailyActivityRecord",
    "TrackedEntity",
    "get_activity_store",
    "EntityStatus",
    "classify",
    # Sync & snapshots
    "ActivityCalendar",
    "GitHubActivityClient",
    "get_activity_source",
    "ActivitySyncEngine",
    "SyncGuard",
    "SyncSummary",
    "get_sync_engine",
    "RegenerationSummary",
    "SnapshotCache",
    "get_snapshot_cache",
    # Utilities
    "make_aware",
    "get_activity_db_path",
]
