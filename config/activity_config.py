"""
Snapshot catalog and aggregation constants for the activity monitor.

View names and windows define the fixed set of (view, window) keys the
snapshot cache regenerates. Thresholds mirror the ones the dashboards were
designed around.
"""
from typing import Optional


class SnapshotConfig:
    """Configuration for the precomputed snapshot catalog."""

    # Core views every consumer relies on
    CORE_VIEWS: tuple[str, ...] = ("activity", "distribution", "trend", "status")

    # Extra views kept from the original dashboard set
    EXTRA_VIEWS: tuple[str, ...] = ("stacked", "scatter", "funnel")

    # Trailing windows in days
    WINDOWS: tuple[int, ...] = (1, 7, 30)

    # Window used when a consumer does not ask for one
    DEFAULT_WINDOW: int = 7

    @classmethod
    def views(cls) -> tuple[str, ...]:
        return cls.CORE_VIEWS + cls.EXTRA_VIEWS


class DistributionConfig:
    """Histogram bins for per-entity totals: (label, low, high), high=None is open."""

    BINS: tuple[tuple[str, int, Optional[int]], ...] = (
        ("0 (inactive)", 0, 0),
        ("1-5 (minimal)", 1, 5),
        ("6-10 (low)", 6, 10),
        ("11-20 (moderate)", 11, 20),
        ("21-50 (good)", 21, 50),
        ("51-100 (strong)", 51, 100),
        ("100+ (excellent)", 101, None),
    )


class FunnelConfig:
    """Thresholds for the engagement funnel view."""

    # Entities above this total within the window count as top contributors
    TOP_CONTRIBUTOR_THRESHOLD: int = 50

    # "Weekly active" look-back, independent of the view window
    WEEKLY_ACTIVE_DAYS: int = 7


class UtilizationConfig:
    """Risk labels for the share of active entities (percent)."""

    HEALTHY: float = 80.0
    MODERATE: float = 60.0
    CONCERNING: float = 40.0


# Look-back windows reported by the entity detail and real-time check surfaces
REPORT_WINDOWS: tuple[int, ...] = (7, 30, 60)
