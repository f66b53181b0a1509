"""
Lifecycle classification for tracked entities.

Status is a pure function of two trailing-window sums over the ledger.
Nothing is remembered between runs: every sync recomputes it from scratch.

A window of N days ending on ``today`` covers every date d with
``today - N <= d <= today``. Activity that slides just past the boundary
flips the status on the next run even if the entity was active shortly
before; that boundary behaviour is intentional.
"""
from datetime import date, timedelta
from enum import Enum
from typing import Iterable, Optional


class EntityStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    PENDING_REMOVAL = "pending_removal"


def classify(pending_window_sum: int, inactive_window_sum: int) -> EntityStatus:
    """
    Map the two rolling sums to a lifecycle status.

    Args:
        pending_window_sum: Total count over the last pending_removal_days
        inactive_window_sum: Total count over the last inactive_days

    Returns:
        PENDING_REMOVAL if nothing happened in the long window,
        INACTIVE if nothing happened in the short one, ACTIVE otherwise
    """
    if pending_window_sum == 0:
        return EntityStatus.PENDING_REMOVAL
    if inactive_window_sum == 0:
        return EntityStatus.INACTIVE
    return EntityStatus.ACTIVE


def window_start(today: date, days: int) -> date:
    """First date (inclusive) of a trailing window of ``days`` ending on ``today``."""
    return today - timedelta(days=days)


def window_sum(days: Iterable[tuple[date, int]], since: date, until: date) -> int:
    """Sum counts of (date, count) pairs that fall within [since, until]."""
    return sum(count for day, count in days if since <= day <= until)


def last_active_day(days: Iterable[tuple[date, int]]) -> Optional[date]:
    """Most recent date with a positive count, or None if there is none."""
    active = [day for day, count in days if count > 0]
    return max(active) if active else None
