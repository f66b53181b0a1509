"""
Tests for lifecycle classification and window helpers.
"""
import pytest
from datetime import date, timedelta

from api.services.classifier import (
    EntityStatus,
    classify,
    last_active_day,
    window_start,
    window_sum,
)
from tests.fakes import TODAY, days_ago

pytestmark = pytest.mark.unit


class TestClassify:
    """The status table."""

    @pytest.mark.parametrize("pending_sum,inactive_sum,expected", [
        (0, 0, EntityStatus.PENDING_REMOVAL),
        (3, 0, EntityStatus.INACTIVE),
        (1, 1, EntityStatus.ACTIVE),
        (120, 40, EntityStatus.ACTIVE),
    ])
    def test_status_table(self, pending_sum, inactive_sum, expected):
        assert classify(pending_sum, inactive_sum) == expected

    def test_pending_wins_over_inactive(self):
        """A zero long window means removal regardless of the short one."""
        assert classify(0, 5) == EntityStatus.PENDING_REMOVAL

    def test_status_values_are_stable_strings(self):
        assert EntityStatus.ACTIVE.value == "active"
        assert EntityStatus.INACTIVE.value == "inactive"
        assert EntityStatus.PENDING_REMOVAL.value == "pending_removal"
        assert EntityStatus("pending_removal") is EntityStatus.PENDING_REMOVAL


class TestWindows:
    """Trailing window arithmetic."""

    def test_window_start(self):
        assert window_start(date(2025, 3, 31), 30) == date(2025, 3, 1)

    def test_window_sum_is_inclusive_on_both_ends(self):
        since = window_start(TODAY, 30)
        days = [
            (since - timedelta(days=1), 100),  # just outside
            (since, 1),
            (TODAY, 2),
            (TODAY + timedelta(days=1), 100),  # future dates are ignored
        ]
        assert window_sum(days, since, TODAY) == 3

    def test_window_sum_empty(self):
        assert window_sum([], window_start(TODAY, 7), TODAY) == 0

    def test_boundary_flip(self):
        """Activity exactly N+1 days ago no longer counts for an N day window."""
        days = [(days_ago(31), 10)]
        inactive = window_sum(days, window_start(TODAY, 30), TODAY)
        pending = window_sum(days, window_start(TODAY, 60), TODAY)
        assert classify(pending, inactive) == EntityStatus.INACTIVE

        days = [(days_ago(30), 10)]
        inactive = window_sum(days, window_start(TODAY, 30), TODAY)
        assert classify(pending, inactive) == EntityStatus.ACTIVE


class TestLastActiveDay:

    def test_latest_positive_day(self):
        days = [(days_ago(10), 2), (days_ago(3), 1), (days_ago(1), 0)]
        assert last_active_day(days) == days_ago(3)

    def test_none_when_all_zero(self):
        assert last_active_day([(days_ago(1), 0), (days_ago(2), 0)]) is None

    def test_none_when_empty(self):
        assert last_active_day([]) is None


class TestScenarios:
    """Worked examples with the default 30/60 day windows."""

    def _status(self, days):
        pending = window_sum(days, window_start(TODAY, 60), TODAY)
        inactive = window_sum(days, window_start(TODAY, 30), TODAY)
        return classify(pending, inactive)

    def test_alice_pending_removal(self):
        days = [(days_ago(n), 0) for n in range(61)] + [(days_ago(65), 1)]
        assert self._status(days) == EntityStatus.PENDING_REMOVAL

    def test_bob_inactive(self):
        days = [(days_ago(45), 3)] + [(days_ago(n), 0) for n in range(45)]
        assert self._status(days) == EntityStatus.INACTIVE

    def test_carol_active(self):
        assert self._status([(days_ago(1), 1)]) == EntityStatus.ACTIVE
