"""
Pytest configuration and shared fixtures for the activity monitor tests.

Test Categories:
- unit: Fast tests with no external dependencies (< 100ms each)
- slow: Tests that build the FastAPI app or wait on threads
- integration: Tests requiring a running server or the real GitHub API

Run categories:
- pytest -m unit              # Fast unit tests only
- pytest -m "not slow"        # Skip slow tests
- pytest -m "not integration" # Skip integration tests
- pytest                      # All tests
"""
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from api.services.activity_store import ActivityStore
from tests.fakes import TODAY, FakeActivitySource


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "slow: Slow tests (app startup, threads)")
    config.addinivalue_line("markers", "integration: Integration tests (server or GitHub required)")


def pytest_collection_modifyitems(config, items):
    """Auto-mark tests that hit real servers."""
    for item in items:
        if "integration" in item.name or "real_" in item.name:
            item.add_marker(pytest.mark.integration)


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def store(tmp_path):
    """Fresh SQLite-backed store in a temporary directory."""
    return ActivityStore(db_path=str(tmp_path / "activity.db"))


@pytest.fixture
def fake_source():
    return FakeActivitySource()


@pytest.fixture
def history_db(tmp_path):
    """Point the run history at a temporary database."""
    db_path = tmp_path / "sync_health.db"
    with patch('api.services.sync_health.SYNC_HEALTH_DB_PATH', db_path):
        yield db_path


@pytest.fixture(autouse=True)
def reset_singletons_after_test():
    yield
    from tests.reset_singletons import reset_activity_singletons
    reset_activity_singletons()
