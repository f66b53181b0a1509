"""
Centralized singleton reset utilities for testing.

These functions reset global singleton instances to prevent test pollution.
Singletons that persist across tests can cause:
- Stale data from previous tests
- Mock objects leaking between tests
- Settings changes not taking effect

Usage in conftest.py:
    @pytest.fixture(autouse=True)
    def reset_singletons_after_test():
        yield
        reset_activity_singletons()
"""


def reset_activity_singletons() -> None:
    """
    Reset every service singleton.

    Safe to call after every test. Resets:
    - ActivityScheduler (stopped first)
    - SnapshotCache
    - ActivitySyncEngine
    - GitHubActivityClient (HTTP client closed)
    - ActivityStore
    """
    from api.services.scheduler import reset_activity_scheduler
    from api.services.snapshot_cache import reset_snapshot_cache
    from api.services.sync_engine import reset_sync_engine
    from api.services.github_activity import reset_activity_source
    from api.services.activity_store import reset_activity_store

    reset_activity_scheduler()
    reset_snapshot_cache()
    reset_sync_engine()
    reset_activity_source()
    reset_activity_store()
