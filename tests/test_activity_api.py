"""
Tests for the activity API endpoints.
"""
import pytest

# These tests use TestClient which initializes the app (slow)
pytestmark = pytest.mark.slow
from datetime import datetime, timezone
from unittest.mock import patch, MagicMock
from fastapi.testclient import TestClient
import httpx

from api.main import app
from api.services.classifier import EntityStatus
from api.services.github_activity import GitHubActivityClient
from api.services.resilience import SyncAlreadyRunningError, TransientFetchFailure
from api.services.sync_health import SyncStatus, record_sync_complete, record_sync_start
from tests.fakes import TODAY, FakeActivitySource, calendar_from, days_ago


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def seeded_store(store):
    """alice active yesterday, bob pending removal and never active."""
    alice = store.add_entity("alice", external_id="E-1", email="alice@example.com")
    bob = store.add_entity("bob")
    with store.transaction() as tx:
        tx.upsert_daily_records(alice.id, [(days_ago(1), 3), (days_ago(40), 5)])
        alice.last_active = datetime(2025, 6, 14, tzinfo=timezone.utc)
        tx.save_entity(alice)

        bob.status = EntityStatus.PENDING_REMOVAL
        tx.save_entity(bob)
    return store


@pytest.fixture
def api_env(seeded_store, history_db):
    with patch('api.routes.activity.get_activity_store', return_value=seeded_store), \
         patch('api.routes.activity.utc_today', return_value=TODAY):
        yield seeded_store


class TestStatus:

    def test_counts(self, client, api_env):
        engine = MagicMock(is_running=False)
        with patch('api.routes.activity.get_sync_engine', return_value=engine):
            response = client.get("/api/activity/status")

        assert response.status_code == 200
        data = response.json()
        assert data["total_entities"] == 2
        assert data["counts"]["active"] == 1
        assert data["counts"]["pending_removal"] == 1
        assert data["sync_running"] is False
        assert data["last_sync"] is None

    def test_reports_last_sync(self, client, api_env):
        run_id = record_sync_start("activity_sync", "manual")
        record_sync_complete(run_id, SyncStatus.SUCCESS, processed=2)

        with patch('api.routes.activity.get_sync_engine', return_value=MagicMock(is_running=True)):
            data = client.get("/api/activity/status").json()

        assert data["sync_running"] is True
        assert data["last_sync"]["processed"] == 2


class TestEntities:

    def test_list_never_active_first(self, client, api_env):
        data = client.get("/api/activity/entities").json()

        assert data["count"] == 2
        assert [e["handle"] for e in data["entities"]] == ["bob", "alice"]

    def test_filter_by_status(self, client, api_env):
        data = client.get("/api/activity/entities?status=pending_removal").json()
        assert [e["handle"] for e in data["entities"]] == ["bob"]

    def test_invalid_status_is_400(self, client, api_env):
        response = client.get("/api/activity/entities?status=sleeping")
        assert response.status_code == 400

    def test_detail_sums(self, client, api_env):
        data = client.get("/api/activity/entities/alice").json()

        assert data["email"] == "alice@example.com"
        assert data["sums"] == {"7d": 3, "30d": 3, "60d": 8}

    def test_detail_not_found(self, client, api_env):
        response = client.get("/api/activity/entities/nobody")
        assert response.status_code == 404


class TestCheck:

    def test_live_check(self, client, api_env):
        source = FakeActivitySource({"dave": calendar_from("dave", {days_ago(2): 4, days_ago(45): 1})})
        with patch('api.routes.activity.get_activity_source', return_value=source):
            data = client.get("/api/activity/check/dave").json()

        assert data["tracked"] is False
        assert data["total_count"] == 5
        assert data["sums"] == {"7d": 4, "30d": 4, "60d": 5}
        assert data["last_active"].startswith("2025-06-13")
        assert api_env.get_entity_by_handle("dave") is None

    def test_unknown_user_is_404(self, client, api_env):
        with patch('api.routes.activity.get_activity_source', return_value=FakeActivitySource()):
            response = client.get("/api/activity/check/ghost")
        assert response.status_code == 404

    def test_unknown_login_from_github_is_404(self, client, api_env):
        body = {
            "data": {"user": None},
            "errors": [{
                "type": "NOT_FOUND",
                "path": ["user"],
                "message": "Could not resolve to a User with the login of 'ghost-xyz'.",
            }],
        }
        github = GitHubActivityClient(
            token="test-token",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json=body)),
        )
        try:
            with patch('api.routes.activity.get_activity_source', return_value=github):
                response = client.get("/api/activity/check/ghost-xyz")
        finally:
            github.close()

        assert response.status_code == 404

    def test_graphql_error_is_502(self, client, api_env):
        body = {"data": None, "errors": [{"message": "Something went wrong"}]}
        github = GitHubActivityClient(
            token="test-token",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json=body)),
        )
        try:
            with patch('api.routes.activity.get_activity_source', return_value=github):
                response = client.get("/api/activity/check/alice")
        finally:
            github.close()

        assert response.status_code == 502

    def test_upstream_failure_is_502(self, client, api_env):
        source = FakeActivitySource({"alice": TransientFetchFailure("alice", "HTTP 503", status_code=503)})
        with patch('api.routes.activity.get_activity_source', return_value=source):
            response = client.get("/api/activity/check/alice")
        assert response.status_code == 502


class TestSyncTrigger:

    def test_start(self, client, api_env):
        with patch('api.routes.activity.start_sync_job') as mock_start:
            response = client.post("/api/activity/sync")

        assert response.status_code == 200
        assert response.json()["status"] == "started"
        mock_start.assert_called_once_with(trigger="manual")

    def test_already_running_is_409(self, client, api_env):
        with patch('api.routes.activity.start_sync_job', side_effect=SyncAlreadyRunningError("sync")):
            response = client.post("/api/activity/sync")
        assert response.status_code == 409

    def test_cancel(self, client, api_env):
        with patch('api.routes.activity.cancel_sync', return_value=True):
            assert client.post("/api/activity/sync/cancel").json()["status"] == "cancelling"
        with patch('api.routes.activity.cancel_sync', return_value=False):
            assert client.post("/api/activity/sync/cancel").json()["status"] == "idle"

    def test_history(self, client, api_env):
        run_id = record_sync_start("activity_sync", "scheduled")
        record_sync_complete(run_id, SyncStatus.PARTIAL, processed=4, failed=1)

        data = client.get("/api/activity/sync/history?limit=5").json()

        assert data["runs"][0]["status"] == "partial"
        assert data["runs"][0]["trigger_source"] == "scheduled"
        assert data["health"]["source"] == "activity_sync"


class TestHealth:

    def test_health_endpoint(self, client, history_db):
        data = client.get("/health").json()

        assert data["service"] == "activity-monitor"
        assert "github_token_configured" in data["checks"]
        assert data["checks"]["jobs_healthy"] is False
