"""
Tests for the snapshot API endpoints.
"""
import json

import pytest

# These tests use TestClient which initializes the app (slow)
pytestmark = pytest.mark.slow
from unittest.mock import patch
from fastapi.testclient import TestClient

from api.main import app
from api.services.resilience import SyncAlreadyRunningError
from api.services.snapshot_cache import SnapshotCache, catalog
from tests.fakes import TODAY, days_ago


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def cache(store):
    alice = store.add_entity("alice")
    with store.transaction() as tx:
        tx.upsert_daily_records(alice.id, [(days_ago(1), 2), (TODAY, 1)])
    cache = SnapshotCache(store=store, clock=lambda: TODAY)
    with patch('api.routes.snapshots.get_snapshot_cache', return_value=cache):
        yield cache


class TestCatalog:

    def test_nothing_generated(self, client, cache):
        data = client.get("/api/snapshots").json()

        assert len(data["snapshots"]) == len(catalog())
        assert not any(s["available"] for s in data["snapshots"])
        assert data["last_regenerated"] is None
        assert data["regenerating"] is False

    def test_after_regeneration(self, client, cache):
        cache.regenerate()
        data = client.get("/api/snapshots").json()

        assert all(s["available"] for s in data["snapshots"])
        assert data["last_regenerated"] is not None


class TestGetSnapshot:

    def test_serves_rendered_bytes(self, client, cache):
        cache.regenerate()
        response = client.get("/api/snapshots/activity/7d")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/json")
        assert response.content == cache.get("activity", 7)
        payload = json.loads(response.content)
        assert payload["view"] == "activity"
        assert payload["window_days"] == 7

    def test_bare_number_window(self, client, cache):
        cache.regenerate()
        assert client.get("/api/snapshots/trend/30").status_code == 200

    def test_not_generated_is_404(self, client, cache):
        response = client.get("/api/snapshots/status/1d")
        assert response.status_code == 404

    def test_unknown_view_is_404(self, client, cache):
        response = client.get("/api/snapshots/heatmap/7d")
        assert response.status_code == 404

    def test_bad_window_is_400(self, client, cache):
        response = client.get("/api/snapshots/trend/weekly")
        assert response.status_code == 400

    def test_uncatalogued_window_is_404(self, client, cache):
        cache.regenerate()
        response = client.get("/api/snapshots/trend/14d")
        assert response.status_code == 404


class TestRegenerate:

    def test_start(self, client, cache):
        with patch('api.routes.snapshots.start_snapshot_job') as mock_start:
            response = client.post("/api/snapshots/regenerate")

        assert response.status_code == 200
        assert response.json()["status"] == "started"
        mock_start.assert_called_once_with(trigger="manual")

    def test_already_running_is_409(self, client, cache):
        with patch('api.routes.snapshots.start_snapshot_job', side_effect=SyncAlreadyRunningError("snapshot regeneration")):
            response = client.post("/api/snapshots/regenerate")
        assert response.status_code == 409
