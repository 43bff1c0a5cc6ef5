"""
tests/test_admin.py

Admin status snapshot and queue control actions.
"""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from judgesync.routers.admin import get_job_queue, get_status_aggregator
from judgesync.services.job_queue import JobQueue
from tests.fakes import FakeQueueDB

URL = "/api/admin/sync"


@pytest.fixture
def admin_client(app, queue: JobQueue) -> TestClient:
    app.dependency_overrides[get_job_queue] = lambda: queue
    return TestClient(app, raise_server_exceptions=False)


class TestAdminAuth:
    @pytest.mark.parametrize("method,path", [("get", "/api/admin/sync-status"), ("post", URL)])
    def test_requires_admin_key(self, admin_client: TestClient, method: str, path: str) -> None:
        response = getattr(admin_client, method)(path)

        assert response.status_code == 401
        assert response.json()["error"] == "unauthorized"

    def test_sync_key_is_not_an_admin_key(self, admin_client: TestClient, sync_headers) -> None:
        response = admin_client.post(
            URL, json={"action": "cancel_jobs"}, headers={"X-Admin-Key": sync_headers["X-API-Key"]}
        )

        assert response.status_code == 401


class TestSyncStatus:
    def test_snapshot_is_not_cached(self, app, admin_client: TestClient, admin_headers) -> None:
        aggregator = MagicMock()
        aggregator.build_snapshot = AsyncMock(
            return_value={"timestamp": "2026-01-05T12:00:00+00:00", "health": {"status": "healthy"}}
        )
        app.dependency_overrides[get_status_aggregator] = lambda: aggregator

        response = admin_client.get("/api/admin/sync-status", headers=admin_headers)

        assert response.status_code == 200
        assert response.headers["Cache-Control"] == "no-store"
        assert response.json()["health"]["status"] == "healthy"


class TestQueueJob:
    def test_defaults_to_decision_job(
        self, admin_client: TestClient, admin_headers, queue_db: FakeQueueDB
    ) -> None:
        response = admin_client.post(URL, json={"action": "queue_job"}, headers=admin_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        job = queue_db.jobs[body["jobId"]]
        assert job["type"] == "decision"
        assert job["priority"] == 100
        assert job["payload"] == {}

    def test_options_validated_and_normalized(
        self, admin_client: TestClient, admin_headers, queue_db: FakeQueueDB
    ) -> None:
        response = admin_client.post(
            URL,
            json={
                "action": "queue_job",
                "type": "judge",
                "priority": 250,
                "options": {"batchSize": 3, "jurisdiction": "ny", "judgeIds": [1, 2]},
            },
            headers=admin_headers,
        )

        assert response.status_code == 200
        job = queue_db.jobs[response.json()["jobId"]]
        assert job["type"] == "judge"
        assert job["priority"] == 250
        assert job["payload"] == {"batchSize": 3, "jurisdiction": "NY", "judgeIds": ["1", "2"]}

    def test_invalid_options_are_400(
        self, admin_client: TestClient, admin_headers, queue_db: FakeQueueDB
    ) -> None:
        response = admin_client.post(
            URL,
            json={"action": "queue_job", "type": "court", "options": {"batchSize": 500}},
            headers=admin_headers,
        )

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "validation_error"
        assert body["details"]
        assert queue_db.jobs == {}

    def test_unknown_action_is_400(self, admin_client: TestClient, admin_headers) -> None:
        response = admin_client.post(URL, json={"action": "drop_tables"}, headers=admin_headers)

        assert response.status_code == 400


class TestQueueControl:
    def test_cancel_by_type(self, admin_client: TestClient, admin_headers, queue_db: FakeQueueDB) -> None:
        queue_db.insert("judge")
        queue_db.insert("judge", status="running")
        queue_db.insert("court")
        queue_db.insert("judge", status="succeeded")

        response = admin_client.post(
            URL, json={"action": "cancel_jobs", "type": "judge"}, headers=admin_headers
        )

        assert response.status_code == 200
        assert response.json()["cancelledCount"] == 2
        statuses = sorted(j["status"] for j in queue_db.jobs.values())
        assert statuses == ["cancelled", "cancelled", "pending", "succeeded"]

    def test_cancel_everything(self, admin_client: TestClient, admin_headers, queue_db: FakeQueueDB) -> None:
        queue_db.insert("judge")
        queue_db.insert("court")

        response = admin_client.post(URL, json={"action": "cancel_jobs"}, headers=admin_headers)

        assert response.json()["cancelledCount"] == 2

    def test_restart_queue_reaps_expired_leases(
        self, admin_client: TestClient, admin_headers, queue_db: FakeQueueDB
    ) -> None:
        job_id = queue_db.insert("court", status="running")
        queue_db.jobs[job_id].update(
            attempts=1, worker_id="worker-a", lease_expires_at=queue_db.now - timedelta(seconds=1)
        )

        response = admin_client.post(URL, json={"action": "restart_queue"}, headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["reapedCount"] == 1
        assert queue_db.jobs[job_id]["status"] == "pending"
        assert queue_db.jobs[job_id]["worker_id"] is None

    def test_archive(self, admin_client: TestClient, admin_headers, queue_db: FakeQueueDB) -> None:
        old = queue_db.insert("court", status="succeeded")
        recent = queue_db.insert("court", status="failed")
        queue_db.jobs[old]["completed_at"] = queue_db.now - timedelta(days=10)
        queue_db.jobs[recent]["completed_at"] = queue_db.now - timedelta(days=1)

        response = admin_client.post(URL, json={"action": "archive", "days": 7}, headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["archivedCount"] == 1
        assert queue_db.jobs[old]["archived_at"] is not None
        assert queue_db.jobs[recent]["archived_at"] is None
