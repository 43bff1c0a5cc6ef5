"""
tests/test_webhooks.py

CourtListener webhook endpoint and ingestion service.

Verifies:
1. Signature is checked over the exact raw bytes (any change -> 401, no job)
2. person.updated -> exactly one priority-200 judge job for that id
3. Unknown events are acknowledged with handled=False
4. Malformed bodies are 400 with no side effect
5. Repeat deliveries of a webhook_id inside the TTL are dropped
6. Handshake echoes the challenge only for the right verify token
7. A delivery whose job could not be queued is not remembered as seen
"""

from __future__ import annotations

import json

import pytest
from fastapi.testclient import TestClient

from judgesync.models import SyncJobType
from judgesync.routers.webhooks import get_ingestion_service
from judgesync.services.job_queue import JobQueue
from judgesync.services.webhook_ingestion import (
    SIGNATURE_HEADER,
    WebhookEnvelope,
    WebhookIngestionService,
    compute_signature,
    plan_job,
    verify_signature,
)
from tests.conftest import VERIFY_TOKEN, WEBHOOK_SECRET
from tests.fakes import FakeDeliveryRepository, FakeQueueDB

URL = "/api/webhooks/courtlistener"


def envelope(event: str = "person.updated", data_id: str = "p123", **extra) -> dict:
    body = {
        "event": event,
        "data": {"id": data_id, "type": event.split(".")[0], "attributes": extra.pop("attributes", {})},
        "timestamp": "2026-01-05T12:00:00Z",
    }
    body.update(extra)
    return body


def signed(body: bytes, secret: str = WEBHOOK_SECRET) -> dict:
    return {SIGNATURE_HEADER: compute_signature(body, secret), "Content-Type": "application/json"}


@pytest.fixture
def service(queue_db: FakeQueueDB) -> WebhookIngestionService:
    return WebhookIngestionService(
        queue=JobQueue(connection=queue_db.connection),
        deliveries=FakeDeliveryRepository(),
    )


@pytest.fixture
def webhook_client(app, service: WebhookIngestionService) -> TestClient:
    app.dependency_overrides[get_ingestion_service] = lambda: service
    return TestClient(app, raise_server_exceptions=False)


class TestSignature:
    def test_valid_signature(self) -> None:
        body = b'{"event":"x"}'

        assert verify_signature(body, compute_signature(body, "s"), "s") is True
        assert verify_signature(body, "sha256=" + compute_signature(body, "s"), "s") is True

    def test_rejects_missing_or_unconfigured(self) -> None:
        body = b"{}"

        assert verify_signature(body, None, "s") is False
        assert verify_signature(body, compute_signature(body, "s"), None) is False
        assert verify_signature(body, "", "s") is False

    def test_any_byte_change_fails(self) -> None:
        body = json.dumps(envelope()).encode()
        signature = compute_signature(body, "s")
        tampered = body.replace(b"p123", b"p124")

        assert verify_signature(tampered, signature, "s") is False
        assert verify_signature(body + b" ", signature, "s") is False


class TestWebhookEndpoint:
    def test_person_updated_queues_one_judge_job(
        self, webhook_client: TestClient, queue_db: FakeQueueDB
    ) -> None:
        body = json.dumps(envelope("person.updated", "p123")).encode()

        response = webhook_client.post(URL, content=body, headers=signed(body))

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["handled"] is True
        assert data["event"] == "person.updated"
        assert data["jobId"] in queue_db.jobs

        [job] = queue_db.jobs.values()
        assert job["type"] == "judge"
        assert job["priority"] == 200
        assert job["payload"] == {"batchSize": 1, "forceRefresh": True, "judgeIds": ["p123"]}

    def test_tampered_body_rejected_without_job(
        self, webhook_client: TestClient, queue_db: FakeQueueDB
    ) -> None:
        body = json.dumps(envelope()).encode()
        headers = signed(body)
        tampered = body.replace(b"p123", b"p999")

        response = webhook_client.post(URL, content=tampered, headers=headers)

        assert response.status_code == 401
        assert response.json()["error"] == "unauthorized"
        assert queue_db.jobs == {}

    def test_missing_signature_rejected(self, webhook_client: TestClient, queue_db: FakeQueueDB) -> None:
        response = webhook_client.post(URL, content=json.dumps(envelope()).encode())

        assert response.status_code == 401
        assert queue_db.jobs == {}

    def test_wrong_secret_rejected(self, webhook_client: TestClient) -> None:
        body = json.dumps(envelope()).encode()

        response = webhook_client.post(URL, content=body, headers=signed(body, "other-secret"))

        assert response.status_code == 401
        assert response.json()["message"] == "Unauthorized"

    def test_unknown_event_acknowledged(self, webhook_client: TestClient, queue_db: FakeQueueDB) -> None:
        body = json.dumps(envelope("docket.alert", "d1")).encode()

        response = webhook_client.post(URL, content=body, headers=signed(body))

        assert response.status_code == 200
        assert response.json()["handled"] is False
        assert queue_db.jobs == {}

    @pytest.mark.parametrize(
        "body",
        [
            b"not json",
            b"[1, 2]",
            json.dumps({"data": {"id": "x"}}).encode(),
            json.dumps({"event": "person.updated", "data": {"id": ""}}).encode(),
        ],
    )
    def test_malformed_body_is_400(self, webhook_client: TestClient, queue_db: FakeQueueDB, body: bytes) -> None:
        response = webhook_client.post(URL, content=body, headers=signed(body))

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"
        assert queue_db.jobs == {}

    def test_repeat_delivery_deduplicated(self, webhook_client: TestClient, queue_db: FakeQueueDB) -> None:
        body = json.dumps(envelope(webhook_id="wh-1")).encode()

        first = webhook_client.post(URL, content=body, headers=signed(body))
        second = webhook_client.post(URL, content=body, headers=signed(body))

        assert first.json()["handled"] is True
        assert second.status_code == 200
        assert second.json()["duplicate"] is True
        assert len(queue_db.jobs) == 1


class TestHandshake:
    def test_matching_token_echoes_challenge(self, webhook_client: TestClient) -> None:
        response = webhook_client.get(
            URL, params={"hub.challenge": "abc", "hub.verify_token": VERIFY_TOKEN}
        )

        assert response.status_code == 200
        assert response.text == "abc"

    def test_mismatched_token_forbidden(self, webhook_client: TestClient) -> None:
        response = webhook_client.get(URL, params={"hub.challenge": "abc", "hub.verify_token": "nope"})

        assert response.status_code == 403
        assert "abc" not in response.text

    def test_missing_challenge_forbidden(self, webhook_client: TestClient) -> None:
        response = webhook_client.get(URL, params={"hub.verify_token": VERIFY_TOKEN})

        assert response.status_code == 403


class TestEventMapping:
    def test_opinion_event_targets_author(self) -> None:
        plan = plan_job(
            WebhookEnvelope.model_validate(
                envelope("opinion.created", "op1", attributes={"author": 77})
            )
        )

        assert plan.job_type is SyncJobType.DECISION
        assert plan.priority == 200
        assert plan.payload == {
            "batchSize": 1,
            "judgeIds": ["77"],
            "daysSinceLast": 1,
            "maxDecisionsPerJudge": 10,
        }

    def test_opinion_without_author_ignored(self) -> None:
        assert plan_job(WebhookEnvelope.model_validate(envelope("opinion.updated", "op1"))) is None

    def test_court_updated(self) -> None:
        plan = plan_job(WebhookEnvelope.model_validate(envelope("court.updated", "cal")))

        assert plan.job_type is SyncJobType.COURT
        assert plan.priority == 150
        assert plan.payload["courtIds"] == ["cal"]
        assert plan.payload["forceRefresh"] is True

    def test_numeric_ids_coerced(self) -> None:
        parsed = WebhookEnvelope.model_validate({"event": "person.updated", "data": {"id": 42}})

        assert parsed.data.id == "42"

    @pytest.mark.asyncio
    async def test_dedupe_can_be_disabled(self, queue_db: FakeQueueDB) -> None:
        service = WebhookIngestionService(
            queue=JobQueue(connection=queue_db.connection),
            deliveries=FakeDeliveryRepository(),
            dedupe_enabled=False,
        )
        parsed = WebhookEnvelope.model_validate(envelope(webhook_id="wh-2"))

        await service.ingest(parsed)
        await service.ingest(parsed)

        assert len(queue_db.jobs) == 2

    @pytest.mark.asyncio
    async def test_redelivery_after_failed_enqueue_is_queued(self, queue_db: FakeQueueDB) -> None:
        queue = JobQueue(connection=queue_db.connection)
        enqueue = queue.add_job
        attempts = []

        async def add_job_failing_once(*args, **kwargs):
            attempts.append(args)
            if len(attempts) == 1:
                raise ConnectionError("queue unavailable")
            return await enqueue(*args, **kwargs)

        queue.add_job = add_job_failing_once
        deliveries = FakeDeliveryRepository()
        service = WebhookIngestionService(queue=queue, deliveries=deliveries)
        parsed = WebhookEnvelope.model_validate(envelope(webhook_id="wh-3"))

        with pytest.raises(ConnectionError):
            await service.ingest(parsed)
        assert deliveries.seen == {}

        result = await service.ingest(parsed)

        assert result.duplicate is False
        assert result.job_id is not None
        assert len(queue_db.jobs) == 1
        assert deliveries.seen == {"wh-3": "person.updated"}
