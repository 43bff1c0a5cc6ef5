"""
JudgeSync - Webhook Ingestion

Turns CourtListener push events into narrowly scoped, high-priority queue
jobs.

    1. verify the HMAC-SHA256 signature over the exact raw body
    2. parse the envelope {event, data:{id, type, attributes}, timestamp, webhook_id}
    3. map the event to at most one job
    4. drop repeat deliveries of the same webhook_id inside the dedupe TTL

Event mapping:
    person.updated                    judge job for that id, forced, priority 200
    opinion.created / opinion.updated decision job for attributes.author, priority 200
    court.updated                     court job for that id, forced, priority 150
    anything else                     acknowledged, handled=False

Well-formed events we do not act on are still acknowledged: a non-2xx makes
the sender retry forever.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from ..config import get_settings
from ..core.errors import ErrorDetail, ValidationError
from ..models import (
    CourtSyncOptions,
    DecisionSyncOptions,
    JudgeSyncOptions,
    SyncJobType,
)
from ..repositories import WebhookDeliveryRepository
from .job_queue import JobQueue

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-CourtListener-Signature"

PRIORITY_JUDGE = 200
PRIORITY_DECISION = 200
PRIORITY_COURT = 150

WEBHOOK_DECISION_CAP = 10
WEBHOOK_DECISION_DAYS = 1


# =============================================================================
# Envelope
# =============================================================================


class WebhookData(BaseModel):
    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    id: str = Field(..., min_length=1)
    type: Optional[str] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)


class WebhookEnvelope(BaseModel):
    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    event: str = Field(..., min_length=1)
    data: WebhookData
    timestamp: Optional[str] = None
    webhook_id: Optional[str] = None


@dataclass(frozen=True)
class JobPlan:
    job_type: SyncJobType
    payload: Dict[str, Any]
    priority: int


@dataclass
class IngestionResult:
    handled: bool
    event: str
    job_id: Optional[str] = None
    duplicate: bool = False
    job: Optional[Dict[str, Any]] = field(default=None)

    def as_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": True, "handled": self.handled, "event": self.event}
        if self.job_id:
            body["jobId"] = self.job_id
        if self.job:
            body["job"] = self.job
        if self.duplicate:
            body["duplicate"] = True
        return body


# =============================================================================
# Pure steps
# =============================================================================


def compute_signature(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """
    Constant-time check of ``signature`` (hex, optional ``sha256=`` prefix)
    against the HMAC of the raw body. No secret configured means nothing
    verifies.
    """
    if not secret or not signature:
        return False
    provided = signature.strip()
    if provided.lower().startswith("sha256="):
        provided = provided[len("sha256="):]
    expected = compute_signature(body, secret)
    return hmac.compare_digest(provided.lower().encode("utf-8"), expected.encode("utf-8"))


def parse_envelope(body: bytes) -> WebhookEnvelope:
    try:
        raw = json.loads(body)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValidationError("Malformed JSON body") from e

    if not isinstance(raw, dict):
        raise ValidationError("Webhook body must be a JSON object")

    try:
        return WebhookEnvelope.model_validate(raw)
    except PydanticValidationError as e:
        details = [
            ErrorDetail(
                field=".".join(str(x) for x in err.get("loc", ())) or None,
                message=err.get("msg", "invalid"),
                code=err.get("type"),
            )
            for err in e.errors()
        ]
        raise ValidationError("Invalid webhook envelope", details=details) from e


def plan_job(envelope: WebhookEnvelope) -> Optional[JobPlan]:
    """The single job an event maps to, or None for events we ignore."""
    event = envelope.event
    data = envelope.data

    if event == "person.updated":
        options = JudgeSyncOptions(ids=[data.id], batch_size=1, force_refresh=True)
        return JobPlan(SyncJobType.JUDGE, options.to_payload(), PRIORITY_JUDGE)

    if event in ("opinion.created", "opinion.updated"):
        author = data.attributes.get("author") or data.attributes.get("author_id")
        if not author:
            return None
        options = DecisionSyncOptions(
            ids=[str(author)],
            batch_size=1,
            max_decisions_per_judge=WEBHOOK_DECISION_CAP,
            days_since_last=WEBHOOK_DECISION_DAYS,
        )
        return JobPlan(SyncJobType.DECISION, options.to_payload(), PRIORITY_DECISION)

    if event == "court.updated":
        options = CourtSyncOptions(ids=[data.id], batch_size=1, force_refresh=True)
        return JobPlan(SyncJobType.COURT, options.to_payload(), PRIORITY_COURT)

    return None


# =============================================================================
# Service
# =============================================================================


class WebhookIngestionService:
    """Envelope -> (dedupe) -> job. Signature checks happen before this."""

    def __init__(
        self,
        queue: Optional[JobQueue] = None,
        deliveries: Optional[WebhookDeliveryRepository] = None,
        dedupe_enabled: Optional[bool] = None,
        dedupe_ttl_seconds: Optional[int] = None,
    ):
        settings = get_settings()
        self.queue = queue or JobQueue()
        self.deliveries = deliveries or WebhookDeliveryRepository()
        self.dedupe_enabled = (
            settings.WEBHOOK_DEDUPE_ENABLED if dedupe_enabled is None else dedupe_enabled
        )
        self.dedupe_ttl_seconds = (
            settings.WEBHOOK_DEDUPE_TTL_SECONDS if dedupe_ttl_seconds is None else dedupe_ttl_seconds
        )

    async def ingest(self, envelope: WebhookEnvelope) -> IngestionResult:
        plan = plan_job(envelope)
        if plan is None:
            logger.info(
                f"Ignoring webhook event '{envelope.event}'",
                extra={"event_type": envelope.event, "webhook_id": envelope.webhook_id},
            )
            return IngestionResult(handled=False, event=envelope.event)

        registered = False
        if self.dedupe_enabled and envelope.webhook_id:
            is_new = await self.deliveries.register(
                envelope.webhook_id,
                envelope.event,
                envelope.model_dump(mode="json"),
                self.dedupe_ttl_seconds,
            )
            if not is_new:
                logger.info(
                    f"Duplicate webhook delivery for '{envelope.event}'",
                    extra={"event_type": envelope.event, "webhook_id": envelope.webhook_id},
                )
                return IngestionResult(handled=True, event=envelope.event, duplicate=True)
            registered = True

        try:
            job_id = await self.queue.add_job(plan.job_type, plan.payload, priority=plan.priority)
        except Exception:
            # unrecord the delivery so a redelivery is queued
            if registered:
                await self.deliveries.forget(envelope.webhook_id)
            logger.error(
                f"Failed to queue job for webhook '{envelope.event}'",
                extra={"event_type": envelope.event, "webhook_id": envelope.webhook_id},
                exc_info=True,
            )
            raise
        logger.info(
            f"Webhook '{envelope.event}' queued {plan.job_type.value} job",
            extra={
                "event_type": envelope.event,
                "webhook_id": envelope.webhook_id,
                "job_id": job_id,
                "external_id": envelope.data.id,
            },
        )
        return IngestionResult(
            handled=True,
            event=envelope.event,
            job_id=job_id,
            job={"type": plan.job_type.value, "priority": plan.priority, "payload": plan.payload},
        )
