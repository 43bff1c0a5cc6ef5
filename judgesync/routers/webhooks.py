"""
JudgeSync - Webhooks Router

CourtListener push events.

- POST /api/webhooks/courtlistener  signed event -> at most one queued job
- GET  /api/webhooks/courtlistener  subscription handshake (hub.challenge)

Signature failures are always the same bare 401: the response never says
whether the header was missing, wrong, or no secret is configured.
"""

import hmac
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import PlainTextResponse

from ..config import get_settings
from ..core.errors import AuthError
from ..services.rate_limiter import RateLimitDependency
from ..services.webhook_ingestion import (
    SIGNATURE_HEADER,
    WebhookIngestionService,
    parse_envelope,
    verify_signature,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])

enforce_webhook_limit = RateLimitDependency("webhook")


def get_ingestion_service() -> WebhookIngestionService:
    return WebhookIngestionService()


@router.post("/courtlistener", dependencies=[Depends(enforce_webhook_limit)])
async def courtlistener_webhook(
    request: Request,
    signature: Optional[str] = Header(None, alias=SIGNATURE_HEADER),
    service: WebhookIngestionService = Depends(get_ingestion_service),
) -> Dict[str, Any]:
    body = await request.body()

    if not verify_signature(body, signature, get_settings().COURTLISTENER_WEBHOOK_SECRET):
        logger.warning(
            "Rejected CourtListener webhook: signature check failed",
            extra={"endpoint": request.url.path, "status": 401},
        )
        raise AuthError()

    envelope = parse_envelope(body)
    logger.info(
        f"Received CourtListener webhook: {envelope.event}",
        extra={"event_type": envelope.event, "webhook_id": envelope.webhook_id},
    )

    result = await service.ingest(envelope)
    return result.as_dict()


@router.get("/courtlistener", response_class=PlainTextResponse)
async def courtlistener_handshake(
    challenge: Optional[str] = Query(None, alias="hub.challenge"),
    verify_token: Optional[str] = Query(None, alias="hub.verify_token"),
) -> PlainTextResponse:
    """Echo the challenge only when the verify token matches."""
    expected = get_settings().COURTLISTENER_WEBHOOK_VERIFY_TOKEN
    if (
        not expected
        or not verify_token
        or challenge is None
        or not hmac.compare_digest(verify_token.encode("utf-8"), expected.encode("utf-8"))
    ):
        logger.warning("Webhook handshake rejected", extra={"status": 403})
        return PlainTextResponse("Forbidden", status_code=403)

    logger.info("Webhook handshake verified")
    return PlainTextResponse(challenge, status_code=200)
