"""
JudgeSync - Admin Router

Operator status and queue control. Every route requires X-Admin-Key.

- GET  /api/admin/sync-status  health/queue/performance/freshness snapshot
- POST /api/admin/sync         queue control action:
      queue_job      {type, options?, priority?}
      cancel_jobs    {type?}
      restart_queue  requeue jobs whose lease expired
      archive        {days?} stamp archived_at on old finished jobs
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from ..core.errors import ErrorDetail, ValidationError
from ..core.security import require_admin_key
from ..models import OPTIONS_BY_TYPE, SyncJobType
from ..services.job_queue import JobQueue
from ..services.rate_limiter import RateLimitDependency
from ..services.sync_status import SyncStatusAggregator

logger = logging.getLogger(__name__)

enforce_admin_limit = RateLimitDependency("admin")

router = APIRouter(
    prefix="/admin",
    tags=["Admin"],
    dependencies=[Depends(require_admin_key), Depends(enforce_admin_limit)],
)


class AdminActionRequest(BaseModel):
    action: Literal["queue_job", "cancel_jobs", "restart_queue", "archive"]
    type: Optional[SyncJobType] = None
    options: Dict[str, Any] = Field(default_factory=dict)
    priority: int = Field(default=100, ge=0, le=1000)
    days: int = Field(default=30, ge=1, le=3650)


def get_job_queue() -> JobQueue:
    return JobQueue()


def get_status_aggregator() -> SyncStatusAggregator:
    return SyncStatusAggregator()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("/sync-status")
async def sync_status(
    aggregator: SyncStatusAggregator = Depends(get_status_aggregator),
) -> JSONResponse:
    snapshot = await aggregator.build_snapshot()
    return JSONResponse(content=snapshot, headers={"Cache-Control": "no-store"})


@router.post("/sync")
async def admin_action(
    request: AdminActionRequest,
    queue: JobQueue = Depends(get_job_queue),
) -> Dict[str, Any]:
    logger.info(
        f"Admin action: {request.action}",
        extra={"job_type": request.type.value if request.type else None},
    )

    if request.action == "queue_job":
        job_type = request.type or SyncJobType.DECISION
        try:
            options = OPTIONS_BY_TYPE[job_type].model_validate(request.options)
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid sync options",
                details=[
                    ErrorDetail(
                        field=".".join(str(x) for x in err.get("loc", ())) or None,
                        message=err.get("msg", "invalid"),
                        code=err.get("type"),
                    )
                    for err in e.errors()
                ],
            ) from e
        job_id = await queue.add_job(job_type, options.to_payload(), priority=request.priority)
        return {
            "success": True,
            "message": "Job queued successfully",
            "jobId": job_id,
            "timestamp": _now(),
        }

    if request.action == "cancel_jobs":
        cancelled = await queue.cancel_jobs(request.type)
        return {
            "success": True,
            "message": f"{cancelled} jobs cancelled",
            "cancelledCount": cancelled,
            "timestamp": _now(),
        }

    if request.action == "restart_queue":
        reaped = await queue.reap_expired_leases()
        return {
            "success": True,
            "message": f"Queue restarted, {reaped} expired leases reaped",
            "reapedCount": reaped,
            "timestamp": _now(),
        }

    archived = await queue.archive_finished(request.days)
    return {
        "success": True,
        "message": f"{archived} finished jobs archived",
        "archivedCount": archived,
        "timestamp": _now(),
    }
