"""
JudgeSync - Sync Trigger Router

Operator/cron triggers that run a sync inline and report its counters.

Endpoints (all require X-API-Key = SYNC_API_KEY):
- POST /api/sync/courts     run a court sync
- POST /api/sync/judges     run a judge sync
- POST /api/sync/decisions  run a decision sync
- GET  (same paths)         describe the accepted options; no side effects

Status: 200 when the run had no item errors, 207 when it completed with
errors, 500 (FatalSyncFailure) when it aborted.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ..core.security import require_sync_key
from ..models import (
    CourtSyncOptions,
    DecisionSyncOptions,
    JudgeSyncOptions,
    SyncJobType,
    SyncOptions,
    SyncResult,
)
from ..services.rate_limiter import RateLimitDependency
from ..sync import run_sync

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["Sync"])

enforce_sync_limit = RateLimitDependency("sync")

SyncRunner = Callable[[SyncJobType, SyncOptions], Awaitable[SyncResult]]


def get_sync_runner() -> SyncRunner:
    """Dependency seam so tests can swap in a stub runner."""
    return run_sync


# =============================================================================
# Option schemas (GET)
# =============================================================================

COMMON_OPTIONS = {
    "jurisdiction": "Jurisdiction code to sync (default: CA)",
    "forceRefresh": "Ignore the staleness window and resync everything (default: false)",
}

OPTION_SCHEMAS: Dict[str, Dict[str, Any]] = {
    "courts": {
        "description": "Synchronize court data from CourtListener",
        "options": {
            "batchSize": f"Courts per batch (default: {CourtSyncOptions.DEFAULT_BATCH_SIZE})",
            **COMMON_OPTIONS,
            "courtIds": "Only sync these CourtListener court ids",
        },
        "example": {"batchSize": 20, "jurisdiction": "CA", "forceRefresh": False},
    },
    "judges": {
        "description": "Refresh judge profiles from CourtListener",
        "options": {
            "batchSize": f"Judges per batch (default: {JudgeSyncOptions.DEFAULT_BATCH_SIZE})",
            **COMMON_OPTIONS,
            "judgeIds": "Only sync these CourtListener person ids",
            "limit": "Maximum stale judges to pick up (default: 100)",
        },
        "example": {"batchSize": 10, "jurisdiction": "CA"},
    },
    "decisions": {
        "description": "Pull recent decisions for judges from CourtListener",
        "options": {
            "batchSize": f"Judges per batch (default: {DecisionSyncOptions.DEFAULT_BATCH_SIZE})",
            **COMMON_OPTIONS,
            "judgeIds": "Only sync decisions for these judges",
            "daysSinceLast": "Look back this many days instead of from the last stored decision",
            "maxDecisionsPerJudge": "Cap per judge (default: 150)",
            "yearsBack": "Look back for judges with no stored decisions",
        },
        "example": {"batchSize": 5, "jurisdiction": "CA", "daysSinceLast": 1},
    },
}


def _describe(entity: str) -> Dict[str, Any]:
    schema = OPTION_SCHEMAS[entity]
    return {
        "endpoint": entity,
        "methods": ["POST"],
        "description": schema["description"],
        "options": schema["options"],
        "example": {
            "method": "POST",
            "headers": {"Content-Type": "application/json", "X-API-Key": "<sync api key>"},
            "body": schema["example"],
        },
    }


# =============================================================================
# Triggers
# =============================================================================


async def _trigger(
    job_type: SyncJobType,
    prefix: str,
    options: SyncOptions,
    runner: SyncRunner,
) -> JSONResponse:
    started = time.monotonic()
    logger.info(
        f"Starting {job_type.value} sync via API",
        extra={"job_type": job_type.value, "endpoint": f"/api/sync/{prefix}"},
    )

    # FatalSyncFailure propagates to the 500 handler
    result = await runner(job_type, options)

    data = result.counters(prefix)
    data["apiDuration"] = int((time.monotonic() - started) * 1000)
    body = {
        "success": result.success,
        "data": data,
        "errors": result.errors,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    return JSONResponse(content=body, status_code=result.http_status)


@router.post("/courts", dependencies=[Depends(require_sync_key), Depends(enforce_sync_limit)])
async def sync_courts(
    options: Optional[CourtSyncOptions] = None,
    runner: SyncRunner = Depends(get_sync_runner),
) -> JSONResponse:
    return await _trigger(SyncJobType.COURT, "courts", options or CourtSyncOptions(), runner)


@router.post("/judges", dependencies=[Depends(require_sync_key), Depends(enforce_sync_limit)])
async def sync_judges(
    options: Optional[JudgeSyncOptions] = None,
    runner: SyncRunner = Depends(get_sync_runner),
) -> JSONResponse:
    return await _trigger(SyncJobType.JUDGE, "judges", options or JudgeSyncOptions(), runner)


@router.post("/decisions", dependencies=[Depends(require_sync_key), Depends(enforce_sync_limit)])
async def sync_decisions(
    options: Optional[DecisionSyncOptions] = None,
    runner: SyncRunner = Depends(get_sync_runner),
) -> JSONResponse:
    return await _trigger(
        SyncJobType.DECISION, "decisions", options or DecisionSyncOptions(), runner
    )


@router.get("/courts", dependencies=[Depends(require_sync_key)])
async def describe_court_sync() -> Dict[str, Any]:
    return _describe("courts")


@router.get("/judges", dependencies=[Depends(require_sync_key)])
async def describe_judge_sync() -> Dict[str, Any]:
    return _describe("judges")


@router.get("/decisions", dependencies=[Depends(require_sync_key)])
async def describe_decision_sync() -> Dict[str, Any]:
    return _describe("decisions")
