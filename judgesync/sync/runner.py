"""
JudgeSync - Sync Runner

Wires a sync manager to the real collaborators (CourtListener client, shared
Redis limiter, process-wide circuit breakers, Postgres repositories) and runs
it. Used by the trigger endpoints and by the queue worker.

Usage:
    result = await run_sync(SyncJobType.JUDGE, {"judgeIds": ["1234"]})
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Type, Union

from ..config import get_settings
from ..models import SyncJobType, SyncOptions, SyncResult
from ..services.circuit_breaker import CircuitBreakerRegistry, CircuitEventBuffer
from ..services.courtlistener import CourtListenerClient
from ..services.rate_limiter import UPSTREAM_SCOPE, get_rate_limiter
from .base import StopCheck, SyncManager
from .court_sync import CourtSyncManager
from .decision_sync import DecisionSyncManager
from .judge_sync import JudgeSyncManager

MANAGERS: Dict[SyncJobType, Type[SyncManager]] = {
    SyncJobType.COURT: CourtSyncManager,
    SyncJobType.JUDGE: JudgeSyncManager,
    SyncJobType.DECISION: DecisionSyncManager,
}

# Breaker state outlives a single run so an unhealthy upstream stays gated
# across consecutive runs in the same process.
_events = CircuitEventBuffer()
_breakers: Optional[CircuitBreakerRegistry] = None


def get_breakers() -> CircuitBreakerRegistry:
    global _breakers
    if _breakers is None:
        settings = get_settings()
        _breakers = CircuitBreakerRegistry(
            failure_threshold=settings.CIRCUIT_FAILURE_THRESHOLD,
            cooldown_seconds=settings.CIRCUIT_COOLDOWN_SECONDS,
            event_sink=_events,
        )
    return _breakers


def reset_breakers() -> None:
    """Forget breaker state (for testing)."""
    global _breakers
    _breakers = None
    _events.drain()


def create_sync_manager(
    job_type: Union[SyncJobType, str],
    client: CourtListenerClient,
    should_stop: Optional[StopCheck] = None,
    **overrides: Any,
) -> SyncManager:
    manager_cls = MANAGERS[SyncJobType(job_type)]
    kwargs: Dict[str, Any] = {
        "rate_limiter": get_rate_limiter(UPSTREAM_SCOPE),
        "breakers": get_breakers(),
        "events": _events,
        "should_stop": should_stop,
    }
    kwargs.update(overrides)
    return manager_cls(client, **kwargs)


async def run_sync(
    job_type: Union[SyncJobType, str],
    options: Union[SyncOptions, Dict[str, Any], None] = None,
    should_stop: Optional[StopCheck] = None,
) -> SyncResult:
    """Run one sync end to end. Raises FatalSyncFailure on abort."""
    async with CourtListenerClient() as client:
        manager = create_sync_manager(job_type, client, should_stop=should_stop)
        return await manager.sync(options)
