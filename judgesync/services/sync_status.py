"""
JudgeSync - Sync Status Aggregator

Point-in-time health snapshot for dashboards and alerting, computed on
demand from the queue, sync_logs, performance_metrics and sync_freshness.
Nothing is persisted here.

Every section queries on its own. A failing section is logged and comes back
zeroed; the rest of the snapshot is still returned.

Health, worst first (the first matching rule wins):
    successRate < 75  or pending > 100   critical
    successRate < 90  or pending > 50    warning
    successRate < 95  or pending > 20    caution
    otherwise                            healthy
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..models import HealthStatus, SyncJobStatus, SyncLogStatus
from ..repositories import FreshnessRepository, MetricsRepository, SyncLogRepository
from .circuit_breaker import (
    EVENT_CIRCUIT_OPEN,
    EVENT_CIRCUIT_SHORTCIRCUIT,
    EVENT_FETCH_FAILED,
)
from .job_queue import JobQueue

logger = logging.getLogger(__name__)

UPTIME_WINDOW = 10
FRESHNESS_ENTITIES = ("courts", "judges", "decisions")

# (status, success rate below, pending above)
HEALTH_THRESHOLDS = (
    (HealthStatus.CRITICAL, 75.0, 100),
    (HealthStatus.WARNING, 90.0, 50),
    (HealthStatus.CAUTION, 95.0, 20),
)


def determine_health(success_rate: float, pending: int) -> HealthStatus:
    for status, min_rate, max_pending in HEALTH_THRESHOLDS:
        if success_rate < min_rate or pending > max_pending:
            return status
    return HealthStatus.HEALTHY


def calculate_uptime(logs: Sequence[Dict[str, Any]]) -> float:
    """Percent of ``logs`` that completed, 2 decimals; 0 with no logs."""
    if not logs:
        return 0.0
    completed = sum(1 for log in logs if log.get("status") == SyncLogStatus.COMPLETED.value)
    return round(completed / len(logs) * 100, 2)


def summarize_window(stats: Dict[str, Any]) -> Dict[str, Any]:
    total = int(stats.get("total_runs") or 0)
    completed = int(stats.get("completed_runs") or 0)
    avg = stats.get("avg_duration_ms")
    return {
        "totalRuns": total,
        "successRate": round(completed / total * 100, 2) if total else 0.0,
        "avgDurationMs": int(round(float(avg))) if avg is not None else 0,
        "failedRuns": int(stats.get("failed_runs") or 0),
    }


def _empty_window() -> Dict[str, Any]:
    return summarize_window({})


def _isoformat(value: Any) -> Any:
    return value.isoformat() if isinstance(value, datetime) else value


class SyncStatusAggregator:
    def __init__(
        self,
        queue: Optional[JobQueue] = None,
        logs: Optional[SyncLogRepository] = None,
        metrics: Optional[MetricsRepository] = None,
        freshness: Optional[FreshnessRepository] = None,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.queue = queue or JobQueue()
        self.logs = logs or SyncLogRepository()
        self.metrics = metrics or MetricsRepository()
        self.freshness = freshness or FreshnessRepository()
        self._now = now

    # =========================================================================
    # Sections
    # =========================================================================

    async def queue_section(self) -> Dict[str, Any]:
        try:
            stats = await self.queue.get_stats()
        except Exception as e:
            logger.error(f"Queue stats unavailable: {e}")
            stats = {status.value: 0 for status in SyncJobStatus}
        backlog = stats.get("pending", 0) + stats.get("running", 0)
        return {"stats": stats, "backlog": backlog}

    async def performance_section(self, now: datetime) -> Dict[str, Any]:
        windows = {"daily": timedelta(hours=24), "weekly": timedelta(days=7)}
        section: Dict[str, Any] = {}
        for name, span in windows.items():
            try:
                section[name] = summarize_window(await self.logs.window_stats(now - span))
            except Exception as e:
                logger.error(f"{name} performance stats unavailable: {e}")
                section[name] = _empty_window()
        return section

    async def external_api_section(self, now: datetime) -> Dict[str, int]:
        names = (EVENT_FETCH_FAILED, EVENT_CIRCUIT_OPEN, EVENT_CIRCUIT_SHORTCIRCUIT)
        try:
            counts = await self.metrics.counts_since(names, now - timedelta(hours=24))
        except Exception as e:
            logger.error(f"Circuit metrics unavailable: {e}")
            counts = {}
        return {
            "failures": counts.get(EVENT_FETCH_FAILED, 0),
            "circuitOpens": counts.get(EVENT_CIRCUIT_OPEN, 0),
            "circuitShortcircuits": counts.get(EVENT_CIRCUIT_SHORTCIRCUIT, 0),
        }

    async def freshness_section(self, now: datetime) -> Dict[str, Dict[str, Any]]:
        try:
            latest = await self.freshness.latest_by_entity()
        except Exception as e:
            logger.error(f"Freshness pointers unavailable: {e}")
            latest = {}

        section = {}
        for entity in FRESHNESS_ENTITIES:
            last = latest.get(entity)
            if last is None:
                section[entity] = {"lastSync": None, "hoursSince": None}
                continue
            hours = (now - last).total_seconds() / 3600
            section[entity] = {"lastSync": last.isoformat(), "hoursSince": round(hours, 1)}
        return section

    async def recent_logs_section(self) -> List[Dict[str, Any]]:
        try:
            rows = await self.logs.recent(UPTIME_WINDOW)
        except Exception as e:
            logger.error(f"Recent sync logs unavailable: {e}")
            return []
        return [
            {
                "id": str(row.get("id")),
                "syncType": row.get("sync_type"),
                "syncId": row.get("sync_id"),
                "status": row.get("status"),
                "startedAt": _isoformat(row.get("started_at")),
                "durationMs": row.get("duration_ms"),
                "itemsProcessed": row.get("items_processed"),
                "errorCount": row.get("error_count"),
                "errorMessage": row.get("error_message"),
            }
            for row in rows
        ]

    # =========================================================================
    # Snapshot
    # =========================================================================

    async def build_snapshot(self) -> Dict[str, Any]:
        now = self._now()
        queue = await self.queue_section()
        performance = await self.performance_section(now)
        recent_logs = await self.recent_logs_section()

        success_rate = performance["daily"]["successRate"]
        pending = queue["stats"].get("pending", 0)
        health = determine_health(success_rate, pending)

        return {
            "timestamp": now.isoformat(),
            "health": {
                "status": health.value,
                "uptime": calculate_uptime(recent_logs),
                "successRate": success_rate,
                "pendingJobs": pending,
            },
            "queue": queue,
            "performance": performance,
            "externalApi": await self.external_api_section(now),
            "freshness": await self.freshness_section(now),
            "recentLogs": recent_logs,
        }
