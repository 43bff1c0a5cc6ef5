"""
JudgeSync - Audit & Telemetry Repositories

sync_logs (one row per run), performance_metrics (circuit events),
sync_freshness (monotonic per-jurisdiction pointers) and webhook_events
(delivery dedupe).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Sequence

from .records import _Repository


class SyncLogRepository(_Repository):
    async def insert(self, entry: dict[str, Any]) -> None:
        """Write one audit row. A single INSERT, so it lands whole or not at all."""
        async with self._connection() as conn:
            await conn.execute(
                """
                INSERT INTO sync_logs (
                    sync_type, sync_id, status, started_at, completed_at,
                    duration_ms, items_processed, items_created, items_updated,
                    duplicates_skipped, error_count, error_message, details
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                entry["sync_type"],
                entry["sync_id"],
                entry["status"],
                entry["started_at"],
                entry["completed_at"],
                entry["duration_ms"],
                entry["items_processed"],
                entry["items_created"],
                entry["items_updated"],
                entry["duplicates_skipped"],
                entry["error_count"],
                entry.get("error_message"),
                entry.get("details") or {},
            )

    async def recent(self, limit: int = 10) -> list[dict[str, Any]]:
        async with self._connection() as conn:
            return await conn.fetch(
                """
                SELECT id, sync_type, sync_id, status, started_at, completed_at,
                       duration_ms, items_processed, error_count, error_message
                FROM sync_logs
                ORDER BY started_at DESC
                LIMIT %s
                """,
                limit,
            )

    async def window_stats(self, since: datetime) -> dict[str, Any]:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                """
                SELECT count(*) AS total_runs,
                       count(*) FILTER (WHERE status = 'completed') AS completed_runs,
                       count(*) FILTER (WHERE status = 'failed') AS failed_runs,
                       avg(duration_ms) AS avg_duration_ms
                FROM sync_logs
                WHERE started_at >= %s
                """,
                since,
            )
        return row or {}


class MetricsRepository(_Repository):
    async def record_many(self, events: Iterable[tuple[str, str, datetime]]) -> int:
        rows = list(events)
        if not rows:
            return 0
        async with self._connection() as conn:
            async with conn.transaction():
                for name, endpoint, recorded_at in rows:
                    await conn.execute(
                        """
                        INSERT INTO performance_metrics (metric_name, metric_value, endpoint, recorded_at)
                        VALUES (%s, 1, %s, %s)
                        """,
                        name,
                        endpoint,
                        recorded_at,
                    )
        return len(rows)

    async def counts_since(self, names: Sequence[str], since: datetime) -> dict[str, int]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                """
                SELECT metric_name, count(*) AS n
                FROM performance_metrics
                WHERE metric_name = ANY(%s) AND recorded_at >= %s
                GROUP BY metric_name
                """,
                list(names),
                since,
            )
        counts = {name: 0 for name in names}
        for row in rows:
            counts[row["metric_name"]] = int(row["n"])
        return counts


class FreshnessRepository(_Repository):
    async def advance(self, entity: str, jurisdiction: str, synced_at: datetime) -> None:
        """Move the pointer forward; an older timestamp never overwrites a newer one."""
        async with self._connection() as conn:
            await conn.execute(
                """
                INSERT INTO sync_freshness (entity, jurisdiction, last_synced_at)
                VALUES (%s, %s, %s)
                ON CONFLICT (entity, jurisdiction) DO UPDATE
                SET last_synced_at = GREATEST(sync_freshness.last_synced_at, EXCLUDED.last_synced_at)
                """,
                entity,
                jurisdiction,
                synced_at,
            )

    async def latest_by_entity(self) -> dict[str, datetime]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                """
                SELECT entity, max(last_synced_at) AS last_synced_at
                FROM sync_freshness
                GROUP BY entity
                """
            )
        return {row["entity"]: row["last_synced_at"] for row in rows}


class WebhookDeliveryRepository(_Repository):
    async def register(
        self,
        webhook_id: str,
        event_type: str,
        payload: dict[str, Any],
        ttl_seconds: int,
    ) -> bool:
        """
        Record a delivery. Returns False when the same webhook_id was already
        seen within ``ttl_seconds``; an older sighting is refreshed and counts
        as new.
        """
        async with self._connection() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO webhook_events (webhook_id, event_type, payload, received_at)
                VALUES (%s, %s, %s, now())
                ON CONFLICT (webhook_id) DO UPDATE
                SET event_type = EXCLUDED.event_type,
                    payload = EXCLUDED.payload,
                    received_at = EXCLUDED.received_at
                WHERE webhook_events.received_at < now() - make_interval(secs => %s)
                RETURNING webhook_id
                """,
                webhook_id,
                event_type,
                payload,
                ttl_seconds,
            )
        return row is not None

    async def forget(self, webhook_id: str) -> None:
        """Drop a delivery record so a redelivery of it counts as new."""
        async with self._connection() as conn:
            await conn.execute("DELETE FROM webhook_events WHERE webhook_id = %s", webhook_id)
