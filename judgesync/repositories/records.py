"""
JudgeSync - Mirrored Record Repositories

Upserts for courts, judges and decisions, always keyed by the upstream
external id. A single statement both writes the row and reports whether it
was created, changed, or already identical (content_hash unchanged).

Identical rows still get their last_synced_at advanced: a duplicate is a
successful freshness touch, never an update. last_synced_at only moves
forward (GREATEST), so concurrent runs converge.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, AsyncContextManager, Callable, Optional, Sequence

from ..db import AsyncConnectionWrapper, get_connection
from ..models import UpsertOutcome

ConnectionFactory = Callable[[], AsyncContextManager[AsyncConnectionWrapper]]


async def upsert_by_external_id(
    conn: AsyncConnectionWrapper,
    table: str,
    key_column: str,
    record: dict[str, Any],
    synced_at: datetime,
) -> UpsertOutcome:
    """
    Insert or update ``record`` in ``table`` keyed by ``key_column``.

    ``record`` must contain the key column and ``content_hash``.
    """
    columns = list(record.keys())
    insert_columns = columns + ["last_synced_at"]
    placeholders = ", ".join(["%s"] * len(insert_columns))
    assignments = ", ".join(
        f"{c} = EXCLUDED.{c}" for c in columns if c != key_column
    )

    query = f"""
        WITH prior AS (
            SELECT content_hash FROM {table} WHERE {key_column} = %s
        )
        INSERT INTO {table} ({", ".join(insert_columns)})
        VALUES ({placeholders})
        ON CONFLICT ({key_column}) DO UPDATE SET
            {assignments},
            updated_at = CASE
                WHEN {table}.content_hash IS DISTINCT FROM EXCLUDED.content_hash
                THEN now() ELSE {table}.updated_at END,
            last_synced_at = GREATEST(
                COALESCE({table}.last_synced_at, EXCLUDED.last_synced_at),
                EXCLUDED.last_synced_at
            )
        RETURNING (xmax = 0) AS inserted,
                  (SELECT content_hash FROM prior) AS previous_hash
    """
    params = [record[key_column], *[record[c] for c in columns], synced_at]
    row = await conn.fetchrow(query, *params)

    if row is None or row["inserted"]:
        return UpsertOutcome.CREATED
    if row["previous_hash"] == record["content_hash"]:
        return UpsertOutcome.DUPLICATE
    return UpsertOutcome.UPDATED


class _Repository:
    def __init__(self, connection: ConnectionFactory = get_connection):
        self._connection = connection


class CourtRepository(_Repository):
    async def upsert(self, record: dict[str, Any], synced_at: datetime) -> UpsertOutcome:
        async with self._connection() as conn:
            return await upsert_by_external_id(
                conn, "courts", "courtlistener_id", record, synced_at
            )

    async def fresh_ids(self, ids: Sequence[str], fresh_after: datetime) -> set[str]:
        """Subset of ``ids`` synced at or after ``fresh_after``."""
        if not ids:
            return set()
        async with self._connection() as conn:
            rows = await conn.fetch(
                """
                SELECT courtlistener_id FROM courts
                WHERE courtlistener_id = ANY(%s) AND last_synced_at >= %s
                """,
                list(ids),
                fresh_after,
            )
        return {r["courtlistener_id"] for r in rows}


class JudgeRepository(_Repository):
    async def upsert(self, record: dict[str, Any], synced_at: datetime) -> UpsertOutcome:
        async with self._connection() as conn:
            return await upsert_by_external_id(
                conn, "judges", "courtlistener_id", record, synced_at
            )

    async def list_stale(
        self,
        jurisdiction: str,
        stale_before: Optional[datetime],
        limit: int,
        pointer: str = "last_synced_at",
    ) -> list[dict[str, Any]]:
        """
        Judges in a jurisdiction whose ``pointer`` column is older than
        ``stale_before`` (all of them when it is None), least recently synced
        first.
        """
        if pointer not in ("last_synced_at", "decisions_synced_at"):
            raise ValueError(f"Unknown freshness pointer: {pointer}")
        async with self._connection() as conn:
            return await conn.fetch(
                f"""
                SELECT courtlistener_id, name FROM judges
                WHERE jurisdiction = %s
                  AND (%s::timestamptz IS NULL OR {pointer} IS NULL OR {pointer} < %s)
                ORDER BY {pointer} ASC NULLS FIRST, courtlistener_id
                LIMIT %s
                """,
                jurisdiction,
                stale_before,
                stale_before,
                limit,
            )

    async def mark_decisions_synced(self, external_id: str, synced_at: datetime) -> None:
        async with self._connection() as conn:
            await conn.execute(
                """
                UPDATE judges
                SET decisions_synced_at = GREATEST(COALESCE(decisions_synced_at, %s), %s)
                WHERE courtlistener_id = %s
                """,
                synced_at,
                synced_at,
                external_id,
            )

    async def refresh_case_count(self, external_id: str) -> None:
        async with self._connection() as conn:
            await conn.execute(
                """
                UPDATE judges
                SET total_cases = (
                    SELECT count(*) FROM decisions WHERE judge_external_id = %s
                )
                WHERE courtlistener_id = %s
                """,
                external_id,
                external_id,
            )


class DecisionRepository(_Repository):
    async def upsert(self, record: dict[str, Any], synced_at: datetime) -> UpsertOutcome:
        async with self._connection() as conn:
            return await upsert_by_external_id(
                conn, "decisions", "decision_key", record, synced_at
            )

    async def has_opinion_text(self, decision_key: str) -> bool:
        async with self._connection() as conn:
            stored = await conn.fetchval(
                "SELECT plain_text IS NOT NULL FROM decisions WHERE decision_key = %s",
                decision_key,
            )
        return bool(stored)

    async def store_opinion_text(self, decision_key: str, text: str) -> None:
        """Opinion text is not part of content_hash."""
        async with self._connection() as conn:
            await conn.execute(
                "UPDATE decisions SET plain_text = %s, updated_at = now() WHERE decision_key = %s",
                text,
                decision_key,
            )

    async def latest_decision_date(self, judge_external_id: str) -> Optional[date]:
        async with self._connection() as conn:
            return await conn.fetchval(
                """
                SELECT max(decision_date) FROM decisions
                WHERE judge_external_id = %s
                """,
                judge_external_id,
            )
