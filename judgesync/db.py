"""
JudgeSync - Database Layer

Async PostgreSQL connection pooling via psycopg3 + psycopg_pool.

    async with get_connection() as conn:
        rows = await conn.fetch("SELECT * FROM sync_logs WHERE sync_type = $1", "court")

Pool initialization retries with exponential backoff; a deployment without
SUPABASE_DB_URL starts anyway and every query raises until it is configured.
"""

from __future__ import annotations

import asyncio
import re
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

import psycopg
from loguru import logger
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from psycopg_pool import AsyncConnectionPool

from .config import get_settings
from .core.backoff import BackoffState

INIT_MAX_ATTEMPTS = 5

_db_pool: Optional[AsyncConnectionPool] = None


async def init_db_pool() -> None:
    """
    Open the shared connection pool. Safe to call more than once.

    Raises:
        RuntimeError: when every attempt fails
    """
    global _db_pool

    if _db_pool is not None:
        return

    settings = get_settings()
    if not settings.supabase_db_url:
        logger.warning("SUPABASE_DB_URL is not set; skipping DB init")
        return

    backoff = BackoffState(initial_delay=1.0, max_delay=15.0)
    last_error: Exception | None = None

    for attempt in range(1, INIT_MAX_ATTEMPTS + 1):
        pool = AsyncConnectionPool(
            conninfo=settings.supabase_db_url,
            min_size=settings.DB_POOL_MIN_SIZE,
            max_size=settings.DB_POOL_MAX_SIZE,
            kwargs={"autocommit": True, "row_factory": dict_row},
            open=False,
        )
        try:
            await pool.open(wait=True, timeout=10.0)
            _db_pool = pool
            logger.info(
                f"PostgreSQL pool ready (attempt {attempt}/{INIT_MAX_ATTEMPTS})"
            )
            return
        except Exception as e:
            last_error = e
            await pool.close()
            delay = backoff.record_failure()
            logger.warning(
                f"DB pool init failed (attempt {attempt}/{INIT_MAX_ATTEMPTS}): "
                f"{type(e).__name__}; retrying in {delay:.1f}s"
            )
            if attempt < INIT_MAX_ATTEMPTS:
                await asyncio.sleep(delay)

    raise RuntimeError(f"Could not open database pool: {last_error}")


async def close_db_pool() -> None:
    global _db_pool
    if _db_pool is not None:
        logger.info("Closing PostgreSQL connection pool")
        await _db_pool.close()
        _db_pool = None


async def get_pool() -> Optional[AsyncConnectionPool]:
    if _db_pool is None:
        await init_db_pool()
    return _db_pool


@asynccontextmanager
async def get_connection() -> AsyncGenerator["AsyncConnectionWrapper", None]:
    """Borrow a pooled connection wrapped with fetch/fetchrow/fetchval/execute."""
    pool = await get_pool()
    if pool is None:
        raise RuntimeError("Database connection pool is not initialized")

    async with pool.connection() as conn:
        yield AsyncConnectionWrapper(conn)


_PLACEHOLDER = re.compile(r"\$\d+")


def _convert_placeholders(query: str) -> str:
    """Convert $1, $2 ... placeholders to psycopg's %s."""
    if "%s" in query or not _PLACEHOLDER.search(query):
        return query
    return _PLACEHOLDER.sub("%s", query)


def _adapt(args: tuple[Any, ...]) -> tuple[Any, ...] | None:
    if not args:
        return None
    return tuple(Jsonb(a) if isinstance(a, (dict, list)) else a for a in args)


class AsyncConnectionWrapper:
    """
    Thin wrapper around psycopg.AsyncConnection.

    Accepts $N placeholders and adapts dict/list arguments to jsonb.
    """

    def __init__(self, conn: psycopg.AsyncConnection):
        self._conn = conn

    async def fetch(self, query: str, *args: Any) -> list[dict[str, Any]]:
        async with self._conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(_convert_placeholders(query), _adapt(args))
            rows = await cur.fetchall()
            return list(rows) if rows else []

    async def fetchrow(self, query: str, *args: Any) -> Optional[dict[str, Any]]:
        async with self._conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(_convert_placeholders(query), _adapt(args))
            row = await cur.fetchone()
            return dict(row) if row else None

    async def fetchval(self, query: str, *args: Any) -> Any:
        async with self._conn.cursor() as cur:
            await cur.execute(_convert_placeholders(query), _adapt(args))
            row = await cur.fetchone()
            if row is None:
                return None
            if isinstance(row, dict):
                return next(iter(row.values()), None)
            return row[0]

    async def execute(self, query: str, *args: Any) -> int:
        """Execute a statement and return the affected row count."""
        async with self._conn.cursor() as cur:
            await cur.execute(_convert_placeholders(query), _adapt(args))
            return cur.rowcount

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[None, None]:
        async with self._conn.transaction():
            yield


async def ping_db() -> bool:
    """Used by /health to report live DB connectivity."""
    try:
        async with get_connection() as conn:
            return await conn.fetchval("SELECT 1") == 1
    except Exception as exc:
        logger.error(f"DB ping failed: {exc}")
        return False
