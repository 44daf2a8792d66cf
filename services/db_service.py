# services/db_service.py
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from time import monotonic
from typing import Any, AsyncIterator, List, Optional
from urllib.parse import urlparse

import asyncpg

from app.config import settings
from app.core.logging import get_logger
from services.content_errors import RemoteSourceUnavailable

logger = get_logger().bind(module="db_service")

APPLICATION_NAME = "culture-content-backend"
STATEMENT_TIMEOUT_MS = 15_000
DB_POOL_MIN_SIZE = 1
DB_POOL_MAX_SIZE = 4
SLOW_QUERY_THRESHOLD_MS = 1_000


def normalize_database_url(raw_dsn: str) -> str:
    """
    Keep the Supabase DSN exactly as configured; only rewrite the
    SQLAlchemy-style scheme ``postgresql+asyncpg://`` to ``postgresql://``.
    """
    raw_dsn = raw_dsn.strip()
    if raw_dsn.startswith("postgresql+asyncpg://"):
        raw_dsn = "postgresql://" + raw_dsn[len("postgresql+asyncpg://"):]
    return raw_dsn


# --------------------------------------------------------------------
# Lazy asyncpg pool
# --------------------------------------------------------------------
_pool: asyncpg.Pool | None = None
_pool_lock = asyncio.Lock()


async def ensure_pool() -> asyncpg.Pool:
    global _pool
    if _pool is not None:
        return _pool

    async with _pool_lock:
        if _pool is not None:
            return _pool

        if not settings.DATABASE_URL:
            raise RemoteSourceUnavailable("DATABASE_URL is not configured")

        final_dsn = normalize_database_url(settings.DATABASE_URL)
        logger.info(
            "db_pool_initializing",
            dsn_host=urlparse(final_dsn).hostname,
            dsn_port=urlparse(final_dsn).port,
            application_name=APPLICATION_NAME,
        )
        try:
            _pool = await asyncpg.create_pool(
                dsn=final_dsn,
                min_size=DB_POOL_MIN_SIZE,
                max_size=DB_POOL_MAX_SIZE,
                command_timeout=60,
                timeout=10,
                # Supabase pooler (pgbouncer) does not support prepared statement caching.
                statement_cache_size=0,
                server_settings={
                    "application_name": APPLICATION_NAME,
                    "statement_timeout": str(STATEMENT_TIMEOUT_MS),
                },
            )
        except (OSError, asyncpg.PostgresError) as exc:
            raise RemoteSourceUnavailable(f"cannot connect to remote store: {exc}") from exc
        return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None
        logger.info("db_pool_closed")


async def _execute_with_timing(
    conn: asyncpg.Connection,
    method: str,
    query: str,
    *args: Any,
) -> Any:
    start_ms = monotonic() * 1000
    try:
        return await getattr(conn, method)(query, *args)
    finally:
        duration_ms = (monotonic() * 1000) - start_ms
        if duration_ms >= SLOW_QUERY_THRESHOLD_MS:
            logger.warning(
                "db_slow_query",
                duration_ms=round(duration_ms, 2),
                method=method,
                arg_count=len(args),
                query_snippet=query.strip().split("\n")[0][:200],
            )


@asynccontextmanager
async def connection() -> AsyncIterator[asyncpg.Connection]:
    pool = await ensure_pool()
    async with pool.acquire() as conn:
        yield conn


async def fetch(query: str, *args: Any) -> List[asyncpg.Record]:
    async with connection() as conn:
        return await _execute_with_timing(conn, "fetch", query, *args)


async def fetchrow(query: str, *args: Any) -> Optional[asyncpg.Record]:
    async with connection() as conn:
        return await _execute_with_timing(conn, "fetchrow", query, *args)


async def execute(query: str, *args: Any) -> str:
    async with connection() as conn:
        return await _execute_with_timing(conn, "execute", query, *args)
