# sitenotify/infra/db_async.py
"""
Async database connection pool (asyncpg).

The profile store and the notification log live in the same Postgres
database; both repositories borrow connections from this pool.
"""
from __future__ import annotations
from typing import AsyncIterator
from contextlib import asynccontextmanager

import asyncpg
from sitenotify.config import settings
from sitenotify.infra.logging_config import get_logger

logger = get_logger(__name__)

_pool: asyncpg.Pool | None = None


async def _init_connection(conn: asyncpg.Connection) -> None:
    """Decode json/jsonb columns into Python objects."""
    import json

    for typename in ("json", "jsonb"):
        await conn.set_type_codec(
            typename,
            encoder=json.dumps,
            decoder=json.loads,
            schema="pg_catalog",
        )


async def init_pool() -> None:
    """Initialize connection pool on startup"""
    global _pool

    if _pool is not None:
        return

    logger.info("Initializing asyncpg connection pool")

    _pool = await asyncpg.create_pool(
        dsn=settings.database_dsn,
        min_size=settings.pg_pool_min,
        max_size=settings.pg_pool_max,
        timeout=settings.pg_connect_timeout,
        command_timeout=60,
        init=_init_connection,
        server_settings={
            'application_name': 'sitenotify',
            'statement_timeout': str(settings.pg_statement_timeout_ms),
        }
    )

    logger.info(f"Connection pool created: min={settings.pg_pool_min}, max={settings.pg_pool_max}")


async def close_pool() -> None:
    """Close connection pool on shutdown"""
    global _pool

    if _pool is None:
        return

    logger.info("Closing connection pool")
    await _pool.close()
    _pool = None
    logger.info("Connection pool closed")


@asynccontextmanager
async def db_conn(autocommit: bool = True) -> AsyncIterator[asyncpg.Connection]:
    """
    Get database connection from pool.

    Usage:
        async with db_conn() as conn:
            rows = await conn.fetch("SELECT * FROM profiles WHERE id = ANY($1::uuid[])", ids)

    Args:
        autocommit: If True (default), no explicit transaction. If False, the
            block runs in a transaction that rolls back on error.
    """
    if _pool is None:
        raise RuntimeError("Connection pool not initialized. Call init_pool() first.")

    conn = await _pool.acquire()

    try:
        if not autocommit:
            transaction = conn.transaction()
            await transaction.start()

            try:
                yield conn
                await transaction.commit()
            except Exception:
                await transaction.rollback()
                raise
        else:
            yield conn
    finally:
        await _pool.release(conn)
