"""
Database pool and RLS-scoped connections.

Repos reach Postgres only through scoped() (per-user, RLS enforced) or
system_scoped() (public reads). Both translate driver failures into the
kernel's BackendError, so stores never see asyncpg exceptions.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import asyncpg

from backend import config
from portal.kernel.storage import BackendError

logger = logging.getLogger(__name__)

pool: asyncpg.Pool | None = None

# Failures that mean "the database did not do what we asked"
_DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


async def init_pool(dsn: str | None = None) -> None:
    """Create the pool. Called once from the app lifespan (and by repo tests)."""
    global pool
    pool = await asyncpg.create_pool(
        dsn=dsn or config.settings.DATABASE_URL,
        min_size=2,
        max_size=20,
        command_timeout=60,
        init=_init_connection,
    )


async def close_pool() -> None:
    global pool
    if pool is not None:
        await pool.close()
        pool = None


async def _init_connection(conn: asyncpg.Connection) -> None:
    """UUIDs come back as plain strings; JSON/JSONB as Python objects."""
    await conn.set_type_codec("uuid", encoder=str, decoder=str, schema="pg_catalog")
    for type_name in ("jsonb", "json"):
        await conn.set_type_codec(type_name, encoder=json.dumps, decoder=json.loads, schema="pg_catalog")


def _require_pool() -> asyncpg.Pool:
    if pool is None:
        raise RuntimeError("Database pool not initialized. Call init_pool() first.")
    return pool


@asynccontextmanager
async def user_conn(user_id: str) -> AsyncIterator[asyncpg.Connection]:
    """
    A transaction whose queries only see the user's rows.

    Sets app.user_id for the transaction; every RLS policy compares
    user_id against it.

    Usage:
        async with user_conn(user_id) as conn:
            row = await conn.fetchrow("SELECT * FROM pages WHERE id = $1", page_id)
    """
    async with _require_pool().acquire() as conn:
        async with conn.transaction():
            await conn.execute("SELECT set_config('app.user_id', $1, true)", str(user_id))
            yield conn


@asynccontextmanager
async def system_conn() -> AsyncIterator[asyncpg.Connection]:
    """
    A transaction with no user scope. RLS policies pass every row when
    app.user_id is empty.

    Only for reads that are public by design (published pages by slug),
    migrations and test cleanup.
    """
    async with _require_pool().acquire() as conn:
        async with conn.transaction():
            await conn.execute("SELECT set_config('app.user_id', '', true)")
            yield conn


@asynccontextmanager
async def scoped(user_id: str, op: str) -> AsyncIterator[asyncpg.Connection]:
    """
    user_conn() that reports database failures as BackendError.

    Args:
        user_id: User the connection is scoped to via RLS
        op: Operation name for the log line
    """
    try:
        async with user_conn(user_id) as conn:
            yield conn
    except BackendError:
        raise
    except _DRIVER_ERRORS as e:
        logger.warning("db: %s failed for user %s: %s", op, user_id, e)
        raise BackendError(f"{op} failed: {e}") from e


@asynccontextmanager
async def system_scoped(op: str) -> AsyncIterator[asyncpg.Connection]:
    """system_conn() that reports database failures as BackendError."""
    try:
        async with system_conn() as conn:
            yield conn
    except _DRIVER_ERRORS as e:
        logger.warning("db: %s failed: %s", op, e)
        raise BackendError(f"{op} failed: {e}") from e


async def ping() -> bool:
    """True if the pool can run a trivial query."""
    if pool is None:
        return False
    try:
        async with pool.acquire() as conn:
            return await conn.fetchval("SELECT 1") == 1
    except _DRIVER_ERRORS as e:
        logger.warning("db: ping failed: %s", e)
        return False
