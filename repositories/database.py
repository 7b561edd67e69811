# ============================================================================
# DATABASE CONNECTION POOL
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Core - Async PostgreSQL connection management
# PURPOSE: Connection pooling for psycopg3 async plus schema bootstrap
# CREATED: 17 OCT 2026
# ============================================================================
"""
Database Connection Pool

Manages async PostgreSQL connections using psycopg3 and psycopg_pool.
Singleton pattern ensures one pool per application.

Connection settings come from DATABASE_URL or the POSTGRES_* variables.

Usage:
    from repositories.database import get_pool, ensure_schema

    pool = await get_pool()
    await ensure_schema(pool)
    async with pool.connection() as conn:
        result = await conn.execute("SELECT 1")
"""

import os
import logging
from typing import Optional

from psycopg import sql
from psycopg_pool import AsyncConnectionPool

logger = logging.getLogger(__name__)

# Global pool instance
_pool: Optional[AsyncConnectionPool] = None


def get_connection_string() -> str:
    """
    Get database connection string from environment.

    Priority:
    1. DATABASE_URL environment variable
    2. Individual POSTGRES_* components

    Returns:
        PostgreSQL connection string
    """
    if url := os.environ.get("DATABASE_URL"):
        return url

    host = os.environ.get("POSTGRES_HOST", "localhost")
    port = os.environ.get("POSTGRES_PORT", "5432")
    name = os.environ.get("POSTGRES_DB", "postgres")
    user = os.environ.get("POSTGRES_USER", "postgres")
    password = os.environ.get("POSTGRES_PASSWORD", "")
    sslmode = os.environ.get("POSTGRES_SSLMODE", "prefer")

    return f"postgresql://{user}:{password}@{host}:{port}/{name}?sslmode={sslmode}"


def _safe_conninfo(conninfo: str) -> str:
    """Connection info with credentials removed, for logs."""
    if "@" in conninfo:
        return conninfo.split("@")[-1]
    if "password=" in conninfo:
        return conninfo.split("password=")[0] + "password=***"
    return conninfo


async def init_pool(
    min_size: int = 2,
    max_size: int = 10,
    connection_string: Optional[str] = None,
) -> AsyncConnectionPool:
    """
    Initialize the global connection pool.

    Args:
        min_size: Minimum connections to maintain
        max_size: Maximum connections allowed
        connection_string: Override connection string (defaults to env)

    Returns:
        AsyncConnectionPool instance
    """
    global _pool

    if _pool is not None:
        logger.warning("Pool already initialized, returning existing pool")
        return _pool

    conninfo = connection_string or get_connection_string()
    logger.info(f"Initializing connection pool: {_safe_conninfo(conninfo)}")

    _pool = AsyncConnectionPool(
        conninfo=conninfo,
        min_size=min_size,
        max_size=max_size,
        open=False,
    )

    await _pool.open()
    logger.info(f"Connection pool opened (min={min_size}, max={max_size})")

    return _pool


async def get_pool() -> AsyncConnectionPool:
    """Get the global connection pool, initializing if needed."""
    global _pool

    if _pool is None:
        await init_pool()

    return _pool


async def close_pool() -> None:
    """Close the global connection pool."""
    global _pool

    if _pool is not None:
        await _pool.close()
        _pool = None
        logger.info("Connection pool closed")


# ============================================================================
# SCHEMA
# ============================================================================

SCHEMA = os.environ.get("DATABASE_SCHEMA", "cellgraph")

# Table identifiers: use with sql.SQL().format() for injection-safe queries
TABLE_SHEETS = sql.Identifier(SCHEMA, "sheets")
TABLE_CELLS = sql.Identifier(SCHEMA, "cells")
TABLE_GENERATIONS = sql.Identifier(SCHEMA, "generations")
TABLE_SUBSCRIPTIONS = sql.Identifier(SCHEMA, "subscriptions")

_DDL = [
    sql.SQL("CREATE SCHEMA IF NOT EXISTS {}").format(sql.Identifier(SCHEMA)),
    sql.SQL("""
    CREATE TABLE IF NOT EXISTS {} (
        user_id     TEXT NOT NULL,
        project_id  TEXT NOT NULL,
        sheet_id    TEXT NOT NULL,
        name        TEXT NOT NULL,
        position    INTEGER NOT NULL DEFAULT 0,
        created_at  TIMESTAMPTZ NOT NULL DEFAULT now(),
        PRIMARY KEY (user_id, project_id, sheet_id)
    )
    """).format(TABLE_SHEETS),
    sql.SQL("""
    CREATE TABLE IF NOT EXISTS {} (
        user_id     TEXT NOT NULL,
        project_id  TEXT NOT NULL,
        sheet_id    TEXT NOT NULL,
        cell_id     TEXT NOT NULL,
        status      TEXT,
        job_id      TEXT,
        data        JSONB NOT NULL,
        updated_at  TIMESTAMPTZ NOT NULL DEFAULT now(),
        PRIMARY KEY (user_id, project_id, sheet_id, cell_id)
    )
    """).format(TABLE_CELLS),
    sql.SQL("""
    CREATE TABLE IF NOT EXISTS {} (
        generation_id    TEXT PRIMARY KEY,
        user_id          TEXT NOT NULL,
        project_id       TEXT NOT NULL,
        sheet_id         TEXT NOT NULL,
        cell_id          TEXT NOT NULL,
        prompt           TEXT NOT NULL DEFAULT '',
        resolved_prompt  TEXT NOT NULL DEFAULT '',
        output           TEXT NOT NULL DEFAULT '',
        model            TEXT,
        temperature      DOUBLE PRECISION,
        type             TEXT NOT NULL,
        status           TEXT NOT NULL,
        job_id           TEXT,
        error            TEXT,
        timestamp        TIMESTAMPTZ NOT NULL
    )
    """).format(TABLE_GENERATIONS),
    sql.SQL("""
    CREATE INDEX IF NOT EXISTS generations_cell_idx
        ON {} (user_id, project_id, sheet_id, cell_id, timestamp DESC)
    """).format(TABLE_GENERATIONS),
    sql.SQL("""
    CREATE TABLE IF NOT EXISTS {} (
        user_id          TEXT PRIMARY KEY,
        plan_id          TEXT NOT NULL DEFAULT 'free',
        status           TEXT NOT NULL DEFAULT 'active',
        credits_current  INTEGER NOT NULL DEFAULT 0 CHECK (credits_current >= 0),
        credits_total    INTEGER NOT NULL DEFAULT 0,
        last_reset       TIMESTAMPTZ,
        next_reset       TIMESTAMPTZ,
        updated_at       TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """).format(TABLE_SUBSCRIPTIONS),
]


async def ensure_schema(pool: AsyncConnectionPool) -> None:
    """Create the schema and tables if they do not exist."""
    async with pool.connection() as conn:
        for statement in _DDL:
            await conn.execute(statement)
    logger.info(f"Schema '{SCHEMA}' ready")


__all__ = [
    "get_connection_string",
    "init_pool",
    "get_pool",
    "close_pool",
    "ensure_schema",
    "SCHEMA",
    "TABLE_SHEETS",
    "TABLE_CELLS",
    "TABLE_GENERATIONS",
    "TABLE_SUBSCRIPTIONS",
]
