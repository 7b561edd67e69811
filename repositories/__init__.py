# ============================================================================
# REPOSITORIES MODULE
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Core - Persistence layer
# PURPOSE: CellStore and BillingStore implementations
# CREATED: 17 OCT 2026
# ============================================================================
"""
Repositories Module

PostgreSQL (psycopg3 async with connection pooling) and in-memory
implementations of the engine's persistence interfaces.

Usage:
    from repositories import get_pool, ensure_schema, PostgresCellStore

    pool = await get_pool()
    await ensure_schema(pool)
    store = PostgresCellStore(pool)
"""

from .database import get_pool, init_pool, close_pool, ensure_schema
from .cell_repo import PostgresCellStore
from .billing_repo import PostgresBillingStore
from .memory_store import InMemoryCellStore, InMemoryBillingStore

__all__ = [
    "get_pool",
    "init_pool",
    "close_pool",
    "ensure_schema",
    "PostgresCellStore",
    "PostgresBillingStore",
    "InMemoryCellStore",
    "InMemoryBillingStore",
]
