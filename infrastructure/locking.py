# ============================================================================
# PER-CELL LOCKING SERVICE
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Infrastructure - Concurrency control
# PURPOSE: Serialize writes to the same cell across concurrent runs
# CREATED: 17 OCT 2026
# ============================================================================
"""
Per-Cell Locking Service

Two runs targeting the same cell would otherwise race on the cell record
and its generation history (lost updates). Every write path takes the
cell's lock first:

- CellRunner holds it for a whole run (resolve -> generate -> persist)
- JobPoller takes it around each persisted status change

Locks are in-process asyncio locks keyed by (sheet_id, cell_id). Entries
are reference-counted and dropped when nobody holds or waits on them.

The set of held locks doubles as the advisory "currently running" set
handed to the resolver; it never blocks resolution.

Usage:
    from infrastructure.locking import CellLockService

    locks = CellLockService()

    async with locks.cell_lock(sheet_id, "A1") as acquired:
        if acquired:
            await run(cell)
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Dict, FrozenSet, Tuple

logger = logging.getLogger(__name__)

CellKey = Tuple[str, str]


class CellLockService:
    """
    In-process per-cell mutual exclusion.

    Lock Layers:
    - Layer 1: cell lock - one writer per (sheet_id, cell_id)
    - Layer 2: sheet snapshots (SheetCache) - readers never see torn maps
    """

    def __init__(self):
        self._locks: Dict[CellKey, asyncio.Lock] = {}
        self._users: Dict[CellKey, int] = {}

    def _acquire_entry(self, key: CellKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._users[key] = self._users.get(key, 0) + 1
        return lock

    def _release_entry(self, key: CellKey) -> None:
        remaining = self._users.get(key, 1) - 1
        if remaining <= 0:
            self._users.pop(key, None)
            self._locks.pop(key, None)
        else:
            self._users[key] = remaining

    @asynccontextmanager
    async def cell_lock(self, sheet_id: str, cell_id: str, blocking: bool = True):
        """
        Context manager for cell-level locking.

        Args:
            sheet_id: Sheet owning the cell
            cell_id: Cell to lock
            blocking: If True, wait for the lock. If False, yield False
                      immediately when another run holds it.

        Yields:
            bool: True if lock acquired
        """
        key = (sheet_id, cell_id)
        lock = self._acquire_entry(key)
        acquired = False
        try:
            if blocking or not lock.locked():
                await lock.acquire()
                acquired = True
                logger.debug(f"Acquired lock for cell {sheet_id}/{cell_id}")
            else:
                logger.debug(f"Cell {sheet_id}/{cell_id} locked by another run")
            yield acquired
        finally:
            if acquired:
                lock.release()
                logger.debug(f"Released lock for cell {sheet_id}/{cell_id}")
            self._release_entry(key)

    def is_cell_locked(self, sheet_id: str, cell_id: str) -> bool:
        """Point-in-time check; may change immediately after returning."""
        lock = self._locks.get((sheet_id, cell_id))
        return lock is not None and lock.locked()

    def running_cells(self, sheet_id: str) -> FrozenSet[str]:
        """Cells of a sheet currently held by a run (advisory)."""
        return frozenset(
            cell_id
            for (locked_sheet, cell_id), lock in self._locks.items()
            if locked_sheet == sheet_id and lock.locked()
        )


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ['CellLockService']
