# ============================================================================
# SHEET CACHE
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Service - Lazy, snapshot-based sheet registry
# PURPOSE: Load each sheet's cells once and hand out immutable snapshots
# CREATED: 17 OCT 2026
# ============================================================================
"""
Sheet Cache

Registry of a project's sheets and their cells.

Design:
- get_or_load(sheet_id) loads a sheet's cells at most once (single-flight
  per sheet); later calls reuse the cached map
- Readers receive a SheetSnapshot whose cell map is read-only
- Writers call put_cell(), which swaps in a new map (copy-on-write), so a
  snapshot held by a resolver is never mutated underneath it
- Sheet names are matched case-insensitively

Cells inside a snapshot are shared; callers that want to change a cell
take cell.model_copy(deep=True) and put_cell() the copy back.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional

from core.interfaces import CellStore
from core.models import Cell, Sheet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SheetSnapshot:
    """Immutable view of one sheet at a point in time."""
    sheet_id: str
    name: str
    cells: Mapping[str, Cell] = field(default_factory=lambda: MappingProxyType({}))
    loaded: bool = False

    def get(self, cell_id: str) -> Optional[Cell]:
        return self.cells.get(cell_id)


class SheetCache:
    """
    Per-project sheet registry with lazy, load-once cell maps.

    One instance per (user_id, project_id).
    """

    def __init__(self, store: CellStore, user_id: str, project_id: str):
        """
        Initialize the cache.

        Args:
            store: Persistence used for sheet lists and cell loads
            user_id: Owner of the project
            project_id: Project whose sheets are cached
        """
        self.store = store
        self.user_id = user_id
        self.project_id = project_id
        self._snapshots: Dict[str, SheetSnapshot] = {}
        self._load_locks: Dict[str, asyncio.Lock] = {}

    # =========================================================================
    # REGISTRY
    # =========================================================================

    def register(self, sheet: Sheet) -> SheetSnapshot:
        """
        Add or replace a sheet.

        A sheet registered with cells counts as loaded.
        """
        snapshot = SheetSnapshot(
            sheet_id=sheet.sheet_id,
            name=sheet.name,
            cells=MappingProxyType(dict(sheet.cells)),
            loaded=bool(sheet.cells),
        )
        self._snapshots[sheet.sheet_id] = snapshot
        return snapshot

    async def refresh_sheets(self) -> List[SheetSnapshot]:
        """
        Sync the registry with the store's sheet list.

        Already loaded cell maps are kept; renamed sheets pick up the new name.
        """
        sheets = await self.store.list_sheets(self.user_id, self.project_id)
        for sheet in sheets:
            existing = self._snapshots.get(sheet.sheet_id)
            if existing is not None and existing.loaded:
                self._snapshots[sheet.sheet_id] = SheetSnapshot(
                    sheet_id=existing.sheet_id,
                    name=sheet.name,
                    cells=existing.cells,
                    loaded=True,
                )
            else:
                self.register(sheet)
        logger.debug(f"Registered {len(sheets)} sheets for project {self.project_id}")
        return self.snapshots()

    def snapshots(self) -> List[SheetSnapshot]:
        return list(self._snapshots.values())

    def peek(self, sheet_id: str) -> Optional[SheetSnapshot]:
        """Current snapshot without triggering a load."""
        return self._snapshots.get(sheet_id)

    def find_sheet_id(self, name: str) -> Optional[str]:
        """Case-insensitive sheet name lookup."""
        wanted = name.strip().lower()
        for snapshot in self._snapshots.values():
            if snapshot.name.strip().lower() == wanted:
                return snapshot.sheet_id
        return None

    # =========================================================================
    # LOADING
    # =========================================================================

    async def get_or_load(self, sheet_id: str) -> Optional[SheetSnapshot]:
        """
        Snapshot of a sheet, loading its cells on first access.

        Concurrent callers for the same sheet share a single load.

        Returns:
            SheetSnapshot, or None if the sheet is not registered
        """
        snapshot = self._snapshots.get(sheet_id)
        if snapshot is None or snapshot.loaded:
            return snapshot

        lock = self._load_locks.setdefault(sheet_id, asyncio.Lock())
        async with lock:
            # Re-fetch: another caller may have finished the load
            snapshot = self._snapshots[sheet_id]
            if snapshot.loaded:
                return snapshot

            logger.info(f"Loading cells for sheet '{snapshot.name}' ({sheet_id})")
            cells = await self.store.get_sheet_cells(self.user_id, self.project_id, sheet_id)
            # Writes that landed during the load win over the loaded copy
            merged = dict(cells)
            merged.update(self._snapshots[sheet_id].cells)
            snapshot = SheetSnapshot(
                sheet_id=sheet_id,
                name=self._snapshots[sheet_id].name,
                cells=MappingProxyType(merged),
                loaded=True,
            )
            self._snapshots[sheet_id] = snapshot
            logger.debug(f"Loaded {len(merged)} cells for sheet {sheet_id}")
            return snapshot

    # =========================================================================
    # WRITES
    # =========================================================================

    def put_cell(self, sheet_id: str, cell: Cell) -> SheetSnapshot:
        """
        Publish a new version of a cell.

        Raises:
            KeyError: If the sheet is not registered
        """
        current = self._snapshots[sheet_id]
        cells = dict(current.cells)
        cells[cell.cell_id] = cell
        snapshot = SheetSnapshot(
            sheet_id=sheet_id,
            name=current.name,
            cells=MappingProxyType(cells),
            loaded=current.loaded,
        )
        self._snapshots[sheet_id] = snapshot
        return snapshot


__all__ = [
    "SheetSnapshot",
    "SheetCache",
]
