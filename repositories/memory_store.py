# ============================================================================
# IN-MEMORY STORES
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Core - Process-local persistence
# PURPOSE: CellStore and BillingStore for local development and tests
# CREATED: 17 OCT 2026
# ============================================================================
"""
In-Memory Stores

Dict-backed CellStore and BillingStore. Values are deep-copied on the way
in and out so callers never share objects with the store.

Selected with STORE_BACKEND=memory (the default).
"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from core.interfaces import BillingStore, CellStore
from core.models import Cell, CreditLedger, DeductionResult, Generation, Sheet, Subscription

logger = logging.getLogger(__name__)

ProjectKey = Tuple[str, str]
CellKey = Tuple[str, str, str, str]


class InMemoryCellStore(CellStore):
    """CellStore kept in process memory."""

    def __init__(self):
        self._sheets: Dict[ProjectKey, Dict[str, Sheet]] = {}
        self._cells: Dict[Tuple[str, str, str], Dict[str, Cell]] = {}
        self._generations: Dict[CellKey, Dict[str, Generation]] = {}

    # =========================================================================
    # SEEDING
    # =========================================================================

    def add_sheet(self, user_id: str, project_id: str, sheet: Sheet) -> None:
        """Register a sheet; its cells (and their generations) are stored too."""
        self._sheets.setdefault((user_id, project_id), {})[sheet.sheet_id] = Sheet(
            sheet_id=sheet.sheet_id, name=sheet.name, project_id=project_id
        )
        cells = self._cells.setdefault((user_id, project_id, sheet.sheet_id), {})
        for cell in sheet.cells.values():
            cells[cell.cell_id] = cell.model_copy(deep=True, update={"generations": []})
            history = self._generations.setdefault(
                (user_id, project_id, sheet.sheet_id, cell.cell_id), {}
            )
            # Stored newest-first; history keeps creation order
            for generation in reversed(cell.generations):
                history[generation.generation_id] = generation.model_copy(deep=True)

    # =========================================================================
    # CELL STORE
    # =========================================================================

    async def list_sheets(self, user_id: str, project_id: str) -> List[Sheet]:
        return [
            sheet.model_copy(deep=True)
            for sheet in self._sheets.get((user_id, project_id), {}).values()
        ]

    async def get_sheet_cells(
        self,
        user_id: str,
        project_id: str,
        sheet_id: str,
    ) -> Dict[str, Cell]:
        cells = self._cells.get((user_id, project_id, sheet_id), {})
        loaded = {}
        for cell_id, cell in cells.items():
            copy = cell.model_copy(deep=True)
            copy.generations = await self.get_generations(user_id, project_id, sheet_id, cell_id)
            loaded[cell_id] = copy
        return loaded

    async def save_cell(
        self,
        user_id: str,
        project_id: str,
        sheet_id: str,
        cell: Cell,
    ) -> None:
        cells = self._cells.setdefault((user_id, project_id, sheet_id), {})
        cells[cell.cell_id] = cell.model_copy(deep=True, update={"generations": []})

    async def save_generation(
        self,
        user_id: str,
        project_id: str,
        sheet_id: str,
        cell_id: str,
        generation: Generation,
    ) -> None:
        history = self._generations.setdefault((user_id, project_id, sheet_id, cell_id), {})
        history[generation.generation_id] = generation.model_copy(deep=True)

    async def get_generations(
        self,
        user_id: str,
        project_id: str,
        sheet_id: str,
        cell_id: str,
    ) -> List[Generation]:
        history = self._generations.get((user_id, project_id, sheet_id, cell_id), {})
        # Insertion order is creation order; upserts keep their slot
        return [generation.model_copy(deep=True) for generation in reversed(list(history.values()))]


class InMemoryBillingStore(BillingStore):
    """BillingStore kept in process memory."""

    def __init__(self):
        self._subscriptions: Dict[str, Subscription] = {}

    def add_subscription(self, subscription: Subscription) -> None:
        self._subscriptions[subscription.user_id] = subscription.model_copy(deep=True)

    async def get_user_subscription(self, user_id: str) -> Optional[Subscription]:
        subscription = self._subscriptions.get(user_id)
        return subscription.model_copy(deep=True) if subscription is not None else None

    async def deduct_credits(self, user_id: str, amount: int) -> DeductionResult:
        subscription = self._subscriptions.get(user_id)
        if subscription is None:
            return DeductionResult(success=False, error="User not found")

        current = subscription.credits.current
        if current < amount:
            return DeductionResult(success=False, remaining_credits=current, error="Insufficient credits")

        subscription.credits.current = current - amount
        return DeductionResult(success=True, remaining_credits=subscription.credits.current)

    async def reset_monthly_credits(
        self,
        user_id: str,
        monthly_credits: int,
        next_reset: datetime,
        reset_at: Optional[datetime] = None,
    ) -> None:
        subscription = self._subscriptions.get(user_id)
        if subscription is None:
            subscription = Subscription(user_id=user_id)
            self._subscriptions[user_id] = subscription
        subscription.credits = CreditLedger(
            current=monthly_credits,
            total=monthly_credits,
            last_reset=reset_at or datetime.now(timezone.utc),
            next_reset=next_reset,
        )
        logger.debug(f"Reset monthly credits for {user_id} to {monthly_credits}")


__all__ = [
    "InMemoryCellStore",
    "InMemoryBillingStore",
]
