# ============================================================================
# COLLABORATOR INTERFACES
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Core - Abstract collaborators consumed by the engine
# PURPOSE: Persistence, storage, billing and generation seams
# CREATED: 17 OCT 2026
# ============================================================================
"""
Collaborator Interfaces

The engine talks to the outside world only through these ABCs:

- CellStore: SaveCell, SaveGeneration, GetGenerations, GetSheetCells
- MediaStorage: UploadMediaFromUrl
- BillingStore: GetUserSubscription, DeductCredits, ResetMonthlyCredits
- GenerationBackend: Generate, CheckJobStatus

Implementations:
- repositories/ (PostgreSQL and in-memory stores)
- infrastructure/storage.py (Azure Blob Storage)
- infrastructure/generation.py (HTTP backend)
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from core.contracts import GenerationType
from core.models import (
    Cell,
    Generation,
    Sheet,
    Subscription,
    DeductionResult,
    GenerationRequest,
    GenerationResponse,
    JobStatusResponse,
)


# ============================================================================
# PERSISTENCE
# ============================================================================

class CellStore(ABC):
    """Abstract persistence for sheets, cells and generations."""

    @abstractmethod
    async def list_sheets(self, user_id: str, project_id: str) -> List[Sheet]:
        """
        List a project's sheets without their cells.

        Returns:
            Sheets with empty cell maps
        """
        pass

    @abstractmethod
    async def get_sheet_cells(
        self,
        user_id: str,
        project_id: str,
        sheet_id: str,
    ) -> Dict[str, Cell]:
        """
        Load every cell of a sheet.

        Returns:
            Map of cell_id to Cell (generations may be omitted)
        """
        pass

    @abstractmethod
    async def save_cell(
        self,
        user_id: str,
        project_id: str,
        sheet_id: str,
        cell: Cell,
    ) -> None:
        """Upsert a cell's configuration and state."""
        pass

    @abstractmethod
    async def save_generation(
        self,
        user_id: str,
        project_id: str,
        sheet_id: str,
        cell_id: str,
        generation: Generation,
    ) -> None:
        """Upsert a generation by generation_id."""
        pass

    @abstractmethod
    async def get_generations(
        self,
        user_id: str,
        project_id: str,
        sheet_id: str,
        cell_id: str,
    ) -> List[Generation]:
        """
        Load a cell's history.

        Returns:
            Generations ordered newest-first
        """
        pass


# ============================================================================
# MEDIA STORAGE
# ============================================================================

class MediaStorage(ABC):
    """Abstract permanent storage for generated media."""

    @abstractmethod
    def is_permanent(self, url: str) -> bool:
        """True when the URL already points into permanent storage."""
        pass

    @abstractmethod
    async def upload_media_from_url(
        self,
        url: str,
        owner_path: str,
        media_type: GenerationType,
    ) -> str:
        """
        Copy media from a (possibly expiring) URL into permanent storage.

        Args:
            url: http(s) or data: URL
            owner_path: user/project/sheet/cell prefix for the stored object
            media_type: image, video or audio

        Returns:
            Permanent URL

        Raises:
            UploadFailure: If the download or upload fails
        """
        pass


# ============================================================================
# BILLING
# ============================================================================

class BillingStore(ABC):
    """Abstract credit ledger persistence."""

    @abstractmethod
    async def get_user_subscription(self, user_id: str) -> Optional[Subscription]:
        pass

    @abstractmethod
    async def deduct_credits(self, user_id: str, amount: int) -> DeductionResult:
        """
        Atomically subtract credits.

        Returns:
            DeductionResult; success=False when the balance is insufficient
        """
        pass

    @abstractmethod
    async def reset_monthly_credits(
        self,
        user_id: str,
        monthly_credits: int,
        next_reset: datetime,
        reset_at: Optional[datetime] = None,
    ) -> None:
        """
        Refill the ledger to the plan allotment and move the boundary.

        Sets current = total = monthly_credits, last_reset = reset_at (now
        when omitted) and next_reset.
        """
        pass


# ============================================================================
# GENERATION BACKEND
# ============================================================================

class GenerationBackend(ABC):
    """Abstract generative model backend."""

    @abstractmethod
    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        """Run a generation; never raises for backend-side failures."""
        pass

    @abstractmethod
    async def check_job_status(self, job_id: str) -> JobStatusResponse:
        """Query an async job; never raises for backend-side failures."""
        pass


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "CellStore",
    "MediaStorage",
    "BillingStore",
    "GenerationBackend",
]
