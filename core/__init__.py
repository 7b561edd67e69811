# ============================================================================
# CORE MODULE
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Core module initialization
# PURPOSE: Export core contracts, models and errors
# CREATED: 17 OCT 2026
# ============================================================================

from core.contracts import (
    CellStatus,
    GenerationStatus,
    GenerationType,
    JobState,
    ReturnType,
    RunPhase,
)
from core.models import (
    Cell,
    Generation,
    Sheet,
    CreditLedger,
    Subscription,
)
from core.errors import (
    ResolutionErrorKind,
    ResolutionError,
    CellExecutionError,
    InsufficientCredits,
)

__all__ = [
    # Enums
    "CellStatus",
    "GenerationStatus",
    "GenerationType",
    "JobState",
    "ReturnType",
    "RunPhase",
    # Models
    "Cell",
    "Generation",
    "Sheet",
    "CreditLedger",
    "Subscription",
    # Errors
    "ResolutionErrorKind",
    "ResolutionError",
    "CellExecutionError",
    "InsufficientCredits",
]
