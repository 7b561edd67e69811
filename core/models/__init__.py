# ============================================================================
# CORE MODELS
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Core - Pydantic models
# PURPOSE: Export hub for cell, sheet, credit and backend models
# CREATED: 17 OCT 2026
# ============================================================================
"""
Core Models

Pydantic models shared by the engine, repositories and API.
"""

from core.models.cell import (
    Cell,
    Generation,
    NO_GENERATIONS_SENTINEL,
    SKIPPED_OUTPUT,
)
from core.models.sheet import Sheet
from core.models.credits import CreditLedger, Subscription, DeductionResult
from core.models.backend import (
    VideoSettings,
    AudioSettings,
    GenerationRequest,
    GenerationResponse,
    JobStatusResponse,
)

__all__ = [
    "Cell",
    "Generation",
    "NO_GENERATIONS_SENTINEL",
    "SKIPPED_OUTPUT",
    "Sheet",
    "CreditLedger",
    "Subscription",
    "DeductionResult",
    "VideoSettings",
    "AudioSettings",
    "GenerationRequest",
    "GenerationResponse",
    "JobStatusResponse",
]
