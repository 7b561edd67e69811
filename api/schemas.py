# ============================================================================
# API SCHEMAS
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Core - Request/Response schemas
# PURPOSE: Pydantic models for API validation
# CREATED: 17 OCT 2026
# ============================================================================
"""
API Schemas

Request and response models for the API.
"""

from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, Field

from core.contracts import CellStatus


# ============================================================================
# REQUEST SCHEMAS
# ============================================================================

class BatchRunRequest(BaseModel):
    """Request to run several cells of a sheet."""
    cell_ids: Optional[List[str]] = Field(
        None,
        description="Cells to run; omit to run every cell of the sheet"
    )

    model_config = {
        "json_schema_extra": {
            "examples": [{"cell_ids": ["A1", "B1", "C1"]}]
        }
    }


class OrderRequest(BaseModel):
    """Request the execution order for a batch."""
    cell_ids: Optional[List[str]] = None


class PreviewRequest(BaseModel):
    """Template to resolve against current cell values."""
    template: str = Field(..., max_length=100_000)

    model_config = {
        "json_schema_extra": {
            "examples": [{"template": "Summarize {{A1}} in the tone of {{prompt:Style!B2}}"}]
        }
    }


# ============================================================================
# RESPONSE SCHEMAS
# ============================================================================

class RunResultResponse(BaseModel):
    """Outcome of one cell run."""
    cell_id: str
    success: bool
    output: Optional[str] = None
    skipped: bool = False
    job_id: Optional[str] = None
    status: Optional[CellStatus] = None
    needs_polling: bool = False
    error: Optional[str] = None
    error_type: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)


class RunResponse(BaseModel):
    """Results of a run request, in execution order."""
    results: List[RunResultResponse]


class CloseResponse(BaseModel):
    project_id: str
    closed: bool


class CancelResponse(BaseModel):
    cell_id: str
    cancelled: bool


class OrderResponse(BaseModel):
    """Execution order, detected cycles and dependency edges."""
    order: List[str]
    cycles: List[List[str]] = Field(default_factory=list)
    has_cycles: bool = False
    dependencies: Dict[str, List[str]] = Field(
        default_factory=dict,
        description="Cell id -> same-sheet cells it references"
    )


class PreviewResponse(BaseModel):
    resolved: str
    references: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class CreditsResponse(BaseModel):
    user_id: str
    current: int
    total: int
    last_reset: Optional[datetime] = None
    next_reset: Optional[datetime] = None


class ErrorResponse(BaseModel):
    """Error response."""
    detail: str
