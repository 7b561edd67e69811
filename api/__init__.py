# ============================================================================
# API MODULE
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Core - FastAPI routes
# PURPOSE: HTTP API for running cells
# CREATED: 17 OCT 2026
# ============================================================================
"""
API Module

FastAPI routes for the cell graph engine.
"""

from .routes import router, set_services
from .schemas import (
    BatchRunRequest,
    PreviewRequest,
    RunResponse,
    RunResultResponse,
)

__all__ = [
    "router",
    "set_services",
    "BatchRunRequest",
    "PreviewRequest",
    "RunResponse",
    "RunResultResponse",
]
