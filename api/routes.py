# ============================================================================
# API ROUTES
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Core - FastAPI route definitions
# PURPOSE: HTTP endpoints for running and inspecting cells
# CREATED: 17 OCT 2026
# ============================================================================
"""
API Routes

FastAPI routes for the cell graph engine.

The caller is identified by the X-User-Id header; authentication happens in
front of this service.

Status mapping:
    404  unknown sheet or cell
    402  the run was rejected for insufficient credits
"""

import logging
from typing import List

from fastapi import APIRouter, Header, HTTPException, Query

from orchestrator.runner import RunResult
from services.workspace_service import SheetNotFound, WorkspaceService
from .schemas import (
    BatchRunRequest,
    CancelResponse,
    CloseResponse,
    CreditsResponse,
    ErrorResponse,
    OrderRequest,
    OrderResponse,
    PreviewRequest,
    PreviewResponse,
    RunResponse,
    RunResultResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# ============================================================================
# DEPENDENCY INJECTION
# ============================================================================
# Set by the main app at startup

_workspace_service = None


def set_services(workspace_service: WorkspaceService):
    """Set service instances for dependency injection."""
    global _workspace_service
    _workspace_service = workspace_service


def get_workspace_service() -> WorkspaceService:
    if _workspace_service is None:
        raise HTTPException(500, "Services not initialized")
    return _workspace_service


def _to_response(results: List[RunResult]) -> RunResponse:
    return RunResponse(results=[RunResultResponse(**r.to_dict()) for r in results])


def _raise_for_results(results: List[RunResult], cell_id: str) -> None:
    if not results or results[0].not_found:
        raise HTTPException(404, f"Cell not found: {cell_id}")
    if results[0].insufficient_credits:
        raise HTTPException(402, results[0].error)


# ============================================================================
# RUN
# ============================================================================

@router.post(
    "/projects/{project_id}/sheets/{sheet}/cells/{cell_id}/run",
    response_model=RunResponse,
    tags=["Cells"],
    responses={
        402: {"model": ErrorResponse, "description": "Insufficient credits"},
        404: {"model": ErrorResponse, "description": "Sheet or cell not found"},
    },
)
async def run_cell(
    project_id: str,
    sheet: str,
    cell_id: str,
    cascade: bool = Query(False, description="Run ready auto_run dependents afterwards"),
    x_user_id: str = Header(...),
):
    """
    Run one cell.

    Returns when the cell completes, is skipped, fails, or hands off to
    async polling (needs_polling=true; the job finishes in the background).
    """
    service = get_workspace_service()

    try:
        results = await service.run_cell(x_user_id, project_id, sheet, cell_id, cascade=cascade)
    except SheetNotFound as e:
        raise HTTPException(404, str(e))

    _raise_for_results(results, cell_id)
    return _to_response(results)


@router.post(
    "/projects/{project_id}/sheets/{sheet}/run",
    response_model=RunResponse,
    tags=["Cells"],
    responses={404: {"model": ErrorResponse, "description": "Sheet not found"}},
)
async def run_batch(
    project_id: str,
    sheet: str,
    request: BatchRunRequest,
    x_user_id: str = Header(...),
):
    """
    Run several cells in dependency order.

    Per-cell failures (including insufficient credits) are reported in the
    results rather than failing the whole request.
    """
    service = get_workspace_service()

    try:
        results = await service.run_many(x_user_id, project_id, sheet, request.cell_ids)
    except SheetNotFound as e:
        raise HTTPException(404, str(e))

    logger.info(f"Batch run on sheet {sheet}: {len(results)} cells executed")
    return _to_response(results)


@router.post(
    "/projects/{project_id}/sheets/{sheet}/cells/{cell_id}/cancel",
    response_model=CancelResponse,
    tags=["Cells"],
    responses={404: {"model": ErrorResponse}},
)
async def cancel_cell(
    project_id: str,
    sheet: str,
    cell_id: str,
    x_user_id: str = Header(...),
):
    """Stop polling a cell's outstanding job."""
    service = get_workspace_service()

    try:
        cancelled = await service.cancel(x_user_id, project_id, sheet, cell_id)
    except SheetNotFound as e:
        raise HTTPException(404, str(e))

    return CancelResponse(cell_id=cell_id, cancelled=cancelled)


# ============================================================================
# INSPECTION
# ============================================================================

@router.post(
    "/projects/{project_id}/sheets/{sheet}/order",
    response_model=OrderResponse,
    tags=["Graph"],
    responses={404: {"model": ErrorResponse}},
)
async def get_order(
    project_id: str,
    sheet: str,
    request: OrderRequest,
    x_user_id: str = Header(...),
):
    """Execution order for a batch plus detected cycles."""
    service = get_workspace_service()

    try:
        result = await service.order(x_user_id, project_id, sheet, request.cell_ids)
    except SheetNotFound as e:
        raise HTTPException(404, str(e))

    return OrderResponse(
        order=result.plan.order,
        cycles=result.plan.cycles,
        has_cycles=result.plan.has_cycles,
        dependencies=result.edges,
    )


@router.post(
    "/projects/{project_id}/sheets/{sheet}/resolve",
    response_model=PreviewResponse,
    tags=["Graph"],
    responses={404: {"model": ErrorResponse}},
)
async def resolve_preview(
    project_id: str,
    sheet: str,
    request: PreviewRequest,
    x_user_id: str = Header(...),
):
    """Resolve a template against current values without running it."""
    service = get_workspace_service()

    try:
        result = await service.preview(x_user_id, project_id, sheet, request.template)
    except SheetNotFound as e:
        raise HTTPException(404, str(e))

    return PreviewResponse(
        resolved=result.resolved,
        references=result.references,
        errors=result.errors,
    )


# ============================================================================
# CREDITS
# ============================================================================

@router.get(
    "/credits",
    response_model=CreditsResponse,
    tags=["Credits"],
    responses={404: {"model": ErrorResponse}},
)
async def get_credits(x_user_id: str = Header(...)):
    """Current credit balance (applies a due monthly reset first)."""
    service = get_workspace_service()

    ledger = await service.get_credits(x_user_id)
    if ledger is None:
        raise HTTPException(404, f"No subscription for user: {x_user_id}")

    return CreditsResponse(
        user_id=x_user_id,
        current=ledger.current,
        total=ledger.total,
        last_reset=ledger.last_reset,
        next_reset=ledger.next_reset,
    )


# ============================================================================
# WORKSPACES
# ============================================================================

@router.delete(
    "/projects/{project_id}/workspace",
    response_model=CloseResponse,
    tags=["Workspaces"],
)
async def close_workspace(project_id: str, x_user_id: str = Header(...)):
    """Release a project's cached sheets and stop its polls."""
    service = get_workspace_service()

    closed = await service.close_workspace(x_user_id, project_id)
    return CloseResponse(project_id=project_id, closed=closed)
