# ============================================================================
# API ROUTE TESTS
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Tests - FastAPI endpoints
# PURPOSE: Verify request handling and status mapping
# CREATED: 17 OCT 2026
# ============================================================================
"""
API Route Tests

The workspace service is an AsyncMock; these tests cover HTTP concerns only.

Run with:
    pytest tests/test_routes.py -v
"""

import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

from fastapi import FastAPI
from fastapi.testclient import TestClient

from api import router, set_services
from core.contracts import CellStatus
from core.models import CreditLedger
from orchestrator.engine.scheduler import SchedulePlan
from orchestrator.runner import RunResult
from services.workspace_service import OrderResult, PreviewResult, SheetNotFound


HEADERS = {"X-User-Id": "u1"}
BASE = "/api/v1/projects/p1/sheets/Main"


@pytest.fixture
def service():
    service = MagicMock()
    service.run_cell = AsyncMock(return_value=[
        RunResult(cell_id="A1", success=True, output="Hello", status=CellStatus.COMPLETED),
    ])
    service.run_many = AsyncMock(return_value=[])
    service.cancel = AsyncMock(return_value=True)
    service.order = AsyncMock()
    service.preview = AsyncMock()
    service.get_credits = AsyncMock()
    service.close_workspace = AsyncMock(return_value=True)
    set_services(service)
    yield service
    set_services(None)


@pytest.fixture
def client():
    app = FastAPI()
    app.include_router(router, prefix="/api/v1")
    return TestClient(app)


# ============================================================================
# RUN
# ============================================================================

class TestRunRoutes:

    def test_run_cell(self, client, service):
        response = client.post(f"{BASE}/cells/A1/run", headers=HEADERS)

        assert response.status_code == 200
        result = response.json()["results"][0]
        assert result["success"] is True
        assert result["output"] == "Hello"
        assert result["status"] == "completed"
        service.run_cell.assert_awaited_once_with("u1", "p1", "Main", "A1", cascade=False)

    def test_run_cell_cascade_flag(self, client, service):
        client.post(f"{BASE}/cells/A1/run?cascade=true", headers=HEADERS)
        assert service.run_cell.await_args.kwargs["cascade"] is True

    def test_user_header_required(self, client, service):
        response = client.post(f"{BASE}/cells/A1/run")
        assert response.status_code == 422
        service.run_cell.assert_not_awaited()

    def test_unknown_sheet(self, client, service):
        service.run_cell.side_effect = SheetNotFound("Main")
        response = client.post(f"{BASE}/cells/A1/run", headers=HEADERS)
        assert response.status_code == 404
        assert "Main" in response.json()["detail"]

    def test_unknown_cell(self, client, service):
        service.run_cell.return_value = [RunResult(cell_id="Z9", not_found=True, error="Cell Z9 not found")]
        response = client.post(f"{BASE}/cells/Z9/run", headers=HEADERS)
        assert response.status_code == 404
        assert response.json()["detail"] == "Cell not found: Z9"

    def test_insufficient_credits(self, client, service):
        service.run_cell.return_value = [RunResult(
            cell_id="A1",
            error="Insufficient credits. You need 5 credits but only have 1.",
            error_type="InsufficientCredits",
        )]
        response = client.post(f"{BASE}/cells/A1/run", headers=HEADERS)
        assert response.status_code == 402
        assert "You need 5 credits" in response.json()["detail"]

    def test_async_handoff(self, client, service):
        service.run_cell.return_value = [RunResult(
            cell_id="A1", success=True, job_id="job-1", needs_polling=True, status=CellStatus.PENDING,
        )]
        result = client.post(f"{BASE}/cells/A1/run", headers=HEADERS).json()["results"][0]
        assert result["needs_polling"] is True
        assert result["job_id"] == "job-1"
        assert result["status"] == "pending"

    def test_batch_reports_failures_inline(self, client, service):
        service.run_many.return_value = [
            RunResult(cell_id="A1", success=True, output="x", status=CellStatus.COMPLETED),
            RunResult(cell_id="B1", error="nope", error_type="InsufficientCredits"),
        ]
        response = client.post(f"{BASE}/run", headers=HEADERS, json={"cell_ids": ["A1", "B1"]})

        assert response.status_code == 200
        assert [r["cell_id"] for r in response.json()["results"]] == ["A1", "B1"]
        service.run_many.assert_awaited_once_with("u1", "p1", "Main", ["A1", "B1"])

    def test_batch_defaults_to_whole_sheet(self, client, service):
        client.post(f"{BASE}/run", headers=HEADERS, json={})
        service.run_many.assert_awaited_once_with("u1", "p1", "Main", None)

    def test_cancel(self, client, service):
        response = client.post(f"{BASE}/cells/A1/cancel", headers=HEADERS)
        assert response.json() == {"cell_id": "A1", "cancelled": True}


# ============================================================================
# INSPECTION
# ============================================================================

class TestInspectionRoutes:

    def test_order(self, client, service):
        service.order.return_value = OrderResult(
            plan=SchedulePlan(order=["A1", "B1"], cycles=[["C1", "D1"]]),
            edges={"B1": ["A1"]},
        )
        response = client.post(f"{BASE}/order", headers=HEADERS, json={"cell_ids": ["B1", "A1"]})

        body = response.json()
        assert body["order"] == ["A1", "B1"]
        assert body["cycles"] == [["C1", "D1"]]
        assert body["has_cycles"] is True
        assert body["dependencies"] == {"B1": ["A1"]}

    def test_preview(self, client, service):
        service.preview.return_value = PreviewResult(
            resolved="Say hi", references=["A1"], errors=[],
        )
        response = client.post(f"{BASE}/resolve", headers=HEADERS, json={"template": "Say {{A1}}"})

        assert response.json() == {"resolved": "Say hi", "references": ["A1"], "errors": []}
        service.preview.assert_awaited_once_with("u1", "p1", "Main", "Say {{A1}}")


# ============================================================================
# CREDITS
# ============================================================================

class TestCreditRoutes:

    def test_credits(self, client, service):
        service.get_credits.return_value = CreditLedger(
            current=7, total=50, next_reset=datetime(2026, 11, 1, tzinfo=timezone.utc),
        )
        body = client.get("/api/v1/credits", headers=HEADERS).json()
        assert body["user_id"] == "u1"
        assert body["current"] == 7
        assert body["total"] == 50

    def test_no_subscription(self, client, service):
        service.get_credits.return_value = None
        assert client.get("/api/v1/credits", headers=HEADERS).status_code == 404


# ============================================================================
# WORKSPACES
# ============================================================================

class TestWorkspaceRoutes:

    def test_close_workspace(self, client, service):
        response = client.delete("/api/v1/projects/p1/workspace", headers=HEADERS)
        assert response.json() == {"project_id": "p1", "closed": True}
        service.close_workspace.assert_awaited_once_with("u1", "p1")

    def test_close_unopened_workspace(self, client, service):
        service.close_workspace.return_value = False
        response = client.delete("/api/v1/projects/p1/workspace", headers=HEADERS)
        assert response.status_code == 200
        assert response.json()["closed"] is False


class TestNotInitialized:

    def test_services_missing(self, client):
        set_services(None)
        response = client.get("/api/v1/credits", headers=HEADERS)
        assert response.status_code == 500
