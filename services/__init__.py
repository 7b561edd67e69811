# ============================================================================
# SERVICES MODULE
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Core - Business logic
# PURPOSE: Credit accounting and sheet caching
# CREATED: 17 OCT 2026
# ============================================================================
"""
Services Module

Business logic shared by the runner and poller.
WorkspaceService lives in services.workspace_service and is imported from
there directly (it depends on the orchestrator).

Usage:
    from services import CreditService, SheetCache

    credits = CreditService(billing)
    ticket = await credits.admit(user_id, "gpt-4o")
"""

from .credit_service import CreditService, AdmissionTicket, get_credit_cost, has_enough_credits
from .sheet_cache import SheetCache, SheetSnapshot

__all__ = [
    "CreditService",
    "AdmissionTicket",
    "get_credit_cost",
    "has_enough_credits",
    "SheetCache",
    "SheetSnapshot",
]
