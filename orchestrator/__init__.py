# ============================================================================
# ORCHESTRATOR MODULE
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Core - Cell execution
# PURPOSE: Cell runner, async job poller and their helpers
# CREATED: 17 OCT 2026
# ============================================================================
"""
Orchestrator Module

Runs cells: resolves references, evaluates conditions, admits against
credits, calls the generation backend and polls async jobs to completion.

Usage:
    from orchestrator import CellRunner

    runner = CellRunner(store, cache, backend, credits, locks, poller)
    result = await runner.run_cell(sheet_id, "B2")
"""

from .poller import JobPoller, PollRequest, PollOutcome, CancellationToken
from .runner import CellRunner, RunResult

__all__ = [
    "CellRunner",
    "RunResult",
    "JobPoller",
    "PollRequest",
    "PollOutcome",
    "CancellationToken",
]
