# ============================================================================
# CREDIT LEDGER MODELS
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Core model - Per-user credit balance
# PURPOSE: Ledger consumed by generations, refilled monthly
# CREATED: 17 OCT 2026
# EXPORTS: CreditLedger, Subscription, DeductionResult
# DEPENDENCIES: pydantic
# ============================================================================
"""
Credit Ledger Models

Each user holds a Subscription with a CreditLedger. The balance counts
down as generations succeed and is refilled to the plan's monthly
allotment once next_reset has passed.
"""

from datetime import datetime, timezone
from typing import Optional
from pydantic import BaseModel, Field


class CreditLedger(BaseModel):
    """Monotonic countdown of a user's monthly credits."""
    current: int = Field(default=0, ge=0)
    total: int = Field(default=0, ge=0)
    last_reset: Optional[datetime] = None
    next_reset: Optional[datetime] = None

    def is_reset_due(self, now: Optional[datetime] = None) -> bool:
        """True when the monthly boundary has passed."""
        if self.next_reset is None:
            return False
        now = now or datetime.now(timezone.utc)
        next_reset = self.next_reset
        if next_reset.tzinfo is None:
            next_reset = next_reset.replace(tzinfo=timezone.utc)
        return now >= next_reset


class Subscription(BaseModel):
    """A user's plan and ledger."""
    user_id: str = Field(..., min_length=1)
    plan_id: str = Field(default="free")
    status: str = Field(default="active")
    credits: CreditLedger = Field(default_factory=CreditLedger)


class DeductionResult(BaseModel):
    """Outcome of a credit deduction."""
    success: bool
    remaining_credits: int = 0
    error: Optional[str] = None


__all__ = [
    "CreditLedger",
    "Subscription",
    "DeductionResult",
]
