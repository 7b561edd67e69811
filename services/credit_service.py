# ============================================================================
# CREDIT SERVICE
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Service - Admission control and metering
# PURPOSE: Gate generations on the user's credit balance and charge them
# CREATED: 17 OCT 2026
# ============================================================================
"""
Credit Service

Admission controller in front of every generation call.

Flow:
    ticket = await credits.admit(user_id, model)   # may raise InsufficientCredits
    ... generate ...
    await credits.charge(ticket)                   # after a successful result

admit() first refills the ledger when the monthly boundary has passed,
then compares the balance with the model's cost. charge() never raises:
a failed deduction after a successful generation is logged, not undone.

Cost table (credits per generation):
    text   1  (gpt-4o, gemini-1.5-pro: 2)
    image  3  (dall-e-3, imagen-3: 5)
    video  20
    audio  2  (hd voices: 3)
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from core.config import CreditDefaults, get_defaults
from core.contracts import GenerationType
from core.errors import InsufficientCredits
from core.interfaces import BillingStore
from core.models import CreditLedger, DeductionResult, Subscription

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# PRICING
# ============================================================================

def get_credit_cost(model_type: GenerationType, model: str = "") -> int:
    """Credits charged for one generation with this model."""
    model_id = (model or "").lower()
    if model_type == GenerationType.TEXT:
        if "gpt-4o" in model_id or "gemini-1.5-pro" in model_id:
            return 2
        return 1
    if model_type == GenerationType.IMAGE:
        if "dall-e-3" in model_id or "imagen-3" in model_id:
            return 5
        return 3
    if model_type == GenerationType.VIDEO:
        return 20
    if model_type == GenerationType.AUDIO:
        if "hd" in model_id:
            return 3
        return 2
    return 1


def has_enough_credits(balance: int, cost: int) -> bool:
    return balance >= cost


# ============================================================================
# ADMISSION
# ============================================================================

@dataclass(frozen=True)
class AdmissionTicket:
    """Proof that a generation was admitted, carried until it is charged."""
    user_id: str
    model: str
    model_type: GenerationType
    cost: int
    balance: int


class CreditService:
    """Admission control and metering over a BillingStore."""

    def __init__(
        self,
        billing: BillingStore,
        defaults: Optional[CreditDefaults] = None,
        clock: Clock = _utcnow,
    ):
        """
        Initialize the credit service.

        Args:
            billing: Ledger persistence
            defaults: Plan allotments and reset period
            clock: Source of "now" (injectable for tests)
        """
        self.billing = billing
        self.defaults = defaults or get_defaults().credits
        self.clock = clock

    async def reset_if_due(self, subscription: Subscription) -> bool:
        """
        Refill a ledger whose monthly boundary has passed.

        Returns:
            True if a reset was written
        """
        now = self.clock()
        if not subscription.credits.is_reset_due(now):
            return False

        monthly = self.defaults.monthly_credits(subscription.plan_id)
        next_reset = now + timedelta(days=self.defaults.reset_period_days)
        await self.billing.reset_monthly_credits(
            subscription.user_id, monthly, next_reset, reset_at=now
        )
        logger.info(
            f"Reset credits for user {subscription.user_id} "
            f"(plan={subscription.plan_id}, credits={monthly}, next={next_reset.isoformat()})"
        )
        return True

    async def get_current_ledger(self, user_id: str) -> Optional[CreditLedger]:
        """Ledger after applying any due monthly reset."""
        subscription = await self.billing.get_user_subscription(user_id)
        if subscription is None:
            return None
        if await self.reset_if_due(subscription):
            subscription = await self.billing.get_user_subscription(user_id)
            if subscription is None:
                return None
        return subscription.credits

    async def admit(self, user_id: str, model: str) -> AdmissionTicket:
        """
        Pre-flight check for one generation.

        Args:
            user_id: Paying user
            model: Model id; determines type and cost

        Returns:
            AdmissionTicket to pass to charge()

        Raises:
            InsufficientCredits: If the balance cannot cover the cost
        """
        model_type = GenerationType.for_model(model)
        cost = get_credit_cost(model_type, model)

        ledger = await self.get_current_ledger(user_id)
        balance = ledger.current if ledger is not None else 0
        if ledger is None:
            logger.warning(f"No subscription found for user {user_id}")

        if not has_enough_credits(balance, cost):
            logger.info(f"Rejected {model} for user {user_id}: cost={cost}, balance={balance}")
            raise InsufficientCredits(required=cost, available=balance)

        return AdmissionTicket(
            user_id=user_id,
            model=model,
            model_type=model_type,
            cost=cost,
            balance=balance,
        )

    async def charge(self, ticket: AdmissionTicket) -> DeductionResult:
        """Deduct an admitted generation's cost; failures are logged only."""
        try:
            result = await self.billing.deduct_credits(ticket.user_id, ticket.cost)
        except Exception as e:
            logger.exception(f"Credit deduction failed for user {ticket.user_id}: {e}")
            return DeductionResult(success=False, error=str(e))

        if result.success:
            logger.debug(
                f"Charged {ticket.cost} credits to {ticket.user_id}; "
                f"{result.remaining_credits} remaining"
            )
        else:
            logger.warning(f"Credit deduction rejected for user {ticket.user_id}: {result.error}")
        return result


__all__ = [
    "get_credit_cost",
    "has_enough_credits",
    "AdmissionTicket",
    "CreditService",
]
