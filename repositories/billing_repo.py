# ============================================================================
# BILLING REPOSITORY
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Core - Subscription and credit ledger persistence
# PURPOSE: PostgreSQL BillingStore
# CREATED: 17 OCT 2026
# ============================================================================
"""
Billing Repository

PostgreSQL implementation of BillingStore. Deductions are a single
conditional UPDATE, so two concurrent charges can never drive the balance
below zero.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from core.interfaces import BillingStore
from core.models import CreditLedger, DeductionResult, Subscription
from .database import TABLE_SUBSCRIPTIONS

logger = logging.getLogger(__name__)


class PostgresBillingStore(BillingStore):
    """BillingStore backed by PostgreSQL."""

    def __init__(self, pool: AsyncConnectionPool):
        self.pool = pool

    async def get_user_subscription(self, user_id: str) -> Optional[Subscription]:
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("SELECT * FROM {} WHERE user_id = %s").format(TABLE_SUBSCRIPTIONS),
                (user_id,),
            )
            row = await result.fetchone()

            if row is None:
                return None

            return self._row_to_subscription(row)

    async def save_subscription(self, subscription: Subscription) -> None:
        """Upsert a subscription and its ledger."""
        async with self.pool.connection() as conn:
            await conn.execute(
                sql.SQL("""
                INSERT INTO {} (
                    user_id, plan_id, status, credits_current, credits_total,
                    last_reset, next_reset, updated_at
                ) VALUES (
                    %(user_id)s, %(plan_id)s, %(status)s, %(current)s, %(total)s,
                    %(last_reset)s, %(next_reset)s, now()
                )
                ON CONFLICT (user_id) DO UPDATE SET
                    plan_id = EXCLUDED.plan_id,
                    status = EXCLUDED.status,
                    credits_current = EXCLUDED.credits_current,
                    credits_total = EXCLUDED.credits_total,
                    last_reset = EXCLUDED.last_reset,
                    next_reset = EXCLUDED.next_reset,
                    updated_at = now()
                """).format(TABLE_SUBSCRIPTIONS),
                {
                    "user_id": subscription.user_id,
                    "plan_id": subscription.plan_id,
                    "status": subscription.status,
                    "current": subscription.credits.current,
                    "total": subscription.credits.total,
                    "last_reset": subscription.credits.last_reset,
                    "next_reset": subscription.credits.next_reset,
                },
            )

    async def deduct_credits(self, user_id: str, amount: int) -> DeductionResult:
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                UPDATE {} SET
                    credits_current = credits_current - %(amount)s,
                    updated_at = now()
                WHERE user_id = %(user_id)s AND credits_current >= %(amount)s
                RETURNING credits_current
                """).format(TABLE_SUBSCRIPTIONS),
                {"user_id": user_id, "amount": amount},
            )
            row = await result.fetchone()

            if row is not None:
                logger.debug(f"Deducted {amount} credits from {user_id}")
                return DeductionResult(success=True, remaining_credits=row["credits_current"])

            exists = await conn.execute(
                sql.SQL("SELECT credits_current FROM {} WHERE user_id = %s").format(TABLE_SUBSCRIPTIONS),
                (user_id,),
            )
            current = await exists.fetchone()
            if current is None:
                return DeductionResult(success=False, error="User not found")
            return DeductionResult(
                success=False,
                remaining_credits=current["credits_current"],
                error="Insufficient credits",
            )

    async def reset_monthly_credits(
        self,
        user_id: str,
        monthly_credits: int,
        next_reset: datetime,
        reset_at: Optional[datetime] = None,
    ) -> None:
        async with self.pool.connection() as conn:
            await conn.execute(
                sql.SQL("""
                INSERT INTO {} (
                    user_id, credits_current, credits_total, last_reset, next_reset, updated_at
                ) VALUES (
                    %(user_id)s, %(credits)s, %(credits)s, %(last_reset)s, %(next_reset)s, now()
                )
                ON CONFLICT (user_id) DO UPDATE SET
                    credits_current = EXCLUDED.credits_current,
                    credits_total = EXCLUDED.credits_total,
                    last_reset = EXCLUDED.last_reset,
                    next_reset = EXCLUDED.next_reset,
                    updated_at = now()
                """).format(TABLE_SUBSCRIPTIONS),
                {
                    "user_id": user_id,
                    "credits": monthly_credits,
                    "last_reset": reset_at or datetime.now(timezone.utc),
                    "next_reset": next_reset,
                },
            )
            logger.info(f"Reset monthly credits for {user_id} to {monthly_credits}")

    def _row_to_subscription(self, row: Dict[str, Any]) -> Subscription:
        return Subscription(
            user_id=row["user_id"],
            plan_id=row["plan_id"],
            status=row["status"],
            credits=CreditLedger(
                current=row["credits_current"],
                total=row["credits_total"],
                last_reset=row["last_reset"],
                next_reset=row["next_reset"],
            ),
        )


__all__ = ["PostgresBillingStore"]
