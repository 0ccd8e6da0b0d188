"""
Plan Repository

Read-only access to the subscription_plans price list.
"""

import logging
from typing import List

from app.domain.subscription import SubscriptionPlan
from app.infrastructure.db.record_store import RecordStore
from app.infrastructure.exceptions import PlanMisconfiguredError, PlanNotFoundError


logger = logging.getLogger(__name__)


class PlanRepository:
    """Plan Catalog. Plans are managed elsewhere; this code never writes them."""

    TABLE = "subscription_plans"

    def __init__(self, store: RecordStore):
        self._store = store

    async def get_active_plan(self, name: str, require_gateway_plan: bool = True) -> SubscriptionPlan:
        """
        Look up an active plan by its unique name.

        Args:
            name: Plan name
            require_gateway_plan: Reject plans without a gateway plan id.
                Recurring subscriptions need one; one-time orders do not.

        Returns:
            The active SubscriptionPlan

        Raises:
            PlanNotFoundError: If no active plan has this name
            PlanMisconfiguredError: If the plan cannot be billed
        """
        rows = await self._store.query(
            self.TABLE,
            {"name": name, "is_active": True},
            limit=1,
        )
        if not rows:
            logger.warning(f"Plan lookup failed: {name}")
            raise PlanNotFoundError(name)

        plan = SubscriptionPlan.model_validate(rows[0])

        if require_gateway_plan and not (plan.gateway_plan_id or "").strip():
            logger.error(f"Plan {name} has no Razorpay plan id")
            raise PlanMisconfiguredError(name)

        return plan

    async def list_active_plans(self) -> List[SubscriptionPlan]:
        """Active plans ordered by price."""
        rows = await self._store.query(
            self.TABLE,
            {"is_active": True},
            order_by="price_inr",
        )
        return [SubscriptionPlan.model_validate(row) for row in rows]
