"""
Subscription Provisioner

Creates a recurring gateway subscription for a user and records it locally
in the created state. Activation happens later, through webhooks.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from app.config.settings import Settings
from app.domain.billing import billing_cycle_count
from app.domain.subscription import (
    SubscriptionPlan,
    SubscriptionStatus,
    UserSubscription,
)
from app.infrastructure.db.repositories import PlanRepository, SubscriptionRepository
from app.infrastructure.exceptions import (
    DatabaseError,
    GatewayError,
    InvalidRequestError,
    PersistenceWarning,
    ProvisionFailedError,
)
from app.infrastructure.payments import RazorpayService


logger = logging.getLogger(__name__)

DEFAULT_CUSTOMER_NAME = "Customer"


@dataclass
class ProvisionResult:
    """Outcome of a successful provisioning call."""
    gateway_subscription_id: str
    payment_url: Optional[str]
    status: str
    plan: SubscriptionPlan
    persisted: bool = True


class SubscriptionProvisioner:
    """
    Provisions gateway subscriptions.

    Not deduplicated: two concurrent calls for the same user and plan create
    two gateway subscriptions.
    """

    def __init__(
        self,
        settings: Settings,
        gateway: RazorpayService,
        plans: PlanRepository,
        subscriptions: SubscriptionRepository,
    ):
        self._settings = settings
        self._gateway = gateway
        self._plans = plans
        self._subscriptions = subscriptions

    async def provision_subscription(
        self,
        user_id: Optional[str],
        plan_name: Optional[str],
        user_email: Optional[str],
        user_name: Optional[str] = None,
    ) -> ProvisionResult:
        """
        Provision a recurring subscription.

        Args:
            user_id: Local user id
            plan_name: Active plan name
            user_email: Customer email; the gateway customer is keyed on it
            user_name: Customer display name, defaults to "Customer"

        Returns:
            ProvisionResult with the gateway subscription id and payment link

        Raises:
            InvalidRequestError: Required fields missing
            PlanNotFoundError / PlanMisconfiguredError: From the plan catalog
            ProvisionFailedError: The gateway failed or timed out
        """
        required = {"userId": user_id, "planName": plan_name, "userEmail": user_email}
        missing = [field for field, value in required.items() if not (value or "").strip()]
        if missing:
            raise InvalidRequestError("Missing required fields", missing_fields=missing)

        plan = await self._plans.get_active_plan(plan_name)
        total_count = billing_cycle_count(plan.duration_days, self._settings.billing_cycle_days)

        try:
            customer = await self._gateway.create_customer(
                email=user_email,
                name=(user_name or "").strip() or DEFAULT_CUSTOMER_NAME,
                notes={"user_id": user_id},
            )
            customer_id = customer.get("id")
            if not customer_id:
                raise GatewayError(
                    "Gateway returned no customer id", operation="create_customer"
                )

            subscription = await self._gateway.create_subscription(
                plan_id=plan.gateway_plan_id,
                customer_id=customer_id,
                total_count=total_count,
                notes={
                    "created_via": self._settings.origin_tag,
                    "environment": self._settings.environment,
                    "user_id": user_id,
                    "plan_name": plan.name,
                },
            )
            gateway_subscription_id = subscription.get("id")
            if not gateway_subscription_id:
                raise GatewayError(
                    "Gateway returned no subscription id", operation="create_subscription"
                )
        except GatewayError as e:
            logger.error(f"Provisioning failed for user {user_id} on plan {plan.name}: {e.message}")
            raise ProvisionFailedError(
                "Failed to create subscription",
                operation=e.details.get("operation"),
                status_code=e.details.get("status_code"),
                gateway_message=e.details.get("gateway_message") or e.message,
                original_error=e,
            ) from e

        payment_url = subscription.get("short_url")
        persisted = await self._record(
            UserSubscription(
                user_id=user_id,
                gateway_subscription_id=gateway_subscription_id,
                gateway_customer_id=customer_id,
                plan_id=plan.id,
                plan_name=plan.name,
                status=SubscriptionStatus.CREATED,
                payment_url=payment_url,
                total_count=total_count,
            )
        )

        logger.info(
            f"Provisioned subscription {gateway_subscription_id} for user {user_id} "
            f"on plan {plan.name}"
        )
        return ProvisionResult(
            gateway_subscription_id=gateway_subscription_id,
            payment_url=payment_url,
            status=subscription.get("status") or SubscriptionStatus.CREATED.value,
            plan=plan,
            persisted=persisted,
        )

    async def _record(self, subscription: UserSubscription) -> bool:
        """Store the created row. A failure is logged, never raised."""
        try:
            await self._subscriptions.create(subscription)
            return True
        except DatabaseError as e:
            warning = PersistenceWarning(
                "Subscription created at gateway but not stored locally",
                table=SubscriptionRepository.TABLE,
                key=subscription.gateway_subscription_id,
                original_error=e,
            )
            logger.error(f"{warning.message}: {warning.details} ({e.message})")
            return False
