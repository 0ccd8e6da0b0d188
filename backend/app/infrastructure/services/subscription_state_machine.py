"""
Subscription State Machine

Applies verified subscription.* webhook events to the local subscription
record and the owning user's entitlement.

    created -> active -> {cancelled, completed}

Terminal states are never reopened. Period boundaries are absolute
overwrites taken from the event, so out-of-order deliveries converge.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from app.config.settings import Settings
from app.domain.subscription import (
    SubscriptionStatus,
    UserPatch,
    UserSubscription,
    UserSubscriptionPatch,
    UserSubscriptionStatus,
)
from app.domain.webhook_events import (
    SubscriptionActivated,
    SubscriptionCancelled,
    SubscriptionCharged,
    SubscriptionCompleted,
    SubscriptionEventBase,
)
from app.infrastructure.db.repositories import SubscriptionRepository, UserRepository
from app.infrastructure.exceptions import RecordNotFoundError


logger = logging.getLogger(__name__)

PAYMENT_METHOD = "razorpay"


@dataclass
class WebhookOutcome:
    """How a delivery was handled; returned to the gateway as status."""
    status: str
    event: str
    detail: Optional[str] = None

    PROCESSED = "processed"
    ALREADY_PROCESSED = "already_processed"
    IGNORED = "ignored"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubscriptionStateMachine:
    """Transition handlers keyed by gateway subscription id."""

    def __init__(
        self,
        settings: Settings,
        subscriptions: SubscriptionRepository,
        users: UserRepository,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._settings = settings
        self._subscriptions = subscriptions
        self._users = users
        self._clock = clock

    async def apply(self, event: SubscriptionEventBase) -> WebhookOutcome:
        """
        Apply one subscription event.

        Raises:
            RecordNotFoundError: activated, cancelled or completed for an
                unknown subscription
            DatabaseError: Store failure; the gateway should retry
        """
        if isinstance(event, SubscriptionActivated):
            return await self._on_activated(event)
        if isinstance(event, SubscriptionCharged):
            return await self._on_charged(event)
        if isinstance(event, SubscriptionCancelled):
            return await self._on_cancelled(event)
        if isinstance(event, SubscriptionCompleted):
            return await self._on_completed(event)

        logger.debug(f"No transition for {event.event}")
        return WebhookOutcome(WebhookOutcome.IGNORED, event.event, "no transition")

    # =========================================================================
    # Record lookup
    # =========================================================================

    async def _find(self, event: SubscriptionEventBase) -> Optional[UserSubscription]:
        subscription = await self._subscriptions.get_by_gateway_id(event.subscription_id)
        if subscription is not None:
            return subscription

        if self._settings.webhook_recover_missing_records:
            return await self._recover(event)
        return None

    async def _require(self, event: SubscriptionEventBase) -> UserSubscription:
        subscription = await self._find(event)
        if subscription is None:
            logger.warning(f"{event.event} for unknown subscription {event.subscription_id}")
            raise RecordNotFoundError(
                "Subscription record not found",
                table=SubscriptionRepository.TABLE,
                key=event.subscription_id,
            )
        return subscription

    async def _recover(self, event: SubscriptionEventBase) -> Optional[UserSubscription]:
        """Re-create a missing row from the notes attached at provisioning."""
        notes = event.subscription.notes
        user_id = notes.get("user_id")
        plan_name = notes.get("plan_name")
        if not user_id or not plan_name:
            logger.warning(
                f"Cannot recover subscription {event.subscription_id}: notes lack user_id/plan_name"
            )
            return None

        logger.warning(f"Recovering missing subscription {event.subscription_id} for user {user_id}")
        return await self._subscriptions.create(
            UserSubscription(
                user_id=str(user_id),
                gateway_subscription_id=event.subscription_id,
                gateway_customer_id=event.subscription.customer_id,
                plan_name=str(plan_name),
                status=SubscriptionStatus.CREATED,
            )
        )

    # =========================================================================
    # Transitions
    # =========================================================================

    @staticmethod
    def _period_fields(event: SubscriptionEventBase) -> Dict[str, Any]:
        entity = event.subscription
        fields: Dict[str, Any] = {}
        if entity.current_start is not None:
            fields["current_period_start"] = entity.current_start
        if entity.current_end is not None:
            fields["current_period_end"] = entity.current_end
        if entity.paid_count is not None:
            fields["paid_count"] = entity.paid_count
        return fields

    async def _is_latest(self, subscription: UserSubscription) -> bool:
        """Only the user's most recent subscription decides their entitlement."""
        latest = await self._subscriptions.get_latest_for_user(subscription.user_id)
        if latest is None or latest.gateway_subscription_id == subscription.gateway_subscription_id:
            return True
        logger.info(
            f"{subscription.gateway_subscription_id} is superseded by "
            f"{latest.gateway_subscription_id}; user entitlement unchanged"
        )
        return False

    async def _patch_user(self, user_id: str, patch: UserPatch) -> None:
        updated = await self._users.update(user_id, patch)
        if updated is None:
            logger.error(f"User {user_id} missing while applying a subscription event")

    async def _on_activated(self, event: SubscriptionActivated) -> WebhookOutcome:
        subscription = await self._require(event)
        if subscription.status.is_terminal:
            logger.warning(
                f"Ignoring activation of {subscription.status.value} subscription "
                f"{subscription.gateway_subscription_id}"
            )
            return WebhookOutcome(WebhookOutcome.IGNORED, event.event, "terminal state")

        period = self._period_fields(event)
        await self._subscriptions.update(
            subscription.id,
            UserSubscriptionPatch(
                status=SubscriptionStatus.ACTIVE,
                activated_at=self._clock(),
                **period,
            ),
        )

        user_fields: Dict[str, Any] = {
            "subscription_status": UserSubscriptionStatus.ACTIVE,
            "subscription_plan": subscription.plan_name,
            "payment_method": PAYMENT_METHOD,
        }
        if event.subscription.current_start is not None:
            user_fields["subscription_start_date"] = event.subscription.current_start
        if event.subscription.current_end is not None:
            user_fields["subscription_end_date"] = event.subscription.current_end
        if await self._is_latest(subscription):
            await self._patch_user(subscription.user_id, UserPatch(**user_fields))

        logger.info(
            f"Subscription {subscription.gateway_subscription_id} activated for user "
            f"{subscription.user_id} until {event.subscription.current_end}"
        )
        return WebhookOutcome(WebhookOutcome.PROCESSED, event.event)

    async def _on_charged(self, event: SubscriptionCharged) -> WebhookOutcome:
        subscription = await self._find(event)
        if subscription is None:
            logger.warning(f"Charge for unknown subscription {event.subscription_id}, ignoring")
            return WebhookOutcome(WebhookOutcome.IGNORED, event.event, "no matching subscription")

        terminal = subscription.status.is_terminal
        sub_fields = self._period_fields(event)
        if not terminal:
            sub_fields["status"] = SubscriptionStatus.ACTIVE
            if subscription.activated_at is None:
                sub_fields["activated_at"] = self._clock()
        await self._subscriptions.update(subscription.id, UserSubscriptionPatch(**sub_fields))

        user_fields: Dict[str, Any] = {}
        if event.subscription.current_end is not None:
            user_fields["subscription_end_date"] = event.subscription.current_end
        if not terminal:
            user_fields["subscription_status"] = UserSubscriptionStatus.ACTIVE
            user_fields["subscription_plan"] = subscription.plan_name
            user_fields["payment_method"] = PAYMENT_METHOD
        if user_fields and await self._is_latest(subscription):
            await self._patch_user(subscription.user_id, UserPatch(**user_fields))

        logger.info(
            f"Subscription {subscription.gateway_subscription_id} charged "
            f"(paid_count={event.subscription.paid_count}, until {event.subscription.current_end})"
        )
        return WebhookOutcome(WebhookOutcome.PROCESSED, event.event)

    async def _on_cancelled(self, event: SubscriptionCancelled) -> WebhookOutcome:
        subscription = await self._require(event)
        if subscription.status.is_terminal:
            logger.info(
                f"Subscription {subscription.gateway_subscription_id} already "
                f"{subscription.status.value}, ignoring cancellation"
            )
            return WebhookOutcome(WebhookOutcome.IGNORED, event.event, "terminal state")

        await self._subscriptions.update(
            subscription.id,
            UserSubscriptionPatch(
                status=SubscriptionStatus.CANCELLED,
                cancelled_at=self._clock(),
            ),
        )

        if await self._is_latest(subscription):
            await self._patch_user(
                subscription.user_id,
                UserPatch(subscription_status=UserSubscriptionStatus.CANCELLED),
            )

        logger.info(f"Subscription {subscription.gateway_subscription_id} cancelled")
        return WebhookOutcome(WebhookOutcome.PROCESSED, event.event)

    async def _on_completed(self, event: SubscriptionCompleted) -> WebhookOutcome:
        subscription = await self._require(event)
        if subscription.status.is_terminal:
            return WebhookOutcome(WebhookOutcome.IGNORED, event.event, "terminal state")

        await self._subscriptions.update(
            subscription.id,
            UserSubscriptionPatch(
                status=SubscriptionStatus.COMPLETED,
                completed_at=self._clock(),
            ),
        )
        logger.info(f"Subscription {subscription.gateway_subscription_id} completed")
        return WebhookOutcome(WebhookOutcome.PROCESSED, event.event)
