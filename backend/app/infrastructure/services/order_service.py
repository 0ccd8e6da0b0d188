"""
One-Time Order Service

Legacy, non-recurring purchase path:

    create_order -> pending -> payment.authorized/captured -> success
                            -> payment.failed              -> failed

No renewal semantics; a successful payment grants subscription_days from
the moment it is applied.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from app.config.settings import Settings
from app.domain.billing import amount_in_minor_units, build_receipt
from app.domain.subscription import (
    PaymentRecord,
    PaymentRecordPatch,
    PaymentStatus,
    SubscriptionPlan,
    UserPatch,
    UserSubscriptionStatus,
)
from app.domain.webhook_events import PaymentEventBase, PaymentFailed
from app.infrastructure.db.repositories import (
    PaymentRepository,
    PlanRepository,
    UserRepository,
)
from app.infrastructure.exceptions import (
    DatabaseError,
    GatewayError,
    InvalidRequestError,
    InvalidSignatureError,
    PersistenceWarning,
    RecordNotFoundError,
)
from app.infrastructure.payments import RazorpayService
from app.infrastructure.services.subscription_state_machine import (
    PAYMENT_METHOD,
    WebhookOutcome,
)


logger = logging.getLogger(__name__)

DEFAULT_FAILURE_MESSAGE = "Payment failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class OrderResult:
    """A created gateway order."""
    order_id: str
    amount: int
    currency: str
    receipt: str
    plan: SubscriptionPlan
    persisted: bool = True


class OrderService:
    """Creates one-time orders and applies their payment events."""

    def __init__(
        self,
        settings: Settings,
        gateway: RazorpayService,
        plans: PlanRepository,
        payments: PaymentRepository,
        users: UserRepository,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._settings = settings
        self._gateway = gateway
        self._plans = plans
        self._payments = payments
        self._users = users
        self._clock = clock

    # =========================================================================
    # Order creation
    # =========================================================================

    async def create_order(
        self,
        user_id: Optional[str],
        plan_name: Optional[str],
    ) -> OrderResult:
        """
        Create a gateway order for one plan period and record it as pending.

        Raises:
            InvalidRequestError: Required fields missing
            PlanNotFoundError: No active plan with that name
            GatewayError: The gateway rejected the order
        """
        required = {"userId": user_id, "planName": plan_name}
        missing = [field for field, value in required.items() if not (value or "").strip()]
        if missing:
            raise InvalidRequestError("Missing required fields", missing_fields=missing)

        plan = await self._plans.get_active_plan(plan_name, require_gateway_plan=False)
        amount = amount_in_minor_units(plan.price)
        currency = plan.currency or self._settings.default_currency
        now = self._clock()
        receipt = build_receipt(
            self._settings.receipt_prefix, user_id, int(now.timestamp() * 1000)
        )

        order = await self._gateway.create_order(
            amount=amount,
            currency=currency,
            receipt=receipt,
            notes={
                "user_id": user_id,
                "plan_name": plan.name,
                "plan_days": plan.duration_days,
            },
        )
        order_id = order.get("id")
        if not order_id:
            logger.error(f"Gateway returned no order id for user {user_id} on plan {plan.name}")
            raise GatewayError("Gateway returned no order id", operation="create_order")

        persisted = True
        try:
            await self._payments.create(
                PaymentRecord(
                    user_id=user_id,
                    gateway_order_id=order_id,
                    receipt=receipt,
                    amount=plan.price,
                    currency=currency,
                    status=PaymentStatus.PENDING,
                    subscription_plan=plan.name,
                    subscription_days=plan.duration_days,
                    description=f"{plan.label} subscription",
                )
            )
        except DatabaseError as e:
            warning = PersistenceWarning(
                "Order created at gateway but not stored locally",
                table=PaymentRepository.TABLE,
                key=order_id,
                original_error=e,
            )
            logger.error(f"{warning.message}: {warning.details} ({e.message})")
            persisted = False

        return OrderResult(
            order_id=order_id,
            amount=amount,
            currency=currency,
            receipt=receipt,
            plan=plan,
            persisted=persisted,
        )

    # =========================================================================
    # Payment events
    # =========================================================================

    async def apply_payment_event(self, event: PaymentEventBase) -> WebhookOutcome:
        """
        Apply payment.authorized, payment.captured or payment.failed.

        Raises:
            InvalidRequestError: The payment has no order id
            RecordNotFoundError: No payment record for the order
        """
        payment = event.payment

        if payment.is_recurring:
            logger.debug(f"Payment {payment.id} belongs to a subscription invoice, ignoring")
            return WebhookOutcome(WebhookOutcome.IGNORED, event.event, "subscription payment")

        if not payment.order_id:
            raise InvalidRequestError(
                "Payment event has no order id",
                missing_fields=["payload.payment.entity.order_id"],
            )

        record = await self._payments.get_by_order_id(payment.order_id)
        if record is None:
            logger.error(f"Payment record not found: {payment.order_id}")
            raise RecordNotFoundError(
                "Payment record not found",
                table=PaymentRepository.TABLE,
                key=payment.order_id,
            )

        if isinstance(event, PaymentFailed):
            return await self._mark_failed(event, record)
        return await self._mark_success(event, record)

    async def _mark_success(self, event: PaymentEventBase, record: PaymentRecord) -> WebhookOutcome:
        if record.status == PaymentStatus.SUCCESS:
            logger.info(f"Order {record.gateway_order_id} already paid, not granting again")
            return WebhookOutcome(WebhookOutcome.ALREADY_PROCESSED, event.event)

        # The window is fixed on the first delivery; retries grant the same one
        start = record.subscription_start_date
        end = record.subscription_end_date
        if start is None or end is None:
            start = self._clock()
            end = start + timedelta(days=record.subscription_days)
            await self._payments.update(
                record.id,
                PaymentRecordPatch(subscription_start_date=start, subscription_end_date=end),
            )

        await self._grant_access(record, start, end)
        await self._payments.update(
            record.id,
            PaymentRecordPatch(
                status=PaymentStatus.SUCCESS,
                gateway_payment_id=event.payment.id,
                payment_method=event.payment.method,
            ),
        )

        logger.info(f"Order {record.gateway_order_id} paid; user {record.user_id} active until {end}")
        return WebhookOutcome(WebhookOutcome.PROCESSED, event.event)

    async def _grant_access(self, record: PaymentRecord, start: datetime, end: datetime) -> None:
        updated = await self._users.update(
            record.user_id,
            UserPatch(
                subscription_status=UserSubscriptionStatus.ACTIVE,
                subscription_start_date=start,
                subscription_end_date=end,
                subscription_plan=record.subscription_plan,
                payment_method=PAYMENT_METHOD,
            ),
        )
        if updated is None:
            raise RecordNotFoundError(
                "User not found for payment",
                table="users",
                key=record.user_id,
            )

    async def _mark_failed(self, event: PaymentFailed, record: PaymentRecord) -> WebhookOutcome:
        if record.status == PaymentStatus.SUCCESS:
            logger.warning(
                f"payment.failed for already paid order {record.gateway_order_id}, keeping success"
            )
            return WebhookOutcome(WebhookOutcome.IGNORED, event.event, "order already paid")

        await self._payments.update(
            record.id,
            PaymentRecordPatch(
                status=PaymentStatus.FAILED,
                gateway_payment_id=event.payment.id,
                error_message=event.payment.error_description or DEFAULT_FAILURE_MESSAGE,
            ),
        )
        logger.info(f"Payment failed for order {record.gateway_order_id}")
        return WebhookOutcome(WebhookOutcome.PROCESSED, event.event)

    # =========================================================================
    # Manual verification
    # =========================================================================

    def verify_payment(
        self,
        order_id: Optional[str],
        payment_id: Optional[str],
        signature: Optional[str],
    ) -> bool:
        """
        Verify a checkout callback signature.

        Raises:
            InvalidRequestError: A field is missing
            InvalidSignatureError: The signature does not match
        """
        required = {"orderId": order_id, "paymentId": payment_id, "signature": signature}
        missing = [field for field, value in required.items() if not value]
        if missing:
            raise InvalidRequestError("Missing required fields", missing_fields=missing)

        if not self._gateway.verify_payment_signature(order_id, payment_id, signature):
            logger.warning(f"Payment signature mismatch for order {order_id}")
            raise InvalidSignatureError()
        return True
