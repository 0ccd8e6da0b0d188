"""
Webhook Service

Entry point for gateway webhook deliveries: verify the signature over the
raw body, parse it into a typed event, drop redeliveries, dispatch, and
record the applied event in the ledger.
"""

import json
import logging
from typing import Optional

from app.domain.subscription import EventLedgerEntry
from app.domain.webhook_events import (
    GatewayEvent,
    PaymentEventBase,
    SubscriptionEventBase,
    UnknownEvent,
    parse_webhook_event,
)
from app.infrastructure.db.repositories import EventLedgerRepository
from app.infrastructure.exceptions import InvalidRequestError, InvalidSignatureError
from app.infrastructure.payments import RazorpayService
from app.infrastructure.services.order_service import OrderService
from app.infrastructure.services.subscription_state_machine import (
    SubscriptionStateMachine,
    WebhookOutcome,
)


logger = logging.getLogger(__name__)


class WebhookService:
    """Verifies and applies gateway webhook deliveries."""

    def __init__(
        self,
        gateway: RazorpayService,
        state_machine: SubscriptionStateMachine,
        orders: OrderService,
        ledger: EventLedgerRepository,
    ):
        self._gateway = gateway
        self._state_machine = state_machine
        self._orders = orders
        self._ledger = ledger

    async def process(
        self,
        raw_body: bytes,
        signature: Optional[str],
        event_id: Optional[str] = None,
    ) -> WebhookOutcome:
        """
        Handle one delivery.

        Args:
            raw_body: Request body exactly as received
            signature: X-Razorpay-Signature header value
            event_id: X-Razorpay-Event-Id header value, if sent

        Raises:
            InvalidSignatureError: Missing or wrong signature
            InvalidRequestError: Body is not a usable event
            RecordNotFoundError: No local record for a known event
            DatabaseError: Store failure; the gateway should retry
        """
        if not self._gateway.verify_webhook_signature(raw_body, signature):
            logger.warning("Rejected webhook with invalid signature")
            raise InvalidSignatureError()

        try:
            payload = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError) as e:
            raise InvalidRequestError("Webhook body is not valid JSON", original_error=e) from e

        event = parse_webhook_event(payload, event_id=event_id)
        logger.info(f"Webhook received: {event.event}")

        if isinstance(event, UnknownEvent):
            return WebhookOutcome(WebhookOutcome.IGNORED, event.event, "unhandled event type")

        dedupe_key = event.dedupe_key()
        if await self._ledger.exists(dedupe_key):
            logger.info(f"Duplicate delivery {dedupe_key}, already processed")
            return WebhookOutcome(WebhookOutcome.ALREADY_PROCESSED, event.event)

        outcome = await self._dispatch(event)

        if outcome.status == WebhookOutcome.PROCESSED:
            await self._ledger.append(self._ledger_entry(event, dedupe_key))
        return outcome

    async def _dispatch(self, event: GatewayEvent) -> WebhookOutcome:
        if isinstance(event, SubscriptionEventBase):
            return await self._state_machine.apply(event)
        if isinstance(event, PaymentEventBase):
            return await self._orders.apply_payment_event(event)
        return WebhookOutcome(WebhookOutcome.IGNORED, event.event, "unhandled event type")

    @staticmethod
    def _ledger_entry(event: GatewayEvent, dedupe_key: str) -> EventLedgerEntry:
        entry = EventLedgerEntry(dedupe_key=dedupe_key, event=event.event)
        if isinstance(event, SubscriptionEventBase):
            entry.gateway_subscription_id = event.subscription.id
            entry.period_start = event.subscription.current_start
            entry.period_end = event.subscription.current_end
            entry.paid_count = event.subscription.paid_count
            if event.payment is not None:
                entry.gateway_payment_id = event.payment.id
        elif isinstance(event, PaymentEventBase):
            entry.gateway_payment_id = event.payment.id
            entry.gateway_order_id = event.payment.order_id
        return entry
