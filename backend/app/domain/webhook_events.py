"""
Gateway Webhook Events

Closed set of gateway events the billing engine reacts to, plus an
UnknownEvent variant so that new gateway event types are acknowledged
instead of crashing the handler.

Payloads are only parsed here after the signature has been verified.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from app.domain.subscription import epoch_to_datetime
from app.infrastructure.exceptions import InvalidRequestError


logger = logging.getLogger(__name__)


# =============================================================================
# Gateway entities
# =============================================================================

class SubscriptionEntity(BaseModel):
    """payload.subscription.entity"""
    model_config = ConfigDict(extra="ignore")

    id: str
    status: Optional[str] = None
    plan_id: Optional[str] = None
    customer_id: Optional[str] = None
    current_start: Optional[datetime] = None
    current_end: Optional[datetime] = None
    paid_count: Optional[int] = None
    notes: Dict[str, Any] = {}

    @field_validator("current_start", "current_end", mode="before")
    @classmethod
    def _from_epoch(cls, value: Any) -> Optional[datetime]:
        if isinstance(value, datetime):
            return value
        return epoch_to_datetime(value)

    @field_validator("notes", mode="before")
    @classmethod
    def _notes_dict(cls, value: Any) -> Dict[str, Any]:
        # The gateway sends [] for empty notes
        return value if isinstance(value, dict) else {}


class PaymentEntity(BaseModel):
    """payload.payment.entity"""
    model_config = ConfigDict(extra="ignore")

    id: str
    order_id: Optional[str] = None
    amount: Optional[int] = None
    currency: Optional[str] = None
    status: Optional[str] = None
    method: Optional[str] = None
    error_description: Optional[str] = None
    invoice_id: Optional[str] = None
    subscription_id: Optional[str] = None

    @property
    def is_recurring(self) -> bool:
        """Payments raised by a subscription invoice, not a one-time order."""
        return bool(self.subscription_id or self.invoice_id)


# =============================================================================
# Event variants
# =============================================================================

class GatewayEventBase(BaseModel):
    event: str
    event_id: Optional[str] = None

    def dedupe_key(self) -> str:
        return self.event_id or self._natural_key()

    def _natural_key(self) -> str:
        return self.event


class SubscriptionEventBase(GatewayEventBase):
    subscription: SubscriptionEntity
    payment: Optional[PaymentEntity] = None

    @property
    def subscription_id(self) -> str:
        return self.subscription.id

    def _natural_key(self) -> str:
        end = self.subscription.current_end
        parts = [
            self.event,
            self.subscription.id,
            str(int(end.timestamp())) if end else "",
            str(self.subscription.paid_count) if self.subscription.paid_count is not None else "",
        ]
        return "|".join(parts)


class SubscriptionActivated(SubscriptionEventBase):
    pass


class SubscriptionCharged(SubscriptionEventBase):
    pass


class SubscriptionCancelled(SubscriptionEventBase):
    pass


class SubscriptionCompleted(SubscriptionEventBase):
    pass


class PaymentEventBase(GatewayEventBase):
    payment: PaymentEntity

    def _natural_key(self) -> str:
        return "|".join([self.event, self.payment.id, self.payment.order_id or ""])


class PaymentAuthorized(PaymentEventBase):
    pass


class PaymentCaptured(PaymentEventBase):
    pass


class PaymentFailed(PaymentEventBase):
    pass


class UnknownEvent(GatewayEventBase):
    """Any event name outside the handled set."""
    pass


GatewayEvent = Union[
    SubscriptionActivated,
    SubscriptionCharged,
    SubscriptionCancelled,
    SubscriptionCompleted,
    PaymentAuthorized,
    PaymentCaptured,
    PaymentFailed,
    UnknownEvent,
]


_SUBSCRIPTION_EVENTS = {
    "subscription.activated": SubscriptionActivated,
    "subscription.charged": SubscriptionCharged,
    "subscription.cancelled": SubscriptionCancelled,
    "subscription.completed": SubscriptionCompleted,
}

_PAYMENT_EVENTS = {
    "payment.authorized": PaymentAuthorized,
    "payment.captured": PaymentCaptured,
    "payment.failed": PaymentFailed,
}


def _entity(payload: Dict[str, Any], name: str) -> Optional[Dict[str, Any]]:
    container = payload.get("payload")
    if not isinstance(container, dict):
        return None
    wrapper = container.get(name)
    if not isinstance(wrapper, dict):
        return None
    entity = wrapper.get("entity")
    return entity if isinstance(entity, dict) else None


def parse_webhook_event(
    payload: Any,
    event_id: Optional[str] = None,
) -> GatewayEvent:
    """
    Turn a verified webhook body into a typed event.

    Args:
        payload: Decoded JSON body
        event_id: Gateway event id from the delivery headers, if any

    Returns:
        One of the GatewayEvent variants

    Raises:
        InvalidRequestError: If the body is not an event, or a handled event
            lacks the entity it needs
    """
    if not isinstance(payload, dict):
        raise InvalidRequestError("Malformed webhook payload")

    name = payload.get("event")
    if not isinstance(name, str) or not name:
        raise InvalidRequestError("Malformed webhook payload", missing_fields=["event"])

    try:
        if name in _SUBSCRIPTION_EVENTS:
            subscription = _entity(payload, "subscription")
            if not subscription or not subscription.get("id"):
                raise InvalidRequestError(
                    "Webhook payload missing subscription entity",
                    missing_fields=["payload.subscription.entity.id"],
                )
            payment = _entity(payload, "payment")
            return _SUBSCRIPTION_EVENTS[name](
                event=name,
                event_id=event_id,
                subscription=subscription,
                payment=payment if payment and payment.get("id") else None,
            )

        if name in _PAYMENT_EVENTS:
            payment = _entity(payload, "payment")
            if not payment or not payment.get("id"):
                raise InvalidRequestError(
                    "Webhook payload missing payment entity",
                    missing_fields=["payload.payment.entity.id"],
                )
            return _PAYMENT_EVENTS[name](event=name, event_id=event_id, payment=payment)
    except ValidationError as e:
        raise InvalidRequestError(
            f"Malformed {name} payload", original_error=e
        ) from e

    logger.debug(f"Unhandled webhook event type: {name}")
    return UnknownEvent(event=name, event_id=event_id)
