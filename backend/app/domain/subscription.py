"""
Subscription Domain Models

Domain models for the subscription & access-control lifecycle.
Enums, entities, patch objects and request/response DTOs.

Entities validate straight from record-store rows: field aliases carry the
gateway-specific column names (razorpay_*), so the rest of the code speaks
in gateway-neutral names.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


logger = logging.getLogger(__name__)


class UserRole(str, Enum):
    """Account role. Admins bypass every entitlement check."""
    ADMIN = "admin"
    USER = "user"


class UserSubscriptionStatus(str, Enum):
    """Entitlement status stored on the user record."""
    TRIAL = "trial"
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class SubscriptionStatus(str, Enum):
    """Local mirror of the gateway subscription state."""
    CREATED = "created"
    ACTIVE = "active"
    CANCELLED = "cancelled"
    COMPLETED = "completed"

    @property
    def is_terminal(self) -> bool:
        return self in (SubscriptionStatus.CANCELLED, SubscriptionStatus.COMPLETED)


class PaymentStatus(str, Enum):
    """Legacy one-time order payment status."""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


# =============================================================================
# Timestamp parsing
# =============================================================================

def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a stored timestamp into an aware UTC datetime.

    Returns None for absent or malformed values; callers treat None as
    "no window", which denies access.
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            logger.warning(f"Unparseable timestamp {value!r}, treating as absent")
            return None
    else:
        logger.warning(f"Unexpected timestamp type {type(value).__name__}, treating as absent")
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def epoch_to_datetime(seconds: Any) -> Optional[datetime]:
    """Convert gateway epoch seconds into an aware UTC datetime."""
    if seconds is None or isinstance(seconds, bool):
        return None
    try:
        return datetime.fromtimestamp(int(seconds), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        logger.warning(f"Invalid epoch timestamp {seconds!r}")
        return None


def _coerce_flag(value: Any) -> bool:
    """Anything other than an explicit false marker reads as set."""
    if value is None or value is False:
        return False
    if isinstance(value, (int, float)) and value == 0:
        return False
    if isinstance(value, str) and value.strip().lower() in ("", "false", "0", "no"):
        return False
    return True


# =============================================================================
# Domain Entities
# =============================================================================

class User(BaseModel):
    """
    Identity plus entitlement snapshot.

    Parsing never fails on billing fields: an unknown role reads as USER,
    an unknown status as None, a malformed date as None.
    """
    model_config = ConfigDict(extra="ignore")

    id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    role: UserRole = UserRole.USER
    subscription_status: Optional[UserSubscriptionStatus] = None
    subscription_plan: Optional[str] = None
    payment_method: Optional[str] = None
    trial_start_date: Optional[datetime] = None
    trial_end_date: Optional[datetime] = None
    subscription_start_date: Optional[datetime] = None
    subscription_end_date: Optional[datetime] = None
    is_locked: bool = False
    locked_reason: Optional[str] = None
    locked_by: Optional[str] = None
    locked_at: Optional[datetime] = None

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        return str(value) if value is not None else value

    @field_validator("role", mode="before")
    @classmethod
    def _coerce_role(cls, value: Any) -> UserRole:
        return UserRole.ADMIN if value == UserRole.ADMIN.value else UserRole.USER

    @field_validator("subscription_status", mode="before")
    @classmethod
    def _coerce_status(cls, value: Any) -> Optional[UserSubscriptionStatus]:
        if value is None:
            return None
        try:
            return UserSubscriptionStatus(value)
        except ValueError:
            logger.warning(f"Unknown subscription status {value!r}, treating as absent")
            return None

    @field_validator(
        "trial_start_date",
        "trial_end_date",
        "subscription_start_date",
        "subscription_end_date",
        "locked_at",
        mode="before",
    )
    @classmethod
    def _parse_dates(cls, value: Any) -> Optional[datetime]:
        return parse_timestamp(value)

    @field_validator("is_locked", mode="before")
    @classmethod
    def _coerce_locked(cls, value: Any) -> bool:
        return _coerce_flag(value)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class SubscriptionPlan(BaseModel):
    """Price list entry. Read-only to this service."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    name: str
    display_name: Optional[str] = None
    gateway_plan_id: Optional[str] = Field(default=None, alias="razorpay_plan_id")
    duration_days: int = 30
    price: Decimal = Field(default=Decimal("0"), alias="price_inr")
    currency: str = "INR"
    is_active: bool = True

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        return str(value) if value is not None else value

    @property
    def label(self) -> str:
        return self.display_name or self.name


class UserSubscription(BaseModel):
    """One row per gateway subscription created for a user."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    user_id: str
    gateway_subscription_id: str = Field(alias="razorpay_subscription_id")
    gateway_customer_id: Optional[str] = Field(default=None, alias="razorpay_customer_id")
    plan_id: Optional[str] = None
    plan_name: str
    status: SubscriptionStatus = SubscriptionStatus.CREATED
    payment_url: Optional[str] = None
    current_period_start: Optional[datetime] = Field(default=None, alias="current_start")
    current_period_end: Optional[datetime] = Field(default=None, alias="current_end")
    paid_count: Optional[int] = 0
    total_count: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    activated_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @field_validator("id", "user_id", "plan_id", mode="before")
    @classmethod
    def _stringify_ids(cls, value: Any) -> Any:
        return str(value) if value is not None else value

    @field_validator(
        "current_period_start",
        "current_period_end",
        "created_at",
        "updated_at",
        "activated_at",
        "cancelled_at",
        "completed_at",
        mode="before",
    )
    @classmethod
    def _parse_dates(cls, value: Any) -> Optional[datetime]:
        return parse_timestamp(value)


class PaymentRecord(BaseModel):
    """Legacy one-time order: one row per gateway order."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    user_id: str
    gateway_order_id: str = Field(alias="razorpay_order_id")
    gateway_payment_id: Optional[str] = Field(default=None, alias="razorpay_payment_id")
    receipt: Optional[str] = None
    amount: Decimal = Decimal("0")
    currency: str = "INR"
    status: PaymentStatus = PaymentStatus.PENDING
    subscription_plan: Optional[str] = None
    subscription_days: int = 0
    description: Optional[str] = None
    payment_method: Optional[str] = None
    error_message: Optional[str] = None
    subscription_start_date: Optional[datetime] = None
    subscription_end_date: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @field_validator("id", "user_id", mode="before")
    @classmethod
    def _stringify_ids(cls, value: Any) -> Any:
        return str(value) if value is not None else value

    @field_validator(
        "subscription_start_date", "subscription_end_date", "created_at", mode="before"
    )
    @classmethod
    def _parse_dates(cls, value: Any) -> Optional[datetime]:
        return parse_timestamp(value)


class EventLedgerEntry(BaseModel):
    """Append-only ledger row for an applied gateway event."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    dedupe_key: str
    event: str
    gateway_subscription_id: Optional[str] = Field(default=None, alias="razorpay_subscription_id")
    gateway_payment_id: Optional[str] = Field(default=None, alias="razorpay_payment_id")
    gateway_order_id: Optional[str] = Field(default=None, alias="razorpay_order_id")
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    paid_count: Optional[int] = None
    received_at: Optional[datetime] = None


# =============================================================================
# Patch objects
# =============================================================================
# Fields never assigned are "no change"; a field explicitly set to None
# clears the column. Repositories dump with exclude_unset=True.

class UserPatch(BaseModel):
    """Partial update of a user record."""
    subscription_status: Optional[UserSubscriptionStatus] = None
    subscription_plan: Optional[str] = None
    payment_method: Optional[str] = None
    trial_start_date: Optional[datetime] = None
    trial_end_date: Optional[datetime] = None
    subscription_start_date: Optional[datetime] = None
    subscription_end_date: Optional[datetime] = None
    is_locked: Optional[bool] = None
    locked_reason: Optional[str] = None
    locked_by: Optional[str] = None
    locked_at: Optional[datetime] = None


class UserSubscriptionPatch(BaseModel):
    """Partial update of a user_subscriptions row."""
    model_config = ConfigDict(populate_by_name=True)

    status: Optional[SubscriptionStatus] = None
    current_period_start: Optional[datetime] = Field(default=None, alias="current_start")
    current_period_end: Optional[datetime] = Field(default=None, alias="current_end")
    paid_count: Optional[int] = None
    activated_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PaymentRecordPatch(BaseModel):
    """Partial update of a payment_history row."""
    model_config = ConfigDict(populate_by_name=True)

    status: Optional[PaymentStatus] = None
    gateway_payment_id: Optional[str] = Field(default=None, alias="razorpay_payment_id")
    payment_method: Optional[str] = None
    error_message: Optional[str] = None
    subscription_start_date: Optional[datetime] = None
    subscription_end_date: Optional[datetime] = None


def patch_to_record(patch: BaseModel) -> Dict[str, Any]:
    """Serialize only the assigned fields of a patch, using column names."""
    return patch.model_dump(exclude_unset=True, by_alias=True, mode="json")


# =============================================================================
# Request/Response DTOs
# =============================================================================

class ProvisionSubscriptionRequest(BaseModel):
    """
    Request DTO for provisioning a recurring subscription.

    Fields are optional at the schema level so that missing input surfaces
    as InvalidRequestError (400) with the list of missing fields.
    """
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[str] = Field(default=None, alias="userId")
    plan_name: Optional[str] = Field(default=None, alias="planName")
    user_email: Optional[str] = Field(default=None, alias="userEmail")
    user_name: Optional[str] = Field(default=None, alias="userName")


class SubscriptionSummary(BaseModel):
    """Subscription block of the provisioning response."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    status: str
    payment_url: Optional[str] = Field(default=None, serialization_alias="paymentUrl")
    plan_name: str = Field(serialization_alias="planName")
    amount: float
    currency: str


class ProvisionSubscriptionResponse(BaseModel):
    """Response DTO for subscription provisioning."""
    success: bool = True
    subscription: SubscriptionSummary


class CreateOrderRequest(BaseModel):
    """Request DTO for the legacy one-time order flow."""
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[str] = Field(default=None, alias="userId")
    plan_name: Optional[str] = Field(default=None, alias="planName")


class VerifyPaymentRequest(BaseModel):
    """Manual payment verification; accepts checkout callback field names too."""
    model_config = ConfigDict(populate_by_name=True)

    order_id: Optional[str] = Field(default=None, alias="orderId")
    payment_id: Optional[str] = Field(default=None, alias="paymentId")
    signature: Optional[str] = None
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None

    def resolved(self) -> tuple:
        return (
            self.order_id or self.razorpay_order_id,
            self.payment_id or self.razorpay_payment_id,
            self.signature or self.razorpay_signature,
        )


class LockUserRequest(BaseModel):
    """Administrative lock request."""
    model_config = ConfigDict(populate_by_name=True)

    reason: str = Field(..., min_length=1)
    locked_by: str = Field(..., min_length=1, alias="lockedBy")


class PlanResponse(BaseModel):
    """Public view of a plan."""
    name: str
    display_name: str
    duration_days: int
    price: float
    currency: str


class PlansResponse(BaseModel):
    """Response DTO for the active plan list."""
    plans: List[PlanResponse]


class EntitlementResponse(BaseModel):
    """Response DTO for the caller's entitlement snapshot."""
    user_id: str
    role: UserRole
    subscription_status: Optional[UserSubscriptionStatus] = None
    can_access: bool
    days_remaining: int
    unlimited: bool = False
    is_locked: bool = False
    locked_reason: Optional[str] = None
    trial_end_date: Optional[datetime] = None
    subscription_end_date: Optional[datetime] = None
    subscription_plan: Optional[str] = None
