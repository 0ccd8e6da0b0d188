"""
Custom Exceptions for Policy Manager Billing

Hierarchical exception classes for proper error handling across layers.
Each API-facing class maps to one HTTP status in app.main.
"""

from typing import Optional, Dict, Any


class PolicyManagerError(Exception):
    """Base exception for all billing engine errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        body: Dict[str, Any] = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class InvalidRequestError(PolicyManagerError):
    """Raised when caller input is missing or malformed."""

    def __init__(
        self,
        message: str,
        missing_fields: Optional[list] = None,
        original_error: Optional[Exception] = None,
        errors: Optional[list] = None
    ):
        details = {}
        if missing_fields:
            details["missing_fields"] = missing_fields
        if errors:
            details["errors"] = errors
        super().__init__(message, details, original_error)


class DatabaseError(PolicyManagerError):
    """Raised when record store operations fail."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if table:
            details["table"] = table
        super().__init__(message, details, original_error)


class NotFoundError(DatabaseError):
    """Raised when a requested resource is not found."""
    pass


class DuplicateError(DatabaseError):
    """Raised when an insert violates a unique constraint."""
    pass


class RecordNotFoundError(NotFoundError):
    """Raised when a verified gateway event has no matching local record."""

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        key: Optional[str] = None,
    ):
        super().__init__(message, operation="lookup", table=table)
        if key:
            self.details["key"] = key


class PlanNotFoundError(NotFoundError):
    """Raised when no active plan matches the requested name."""

    def __init__(self, plan_name: str):
        super().__init__(
            "Subscription plan not found",
            operation="get_active_plan",
            table="subscription_plans",
        )
        self.details["plan_name"] = plan_name


class PlanMisconfiguredError(PolicyManagerError):
    """Raised when an active plan has no gateway plan id and cannot be billed."""

    def __init__(self, plan_name: str):
        super().__init__(
            "Plan does not have Razorpay configuration",
            details={"plan_name": plan_name},
        )


class GatewayError(PolicyManagerError):
    """Raised when the payment gateway rejects or fails a call."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        status_code: Optional[int] = None,
        gateway_message: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if status_code:
            details["status_code"] = status_code
        if gateway_message:
            details["gateway_message"] = gateway_message
        super().__init__(message, details, original_error)


class ProvisionFailedError(GatewayError):
    """Raised when a subscription could not be provisioned at the gateway."""
    pass


class InvalidSignatureError(PolicyManagerError):
    """Raised when a webhook or payment signature does not verify."""

    def __init__(self, message: str = "Invalid signature"):
        super().__init__(message)


class AccessDeniedError(PolicyManagerError):
    """Raised when a user is not entitled to use the system."""

    def __init__(self, message: str, reason: str, redirect: str):
        super().__init__(message, details={"reason": reason, "redirect": redirect})


class SubscriptionRequiredError(AccessDeniedError):
    """Trial or subscription is missing or has run out."""

    def __init__(self, redirect: str = "/subscription"):
        super().__init__("Active subscription required", "subscription_required", redirect)


class AccountLockedError(AccessDeniedError):
    """An administrator locked the account."""

    def __init__(self, redirect: str = "/account-locked", locked_reason: Optional[str] = None):
        super().__init__("Account is locked", "locked", redirect)
        if locked_reason:
            self.details["locked_reason"] = locked_reason


class PersistenceWarning(PolicyManagerError):
    """
    A local write failed after the gateway call succeeded.

    Never raised to callers; built so the failure is logged with context.
    """

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        key: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if table:
            details["table"] = table
        if key:
            details["key"] = key
        super().__init__(message, details, original_error)


class ConfigurationError(PolicyManagerError):
    """Raised when configuration is missing or invalid."""

    def __init__(
        self,
        message: str,
        missing_keys: Optional[list] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if missing_keys:
            details["missing_keys"] = missing_keys
        super().__init__(message, details, original_error)
