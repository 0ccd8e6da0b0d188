"""
Repository Layer for Policy Manager Billing

Exports all repository classes for dependency injection.
"""

from app.infrastructure.db.repositories.plan_repository import PlanRepository
from app.infrastructure.db.repositories.user_repository import UserRepository
from app.infrastructure.db.repositories.subscription_repository import (
    SubscriptionRepository,
    EventLedgerRepository,
)
from app.infrastructure.db.repositories.payment_repository import PaymentRepository


__all__ = [
    "PlanRepository",
    "UserRepository",
    "SubscriptionRepository",
    "EventLedgerRepository",
    "PaymentRepository",
]
