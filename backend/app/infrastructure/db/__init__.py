"""
Database Infrastructure Package for Policy Manager Billing

Exports the record store and repositories.
"""

from app.infrastructure.db.record_store import (
    RecordStore,
    SupabaseRecordStore,
)

from app.infrastructure.db.repositories import (
    PlanRepository,
    UserRepository,
    SubscriptionRepository,
    EventLedgerRepository,
    PaymentRepository,
)


__all__ = [
    # Record store
    "RecordStore",
    "SupabaseRecordStore",
    # Repositories
    "PlanRepository",
    "UserRepository",
    "SubscriptionRepository",
    "EventLedgerRepository",
    "PaymentRepository",
]
