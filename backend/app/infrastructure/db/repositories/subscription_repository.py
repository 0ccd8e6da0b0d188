"""
Subscription Repository

Data access layer for user_subscriptions and the subscription_events ledger.
Follows Repository pattern for Clean Architecture.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from app.domain.subscription import (
    EventLedgerEntry,
    UserSubscription,
    UserSubscriptionPatch,
    patch_to_record,
)
from app.infrastructure.db.record_store import RecordStore
from app.infrastructure.exceptions import DuplicateError


logger = logging.getLogger(__name__)


class SubscriptionRepository:
    """
    Repository for gateway subscription records.

    Rows are never deleted; every change goes through UserSubscriptionPatch.
    """

    TABLE = "user_subscriptions"

    def __init__(self, store: RecordStore):
        self._store = store

    # =========================================================================
    # Query Methods
    # =========================================================================

    async def get_by_gateway_id(
        self,
        gateway_subscription_id: str,
    ) -> Optional[UserSubscription]:
        """
        Get subscription by gateway subscription ID.

        Args:
            gateway_subscription_id: Razorpay subscription ID (sub_...)

        Returns:
            UserSubscription or None
        """
        rows = await self._store.query(
            self.TABLE,
            {"razorpay_subscription_id": gateway_subscription_id},
            limit=1,
        )
        return self._to_domain(rows[0]) if rows else None

    async def get_latest_for_user(self, user_id: str) -> Optional[UserSubscription]:
        """Most recently created subscription for a user."""
        rows = await self._store.query(
            self.TABLE,
            {"user_id": user_id},
            order_by="created_at",
            descending=True,
            limit=1,
        )
        return self._to_domain(rows[0]) if rows else None

    # =========================================================================
    # Command Methods
    # =========================================================================

    async def create(self, subscription: UserSubscription) -> UserSubscription:
        """
        Insert a new subscription row.

        Args:
            subscription: Subscription without id

        Returns:
            Stored subscription with ID
        """
        record = subscription.model_dump(
            by_alias=True, mode="json", exclude_none=True, exclude={"id"}
        )
        stored = await self._store.insert(self.TABLE, record)

        logger.info(
            f"Created subscription {subscription.gateway_subscription_id} "
            f"for user {subscription.user_id}"
        )
        return self._to_domain(stored)

    async def update(
        self,
        subscription_id: str,
        patch: UserSubscriptionPatch,
    ) -> Optional[UserSubscription]:
        """
        Apply a patch to a subscription row.

        updated_at is stamped unless the patch sets it.
        """
        changes = patch_to_record(patch)
        changes.setdefault("updated_at", datetime.now(timezone.utc).isoformat())

        stored = await self._store.update(self.TABLE, subscription_id, changes)
        return self._to_domain(stored) if stored else None

    # =========================================================================
    # Mapping Methods
    # =========================================================================

    def _to_domain(self, record: dict) -> UserSubscription:
        """Convert a stored row to a domain entity."""
        return UserSubscription.model_validate(record)


class EventLedgerRepository:
    """
    Append-only history of applied gateway events.

    dedupe_key is unique, so a redelivered event is detected before it is
    applied a second time.
    """

    TABLE = "subscription_events"

    def __init__(self, store: RecordStore):
        self._store = store

    async def exists(self, dedupe_key: str) -> bool:
        rows = await self._store.query(self.TABLE, {"dedupe_key": dedupe_key}, limit=1)
        return bool(rows)

    async def append(self, entry: EventLedgerEntry) -> bool:
        """
        Append an entry.

        Returns:
            False if an entry with the same dedupe_key already exists
        """
        if entry.received_at is None:
            entry = entry.model_copy(update={"received_at": datetime.now(timezone.utc)})

        record = entry.model_dump(
            by_alias=True, mode="json", exclude_none=True, exclude={"id"}
        )
        try:
            await self._store.insert(self.TABLE, record)
        except DuplicateError:
            logger.info(f"Ledger already holds event {entry.dedupe_key}")
            return False
        return True
