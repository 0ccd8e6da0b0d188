"""
Access Service

Persists the Access Evaluator's lazy expiry, starts the trial of a new
account and answers entitlement questions for the API layer. Also the only
writer of the lock fields.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from app.config.settings import Settings
from app.domain.access import (
    build_trial_entitlement,
    can_access_system,
    days_remaining,
    evaluate_expiry,
)
from app.domain.subscription import User, UserPatch
from app.infrastructure.db.repositories import UserRepository
from app.infrastructure.exceptions import (
    AccountLockedError,
    InvalidRequestError,
    RecordNotFoundError,
    SubscriptionRequiredError,
)


logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Entitlement:
    """Entitlement snapshot after reconciliation."""
    user: User
    can_access: bool
    days_remaining: int


class AccessService:
    """Entitlement reconciliation and administrative locks."""

    def __init__(
        self,
        settings: Settings,
        users: UserRepository,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._settings = settings
        self._users = users
        self._clock = clock

    async def _load(self, user_id: str) -> User:
        user = await self._users.get(user_id)
        if user is None:
            raise RecordNotFoundError("User not found", table=UserRepository.TABLE, key=user_id)
        return user

    async def reconcile_expiry(self, user_id: str) -> User:
        """
        Load a user and persist any expiry that is due.

        Trials and paid periods run out without a gateway event; this is
        where they are noticed.
        """
        user = await self._load(user_id)
        patch = evaluate_expiry(user, self._clock())
        if patch is None:
            return user

        updated = await self._users.update(user_id, patch)
        logger.info(
            f"User {user_id} expired ({user.subscription_status.value if user.subscription_status else 'none'} -> expired)"
        )
        return updated or user.model_copy(update={"subscription_status": patch.subscription_status})

    async def get_entitlement(self, user_id: str) -> Entitlement:
        """Reconcile, then evaluate access and days remaining."""
        user = await self.reconcile_expiry(user_id)
        now = self._clock()
        return Entitlement(
            user=user,
            can_access=can_access_system(user, now),
            days_remaining=days_remaining(user, now),
        )

    async def start_trial(self, user_id: str) -> Entitlement:
        """
        Give a new account its initial entitlement.

        Trial dates are written once. An account that already has a status,
        a trial window or a paid period is returned as it stands.
        """
        user = await self._load(user_id)
        fresh = (
            user.subscription_status is None
            and user.trial_start_date is None
            and user.subscription_start_date is None
        )
        if fresh:
            patch = build_trial_entitlement(user.role, self._clock(), self._settings.trial_days)
            await self._users.update(user_id, patch)
            logger.info(f"User {user_id} initialised as {patch.subscription_status.value}")
        return await self.get_entitlement(user_id)

    async def require_access(self, user_id: str) -> Entitlement:
        """
        Entitlement of a user who must be allowed in.

        Raises:
            AccountLockedError: The account is locked (403)
            SubscriptionRequiredError: No live trial or subscription (402)
        """
        entitlement = await self.get_entitlement(user_id)
        if entitlement.can_access:
            return entitlement

        if entitlement.user.is_locked:
            raise AccountLockedError(locked_reason=entitlement.user.locked_reason)
        raise SubscriptionRequiredError()

    # =========================================================================
    # Administrative lock
    # =========================================================================

    async def lock_user(self, user_id: str, reason: str, locked_by: str) -> User:
        """Lock an account. Billing events never undo this."""
        if not reason or not locked_by:
            raise InvalidRequestError(
                "Lock requires a reason and the locking administrator",
                missing_fields=[name for name, value in (("reason", reason), ("lockedBy", locked_by)) if not value],
            )

        await self._load(user_id)
        updated = await self._users.update(
            user_id,
            UserPatch(
                is_locked=True,
                locked_reason=reason,
                locked_by=locked_by,
                locked_at=self._clock(),
            ),
        )
        logger.info(f"User {user_id} locked by {locked_by}")
        return updated

    async def unlock_user(self, user_id: str) -> User:
        """Unlock an account and clear the lock metadata."""
        await self._load(user_id)
        updated = await self._users.update(
            user_id,
            UserPatch(
                is_locked=False,
                locked_reason=None,
                locked_by=None,
                locked_at=None,
            ),
        )
        logger.info(f"User {user_id} unlocked")
        return updated
