"""
Access Evaluator

Pure functions deciding whether a user may use the system. They take the
clock as an argument, perform no I/O and never raise: malformed or missing
entitlement data always resolves to "no access".
"""

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Optional

from app.domain.subscription import (
    User,
    UserPatch,
    UserRole,
    UserSubscriptionStatus,
)


logger = logging.getLogger(__name__)


# Sentinel returned by days_remaining() for admins
UNLIMITED_DAYS = 999_999

SECONDS_PER_DAY = 86_400

# Statuses whose window end still grants access
_WINDOWED_STATUSES = {
    UserSubscriptionStatus.TRIAL,
    UserSubscriptionStatus.ACTIVE,
    UserSubscriptionStatus.CANCELLED,
}


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def access_window_end(user: User) -> Optional[datetime]:
    """
    End of the window that currently entitles the user.

    Trial users are bounded by trial_end_date; active and cancelled users by
    subscription_end_date. Every other status has no window.
    """
    status = user.subscription_status
    if status == UserSubscriptionStatus.TRIAL:
        return user.trial_end_date
    if status in (UserSubscriptionStatus.ACTIVE, UserSubscriptionStatus.CANCELLED):
        return user.subscription_end_date
    return None


def can_access_system(user: Optional[User], now: datetime) -> bool:
    """
    Decide system access.

    Admins are always allowed and locked users always denied. Anyone else
    needs a trial, active or cancelled status whose window end lies in the
    future; a cancelled subscription keeps its paid period.
    """
    try:
        if user is None:
            return False
        if user.role == UserRole.ADMIN:
            return True
        if user.is_locked:
            return False
        if user.subscription_status not in _WINDOWED_STATUSES:
            return False

        end = access_window_end(user)
        if end is None:
            return False
        return _as_utc(now) < _as_utc(end)
    except Exception:
        logger.exception("Access evaluation failed, denying")
        return False


def days_remaining(user: Optional[User], now: datetime) -> int:
    """
    Whole days left in the current window, rounded up.

    Returns UNLIMITED_DAYS for admins and 0 when the window is absent or has
    already ended. Never negative.
    """
    try:
        if user is None:
            return 0
        if user.role == UserRole.ADMIN:
            return UNLIMITED_DAYS

        end = access_window_end(user)
        if end is None:
            return 0

        seconds = (_as_utc(end) - _as_utc(now)).total_seconds()
        return max(0, math.ceil(seconds / SECONDS_PER_DAY))
    except Exception:
        logger.exception("days_remaining evaluation failed, returning 0")
        return 0


def evaluate_expiry(user: User, now: datetime) -> Optional[UserPatch]:
    """
    Compute the lazy expiry transition for a user, if one is due.

    trial, active and cancelled users move to expired once now has reached
    the end of their window. A windowed status with no end date is expired
    as well. Admins never expire.

    Returns:
        UserPatch setting subscription_status=expired, or None if nothing
        needs to change.
    """
    if user.role == UserRole.ADMIN:
        return None
    if user.subscription_status not in _WINDOWED_STATUSES:
        return None

    end = access_window_end(user)
    if end is not None and _as_utc(now) < _as_utc(end):
        return None

    return UserPatch(subscription_status=UserSubscriptionStatus.EXPIRED)


def build_trial_entitlement(
    role: UserRole,
    now: datetime,
    trial_days: int = 15,
) -> UserPatch:
    """
    Initial entitlement fields for a newly created account.

    Non-admins get a trial of trial_days starting now. Admins start active
    with no trial dates.
    """
    if role == UserRole.ADMIN:
        return UserPatch(
            subscription_status=UserSubscriptionStatus.ACTIVE,
            trial_start_date=None,
            trial_end_date=None,
        )

    start = _as_utc(now)
    return UserPatch(
        subscription_status=UserSubscriptionStatus.TRIAL,
        trial_start_date=start,
        trial_end_date=start + timedelta(days=trial_days),
    )
