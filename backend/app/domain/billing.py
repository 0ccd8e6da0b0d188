"""
Billing arithmetic shared by the provisioner and the one-time order flow.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Union


RECEIPT_MAX_LENGTH = 40


def billing_cycle_count(duration_days: int, cycle_days: int = 30) -> int:
    """
    Number of gateway billing cycles covering a plan duration.

    The gateway bills monthly, so the count is ceil(duration / cycle_days),
    never rounded down and never below one.

    Examples:
        >>> billing_cycle_count(45)
        2
        >>> billing_cycle_count(91)
        4
    """
    if cycle_days <= 0:
        raise ValueError("cycle_days must be positive")
    if duration_days <= 0:
        return 1
    return max(1, -(-duration_days // cycle_days))


def amount_in_minor_units(price: Union[Decimal, int, float, str]) -> int:
    """Convert a major-unit price (rupees) to minor units (paise), rounding half up."""
    value = Decimal(str(price)) * 100
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def build_receipt(prefix: str, user_id: str, epoch_millis: int) -> str:
    """
    Receipt string for a one-time order.

    Format is prefix_<first 8 chars of user id>_<last 10 digits of epoch
    millis>, truncated to the gateway's 40 character limit.
    """
    stamp = str(epoch_millis)[-10:]
    return f"{prefix}_{user_id[:8]}_{stamp}"[:RECEIPT_MAX_LENGTH]
