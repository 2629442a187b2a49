"""
Proration math for plan changes
"""
import math
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP

from models.membership import MembershipPlan

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")


def days_remaining(end_date: datetime, now: datetime) -> int:
    """
    Whole days left until end_date, rounded up and never negative.
    An expired membership has 0 days remaining.
    """
    seconds = (end_date - now).total_seconds()
    return max(0, math.ceil(seconds / timedelta(days=1).total_seconds()))


def daily_rate(plan: MembershipPlan) -> Decimal:
    return Decimal(plan.price) / plan.validity_days


def is_upgrade(current_plan: MembershipPlan, new_plan: MembershipPlan) -> bool:
    """A change is an upgrade when the new plan's total price is higher, whatever the daily rates."""
    return Decimal(new_plan.price) > Decimal(current_plan.price)


def prorated_amount(current_plan: MembershipPlan, new_plan: MembershipPlan, remaining_days: int) -> Decimal:
    """
    Charge for switching plans with remaining_days left on the current one.

    Upgrades pay the daily-rate difference over the remaining days. The result
    can be negative when the pricier plan is cheaper per day; callers only
    charge positive amounts. Downgrades and equal prices are free, no credit.

    Returns:
        Amount in major units, rounded half up to cents
    """
    if not is_upgrade(current_plan, new_plan):
        return ZERO
    amount = (daily_rate(new_plan) - daily_rate(current_plan)) * remaining_days
    amount = amount.quantize(CENTS, rounding=ROUND_HALF_UP)
    # No signed zero
    return amount if amount != 0 else ZERO
