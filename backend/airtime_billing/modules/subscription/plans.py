"""Plan and billing-cycle arithmetic.

Pure functions: billed amount to plan, plan to price, and start date plus
plan to end date.

Monthly cycles add one calendar month. When the start day does not exist in
the target month the end date is clamped to that month's last day, so
Jan 31 + 1 month is Feb 28 (Feb 29 in a leap year) and Mar 31 + 1 month is
Apr 30. Time of day and tzinfo are preserved.
"""

import calendar
import math
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from airtime_billing.modules.subscription.models import PLAN_AMOUNTS, PlanType

_AMOUNT_TO_PLAN: dict[int, PlanType] = {
    amount: PlanType(plan) for plan, amount in PLAN_AMOUNTS.items()
}

DEFAULT_PLAN = PlanType.DAILY


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return ``value`` as an aware UTC datetime.

    Naive values are taken to be UTC already (SQLite hands them back naive).
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def plan_from_amount(amount: object) -> PlanType:
    """Map a billed amount in kobo to its plan.

    Exact matches only; anything else (including missing or non-numeric
    amounts) falls back to the daily plan.
    """
    if isinstance(amount, bool):
        return DEFAULT_PLAN
    try:
        key = int(amount)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return DEFAULT_PLAN
    if key != amount and str(key) != str(amount).strip():
        # 150000.5 or "1.5e5" are not exact matches
        return DEFAULT_PLAN
    return _AMOUNT_TO_PLAN.get(key, DEFAULT_PLAN)


def amount_for_plan(plan: Union[PlanType, str]) -> int:
    """Price of a plan in kobo."""
    return PLAN_AMOUNTS[PlanType(plan).value]


def add_months(start: datetime, months: int) -> datetime:
    """Add calendar months, clamping the day to the end of the target month."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def compute_end_date(start: datetime, plan: Union[PlanType, str]) -> datetime:
    """End of the billing cycle that begins at ``start``.

    Args:
        start: Cycle start
        plan: daily (+1 day), weekly (+7 days) or monthly (+1 calendar month)

    Returns:
        datetime: Cycle end, same tzinfo as ``start``
    """
    plan = PlanType(plan)
    if plan is PlanType.DAILY:
        return start + timedelta(days=1)
    if plan is PlanType.WEEKLY:
        return start + timedelta(days=7)
    return add_months(start, 1)


def days_remaining(end: Optional[datetime], now: Optional[datetime] = None) -> int:
    """Whole days left until ``end``, rounded up and never negative."""
    if end is None:
        return 0
    now = ensure_utc(now) or utcnow()
    seconds = (ensure_utc(end) - now).total_seconds()
    return max(0, math.ceil(seconds / 86400))
