"""
Period Resolution

Whole-month arithmetic used by the projection calculator and by
subscription billing.

CONVENTION: month spans are INCLUSIVE of the starting month. An
investment made in January and valued in January has been running for
one month, not zero.
"""

from datetime import date, datetime
from typing import Union

from dateutil.relativedelta import relativedelta

from finance_tracker.models.records import BillingCycle


DateLike = Union[date, datetime]


def months_between(start: DateLike, end: DateLike) -> int:
    """
    Inclusive whole-month count from start to end.

    Only year and month matter; the day of month is ignored.
    Returns 0 or a negative number when end falls in an earlier month
    than start. Callers clamp before projecting.

        >>> months_between(date(2024, 1, 1), date(2024, 3, 31))
        3
    """
    return (end.year * 12 + end.month) - (start.year * 12 + start.month) + 1


def elapsed_months(start: DateLike, end: DateLike, minimum: int = 0) -> int:
    """months_between, clamped to `minimum` for projection callers."""
    return max(months_between(start, end), minimum)


def next_billing_date(start: date, cycle: BillingCycle) -> date:
    """
    Start date advanced by one billing cycle.

    Month ends are clamped: a subscription started on 31 January next
    bills on the last day of February.
    """
    if cycle == BillingCycle.MONTHLY:
        return start + relativedelta(months=1)
    return start + relativedelta(years=1)
