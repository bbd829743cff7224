"""
Projection Calculator

Time-value-of-money estimates for investments. Everything here is a pure
function of its arguments: no storage, no clock, no mutation.

Rates are annual percentages compounded monthly, r = rate / 100 / 12.
Money is Decimal throughout so projected values compare exactly with the
amounts stored on records.
"""

from decimal import Decimal
from typing import Optional, Union

from finance_tracker.errors import ValidationError
from finance_tracker.models.records import ValidationIssue


Number = Union[Decimal, int, float, str]

_ZERO = Decimal("0")
_ONE = Decimal("1")


def _to_decimal(value: Optional[Number]) -> Decimal:
    if value is None:
        return _ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _check_months(months: int) -> None:
    if months < 0:
        raise ValidationError(
            f"Elapsed months cannot be negative: {months}",
            issues=[ValidationIssue(
                field="months",
                issue_type="invalid_value",
                message="Elapsed months cannot be negative",
            )],
        )


def monthly_rate(annual_rate_percent: Optional[Number]) -> Decimal:
    """Monthly compounding rate for an annual percentage."""
    return _to_decimal(annual_rate_percent) / 100 / 12


def has_projection(annual_rate_percent: Optional[Number]) -> bool:
    """
    Whether a rate yields a meaningful projection.

    A zero or missing rate still produces numbers from the formulas below,
    but display code should show "no projection available" instead.
    """
    return _to_decimal(annual_rate_percent) != _ZERO


def lump_sum_value(
    principal: Number,
    annual_rate_percent: Optional[Number],
    months: int,
) -> Decimal:
    """
    Value of a single contribution after `months` of monthly compounding.

    principal * (1 + r) ** months. A zero rate, or zero months, returns
    the principal unchanged.
    """
    _check_months(months)
    principal = _to_decimal(principal)
    r = monthly_rate(annual_rate_percent)
    if r == _ZERO or months == 0:
        return principal
    return principal * (_ONE + r) ** months


def recurring_value(
    contribution: Number,
    annual_rate_percent: Optional[Number],
    months: int,
) -> Decimal:
    """
    Value of a fixed contribution paid at the start of every month.

    Annuity-due: C * (((1 + r) ** n - 1) / r) * (1 + r).
    A zero rate degenerates to C * n; zero months is 0.
    """
    _check_months(months)
    contribution = _to_decimal(contribution)
    r = monthly_rate(annual_rate_percent)
    if months == 0:
        return _ZERO
    if r == _ZERO:
        return contribution * months
    growth = (_ONE + r) ** months
    return contribution * ((growth - _ONE) / r) * (_ONE + r)
