"""
Portfolio Summary

Dashboard figures for a user's investments as of a given day: how much
went in, and what it is expected to be worth now and at each
investment's expected end date.

Investments with a zero rate count towards the invested totals but not
towards the estimated values; there is nothing to project for them.
"""

from datetime import date
from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from finance_tracker.models.records import Investment, InvestmentKind
from finance_tracker.projections.calculator import (
    has_projection,
    lump_sum_value,
    recurring_value,
)
from finance_tracker.projections.periods import elapsed_months


class InvestmentProjection(BaseModel):
    """Projection for a single investment."""

    investment_id: UUID
    kind: InvestmentKind
    months_elapsed: int = Field(ge=0)
    invested_to_date: Decimal
    has_projection: bool
    current_value: Optional[Decimal] = None
    months_to_end: Optional[int] = None
    end_value: Optional[Decimal] = None


class PortfolioSummary(BaseModel):
    """Aggregate figures across all of a user's investments."""

    as_of: date
    total_lump_sum: Decimal = Decimal("0")
    total_recurring: Decimal = Decimal("0")
    estimated_current_value: Decimal = Decimal("0")
    estimated_end_value: Decimal = Decimal("0")
    projections: list[InvestmentProjection] = Field(default_factory=list)

    @property
    def total_invested(self) -> Decimal:
        return self.total_lump_sum + self.total_recurring


def _value(investment: Investment, months: int) -> Decimal:
    if investment.kind == InvestmentKind.RECURRING:
        return recurring_value(investment.amount, investment.annual_rate_percent, months)
    return lump_sum_value(investment.amount, investment.annual_rate_percent, months)


def project_investment(investment: Investment, as_of: date) -> InvestmentProjection:
    """
    Project one investment.

    Lump sums are measured from `date`, recurring contributions from
    `start_date`. Both count the starting month. An investment dated after
    `as_of` has been running for zero months.
    """
    start = investment.projection_start
    months = elapsed_months(start, as_of)

    if investment.kind == InvestmentKind.RECURRING:
        invested = investment.amount * months
    else:
        invested = investment.amount

    projection = InvestmentProjection(
        investment_id=investment.id,
        kind=investment.kind,
        months_elapsed=months,
        invested_to_date=invested,
        has_projection=has_projection(investment.annual_rate_percent),
    )
    if not projection.has_projection:
        return projection

    projection.current_value = _value(investment, months)
    if investment.expected_end_date is not None:
        projection.months_to_end = elapsed_months(start, investment.expected_end_date)
        projection.end_value = _value(investment, projection.months_to_end)
    return projection


def summarize_portfolio(
    investments: Iterable[Investment],
    as_of: Optional[date] = None,
) -> PortfolioSummary:
    """Aggregate projections for a set of investments."""
    summary = PortfolioSummary(as_of=as_of or date.today())

    for investment in investments:
        projection = project_investment(investment, summary.as_of)
        summary.projections.append(projection)

        if projection.kind == InvestmentKind.RECURRING:
            summary.total_recurring += projection.invested_to_date
        else:
            summary.total_lump_sum += projection.invested_to_date

        if projection.current_value is not None:
            summary.estimated_current_value += projection.current_value
        if projection.end_value is not None:
            summary.estimated_end_value += projection.end_value

    return summary
