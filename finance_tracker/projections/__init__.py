"""Investment projection package."""

from finance_tracker.projections.calculator import (
    has_projection,
    lump_sum_value,
    monthly_rate,
    recurring_value,
)
from finance_tracker.projections.periods import (
    elapsed_months,
    months_between,
    next_billing_date,
)
from finance_tracker.projections.portfolio import (
    InvestmentProjection,
    PortfolioSummary,
    project_investment,
    summarize_portfolio,
)

__all__ = [
    "InvestmentProjection",
    "PortfolioSummary",
    "elapsed_months",
    "has_projection",
    "lump_sum_value",
    "monthly_rate",
    "months_between",
    "next_billing_date",
    "project_investment",
    "recurring_value",
    "summarize_portfolio",
]
