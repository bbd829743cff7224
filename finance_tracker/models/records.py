"""
Core Data Models for Finance Tracker

These models define the strict schemas for every record the core reads
and writes. They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for storage and logging

DESIGN DECISION: Transactions carry an explicit origin reference
(origin_type + origin_id). A shadow entry is found through that link,
never by comparing amounts and dates.
"""

import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import Annotated, Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


Money = Annotated[Decimal, Field(ge=0, decimal_places=2)]


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class InvestmentCategory(str, Enum):
    """
    Supported investment categories.

    This is a closed set. Anything else is rejected at validation time.
    """
    STOCKS = "Stocks"
    MUTUAL_FUNDS = "Mutual Funds"
    GOLD = "Gold"
    REAL_ESTATE = "Real Estate"
    CRYPTO = "Crypto"
    OTHER = "Other"


class InvestmentKind(str, Enum):
    """How the money goes in."""
    LUMP_SUM = "lump_sum"     # One contribution on `date`
    RECURRING = "recurring"   # Monthly contribution from `start_date` (SIP)


class BillingCycle(str, Enum):
    """Subscription billing cycle."""
    MONTHLY = "monthly"
    YEARLY = "yearly"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"


class TransactionDirection(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class OriginType(str, Enum):
    """
    Where a ledger entry came from.

    MANUAL entries are typed in by the user. Everything else is a shadow
    entry owned by the sync engine.
    """
    MANUAL = "manual"
    INVESTMENT = "investment"
    SUBSCRIPTION = "subscription"


class SyncAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class SyncStatus(str, Enum):
    """
    Outbox intent status.

    FAILED intents are retried. DRIFTED intents found nothing to act on
    and SUPERSEDED intents were overtaken by a newer change to the same
    origin; both are kept only for inspection.
    """
    PENDING = "pending"
    APPLIED = "applied"
    FAILED = "failed"
    DRIFTED = "drifted"
    SUPERSEDED = "superseded"


# =============================================================================
# BASE RECORD
# =============================================================================

class OwnedRecord(BaseModel):
    """Fields shared by every persisted document."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique record ID"
    )
    owner_id: str = Field(
        ...,
        min_length=1,
        description="Owner identity supplied by the authentication layer"
    )
    created_at: dt.datetime = Field(default_factory=dt.datetime.utcnow)
    updated_at: dt.datetime = Field(default_factory=dt.datetime.utcnow)


# =============================================================================
# SOURCE RECORDS
# =============================================================================

class Investment(OwnedRecord):
    """
    A lump-sum or recurring investment.

    Lump sums are valued from `date`; recurring contributions are valued
    from `start_date`, one contribution at the start of every month.
    """

    category: InvestmentCategory
    kind: InvestmentKind
    amount: Money
    date: dt.date = Field(
        default_factory=dt.date.today,
        description="Transaction date (also the shadow ledger date)"
    )
    start_date: dt.date = Field(
        default_factory=dt.date.today,
        description="First month of contributions"
    )
    annual_rate_percent: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        description="Expected annual return in percent; 0 means no projection"
    )
    expected_end_date: Optional[dt.date] = None
    description: Optional[str] = Field(default=None, max_length=500)

    @property
    def projection_start(self) -> dt.date:
        """The date growth is measured from."""
        if self.kind == InvestmentKind.RECURRING:
            return self.start_date
        return self.date

    @model_validator(mode='after')
    def validate_dates(self) -> 'Investment':
        """An end date before the projection start is a caller error."""
        if self.expected_end_date and self.expected_end_date < self.projection_start:
            raise ValueError("Expected end date cannot be before the investment start")
        return self


class Subscription(OwnedRecord):
    """
    A recurring bill the user pays.

    next_payment_date is derived from start_date and billing_cycle and is
    recomputed by the subscription flow whenever either of them changes.
    """

    name: str = Field(..., min_length=1, max_length=200)
    amount: Money
    billing_cycle: BillingCycle
    start_date: dt.date
    next_payment_date: Optional[dt.date] = None
    category: str = Field(default="General", min_length=1, max_length=100)
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE

    @property
    def ledger_description(self) -> str:
        return f"{self.name} ({self.billing_cycle.value} subscription)"


class Transaction(OwnedRecord):
    """
    A ledger entry.

    Manual entries have no origin_id. Shadow entries must have one, and
    there is at most one shadow per (origin_type, origin_id).
    """

    category: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    amount: Money
    direction: TransactionDirection
    date: dt.date = Field(default_factory=dt.date.today)
    origin_type: OriginType = OriginType.MANUAL
    origin_id: Optional[UUID] = None

    @property
    def is_shadow(self) -> bool:
        return self.origin_type != OriginType.MANUAL

    @model_validator(mode='after')
    def validate_origin(self) -> 'Transaction':
        if self.is_shadow and self.origin_id is None:
            raise ValueError("Shadow transactions must reference their origin")
        if not self.is_shadow and self.origin_id is not None:
            raise ValueError("Manual transactions cannot reference an origin")
        return self


class Goal(OwnedRecord):
    """
    A savings goal.

    `reached` is derived: it must equal current_amount >= target_amount.
    GoalProgressTracker recomputes it on every write; the model never
    sets it on its own.
    """

    title: str = Field(..., min_length=1, max_length=200)
    target_amount: Annotated[Decimal, Field(gt=0, decimal_places=2)]
    current_amount: Money = Decimal("0")
    deadline: Optional[dt.date] = None
    reached: bool = False


# =============================================================================
# SYNC OUTBOX
# =============================================================================

class ShadowSnapshot(BaseModel):
    """The source fields a shadow entry mirrors, captured at intent time."""

    amount: Decimal
    date: dt.date
    category: str
    description: str


class SyncIntent(OwnedRecord):
    """
    One pending change to the shadow ledger.

    Written after the source record and applied immediately; if applying
    fails it stays in the outbox and can be retried.
    """

    origin_type: OriginType
    origin_id: UUID
    action: SyncAction
    snapshot: Optional[ShadowSnapshot] = Field(
        default=None,
        description="Source state the shadow should end up mirroring"
    )
    previous: Optional[ShadowSnapshot] = Field(
        default=None,
        description="Source state before the change (legacy matching only)"
    )
    status: SyncStatus = SyncStatus.PENDING
    attempts: int = Field(default=0, ge=0)
    last_error: Optional[str] = None


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'unknown_category')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        default="error",
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
