"""
Main Orchestrator for Finance Tracker

This module ties together all the components and defines the
end-to-end flows for:
1. Investments (validate → save → mirror into ledger)
2. Subscriptions (validate → derive next payment → save → mirror into ledger)
3. Manual ledger entries
4. Savings goals

DESIGN DECISION: The orchestrator enforces the boundaries:
- Nothing is written before validation passes
- The source record write is authoritative; shadow sync happens after it
  and can never undo or fail it
- Shadow entries are owned by the sync engine and cannot be edited or
  deleted through the ledger flow
- Every step is audited

CONCURRENCY: flows are request-scoped coroutines with no locking. Two
concurrent edits of the same record both succeed and the last write wins,
for the source record and for its shadow.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Generic, Optional
from uuid import UUID

import structlog

from finance_tracker.audit import AuditLogger, create_correlation_id
from finance_tracker.config import get_settings
from finance_tracker.errors import ValidationError
from finance_tracker.goals import GoalProgressTracker
from finance_tracker.models.records import (
    Goal,
    Investment,
    OriginType,
    Subscription,
    SyncIntent,
    Transaction,
    ValidationIssue,
)
from finance_tracker.projections import (
    InvestmentProjection,
    PortfolioSummary,
    next_billing_date,
    project_investment,
    summarize_portfolio,
)
from finance_tracker.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsRecordStorage,
    InMemoryRecordStorage,
    NotFoundError,
    RecordStorageInterface,
)
from finance_tracker.services.storage.interface import RecordT
from finance_tracker.sync import ShadowLedgerSync
from finance_tracker.validation import RecordValidator


logger = structlog.get_logger(__name__)


class _RecordFlow(Generic[RecordT]):
    """Load, validate, update and delete plumbing shared by the record flows."""

    entity_type: str = "record"
    read_only: frozenset[str] = frozenset()

    def __init__(
        self,
        storage: RecordStorageInterface[RecordT],
        validator: Optional[RecordValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._validator = validator or RecordValidator()
        self._audit_logger = audit_logger

    async def _audit_rejection(
        self,
        owner_id: str,
        error: ValidationError,
        correlation_id: Optional[UUID],
    ) -> None:
        if self._audit_logger:
            await self._audit_logger.log_validation_failed(
                entity_type=self.entity_type,
                owner_id=owner_id,
                issues=[
                    {"field": i.field, "type": i.issue_type, "message": i.message}
                    for i in error.issues
                ],
                correlation_id=correlation_id,
            )

    async def _build(
        self,
        model_cls: type[RecordT],
        owner_id: str,
        data: dict[str, Any],
        correlation_id: Optional[UUID],
    ) -> RecordT:
        try:
            return self._validator.build(model_cls, {**data, "owner_id": owner_id})
        except ValidationError as e:
            await self._audit_rejection(owner_id, e, correlation_id)
            raise

    async def _rebuild(
        self,
        record: RecordT,
        changes: dict[str, Any],
        correlation_id: Optional[UUID],
    ) -> RecordT:
        try:
            return self._validator.rebuild(record, changes, read_only=self.read_only)
        except ValidationError as e:
            await self._audit_rejection(record.owner_id, e, correlation_id)
            raise

    async def _get(self, owner_id: str, record_id: UUID) -> RecordT:
        record = await self._storage.find_one(id=record_id, owner_id=owner_id)
        if record is None:
            raise NotFoundError(f"{self.entity_type.capitalize()} not found: {record_id}")
        return record

    async def _insert(self, record: RecordT, correlation_id: UUID) -> RecordT:
        await self._storage.insert(record)
        if self._audit_logger:
            await self._audit_logger.log_record_created(
                entity_type=self.entity_type,
                entity_id=record.id,
                owner_id=record.owner_id,
                correlation_id=correlation_id,
            )
        return record

    async def _write_update(
        self,
        previous: RecordT,
        written: dict[str, Any],
        correlation_id: UUID,
    ) -> RecordT:
        updated = await self._storage.find_one_and_update(
            {"id": previous.id, "owner_id": previous.owner_id},
            written,
        )
        if updated is None:
            # Deleted between the read and the write
            raise NotFoundError(f"{self.entity_type.capitalize()} not found: {previous.id}")

        if self._audit_logger:
            changed = [
                field for field in written
                if getattr(previous, field) != getattr(updated, field)
            ]
            await self._audit_logger.log_record_updated(
                entity_type=self.entity_type,
                entity_id=updated.id,
                owner_id=updated.owner_id,
                changed_fields=sorted(changed),
                correlation_id=correlation_id,
            )
        return updated

    async def _delete(self, owner_id: str, record_id: UUID, correlation_id: UUID) -> RecordT:
        deleted = await self._storage.find_one_and_delete(id=record_id, owner_id=owner_id)
        if deleted is None:
            raise NotFoundError(f"{self.entity_type.capitalize()} not found: {record_id}")
        if self._audit_logger:
            await self._audit_logger.log_record_deleted(
                entity_type=self.entity_type,
                entity_id=record_id,
                owner_id=owner_id,
                correlation_id=correlation_id,
            )
        return deleted


class InvestmentFlow(_RecordFlow[Investment]):
    """
    Orchestrates investment records.

    Flow:
    1. Validate → Two-stage validation, reject before any write
    2. Save → Persist the investment (authoritative)
    3. Mirror → ShadowLedgerSync books it as an expense in the ledger

    Step 3 never fails the request. Problems end up in the audit log and
    the sync outbox.
    """

    entity_type = "investment"

    def __init__(
        self,
        investments: RecordStorageInterface[Investment],
        sync: Optional[ShadowLedgerSync] = None,
        validator: Optional[RecordValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        super().__init__(investments, validator, audit_logger)
        self._sync = sync

    async def create_investment(
        self,
        owner_id: str,
        data: dict[str, Any],
        correlation_id: Optional[UUID] = None,
    ) -> Investment:
        """
        Create an investment and its shadow ledger entry.

        Raises:
            ValidationError: Unknown category, non-positive amount, end date
                before the start, and other invalid input
        """
        correlation_id = correlation_id or create_correlation_id()

        investment = await self._build(Investment, owner_id, data, correlation_id)
        await self._insert(investment, correlation_id)

        if self._sync:
            await self._sync.on_created(investment, correlation_id=correlation_id)
        return investment

    async def update_investment(
        self,
        owner_id: str,
        investment_id: UUID,
        changes: dict[str, Any],
        correlation_id: Optional[UUID] = None,
    ) -> Investment:
        """
        Apply a partial update and carry it over to the shadow entry.

        Raises:
            ValidationError: Invalid or read-only fields
            NotFoundError: If the investment does not exist or belongs to someone else
        """
        correlation_id = correlation_id or create_correlation_id()

        previous = await self._get(owner_id, investment_id)
        candidate = await self._rebuild(previous, changes, correlation_id)
        written = {field: getattr(candidate, field) for field in changes}
        updated = await self._write_update(previous, written, correlation_id)

        if self._sync:
            await self._sync.on_updated(previous, updated, correlation_id=correlation_id)
        return updated

    async def delete_investment(
        self,
        owner_id: str,
        investment_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> Investment:
        """
        Delete an investment and its shadow entry.

        Raises:
            NotFoundError: If the investment does not exist or belongs to someone else
        """
        correlation_id = correlation_id or create_correlation_id()

        deleted = await self._delete(owner_id, investment_id, correlation_id)
        if self._sync:
            await self._sync.on_deleted(deleted, correlation_id=correlation_id)
        return deleted

    async def get_investment(self, owner_id: str, investment_id: UUID) -> Investment:
        return await self._get(owner_id, investment_id)

    async def list_investments(self, owner_id: str) -> list[Investment]:
        """Investments for an owner, most recent transaction date first."""
        investments = await self._storage.find(owner_id=owner_id)
        return sorted(investments, key=lambda i: (i.date, i.created_at), reverse=True)

    async def project(
        self,
        owner_id: str,
        investment_id: UUID,
        as_of: Optional[date] = None,
    ) -> InvestmentProjection:
        """Current and end-of-term value of one investment."""
        investment = await self._get(owner_id, investment_id)
        return project_investment(investment, as_of or date.today())

    async def summary(
        self,
        owner_id: str,
        as_of: Optional[date] = None,
    ) -> PortfolioSummary:
        """Dashboard totals across every investment an owner holds."""
        return summarize_portfolio(await self.list_investments(owner_id), as_of)


class SubscriptionFlow(_RecordFlow[Subscription]):
    """
    Orchestrates subscription records.

    next_payment_date is derived from start_date and billing_cycle and
    cannot be set directly.
    """

    entity_type = "subscription"
    read_only = frozenset({"next_payment_date"})

    def __init__(
        self,
        subscriptions: RecordStorageInterface[Subscription],
        sync: Optional[ShadowLedgerSync] = None,
        validator: Optional[RecordValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
        default_category: Optional[str] = None,
    ):
        super().__init__(subscriptions, validator, audit_logger)
        self._sync = sync
        self._default_category = default_category or get_settings().sync.subscription_default_category

    async def create_subscription(
        self,
        owner_id: str,
        data: dict[str, Any],
        correlation_id: Optional[UUID] = None,
    ) -> Subscription:
        """
        Create a subscription and its shadow ledger entry.

        Raises:
            ValidationError: Missing name, non-positive amount, unknown billing cycle
        """
        correlation_id = correlation_id or create_correlation_id()

        if "next_payment_date" in data:
            error = ValidationError(
                "next_payment_date is derived from the start date and billing cycle",
                issues=[ValidationIssue(
                    field="next_payment_date",
                    issue_type="read_only",
                    message="'next_payment_date' cannot be set",
                )],
            )
            await self._audit_rejection(owner_id, error, correlation_id)
            raise error

        data = {**data}
        if not data.get("category"):
            data["category"] = self._default_category
        subscription = await self._build(Subscription, owner_id, data, correlation_id)
        subscription = subscription.model_copy(update={
            "next_payment_date": next_billing_date(
                subscription.start_date, subscription.billing_cycle
            ),
        })
        await self._insert(subscription, correlation_id)

        if self._sync:
            await self._sync.on_created(subscription, correlation_id=correlation_id)
        return subscription

    async def update_subscription(
        self,
        owner_id: str,
        subscription_id: UUID,
        changes: dict[str, Any],
        correlation_id: Optional[UUID] = None,
    ) -> Subscription:
        """
        Apply a partial update and carry it over to the shadow entry.

        Raises:
            ValidationError: Invalid or read-only fields
            NotFoundError: If the subscription does not exist or belongs to someone else
        """
        correlation_id = correlation_id or create_correlation_id()

        previous = await self._get(owner_id, subscription_id)
        candidate = await self._rebuild(previous, changes, correlation_id)
        written = {field: getattr(candidate, field) for field in changes}
        if "start_date" in changes or "billing_cycle" in changes:
            written["next_payment_date"] = next_billing_date(
                candidate.start_date, candidate.billing_cycle
            )
        updated = await self._write_update(previous, written, correlation_id)

        if self._sync:
            await self._sync.on_updated(previous, updated, correlation_id=correlation_id)
        return updated

    async def delete_subscription(
        self,
        owner_id: str,
        subscription_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> Subscription:
        """
        Delete a subscription and its shadow entry.

        Raises:
            NotFoundError: If the subscription does not exist or belongs to someone else
        """
        correlation_id = correlation_id or create_correlation_id()

        deleted = await self._delete(owner_id, subscription_id, correlation_id)
        if self._sync:
            await self._sync.on_deleted(deleted, correlation_id=correlation_id)
        return deleted

    async def get_subscription(self, owner_id: str, subscription_id: UUID) -> Subscription:
        return await self._get(owner_id, subscription_id)

    async def list_subscriptions(self, owner_id: str) -> list[Subscription]:
        """Subscriptions for an owner, next payment due first."""
        subscriptions = await self._storage.find(owner_id=owner_id)
        return sorted(
            subscriptions,
            key=lambda s: (s.next_payment_date is None, s.next_payment_date or date.max),
        )


class TransactionFlow(_RecordFlow[Transaction]):
    """
    Orchestrates manual ledger entries.

    The ledger also holds shadow entries written by ShadowLedgerSync. Those
    are listed here but can only change through their source record.
    """

    entity_type = "transaction"
    read_only = frozenset({"origin_type", "origin_id"})

    def __init__(
        self,
        transactions: RecordStorageInterface[Transaction],
        validator: Optional[RecordValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        super().__init__(transactions, validator, audit_logger)

    async def _reject_shadow(
        self,
        transaction: Transaction,
        correlation_id: UUID,
    ) -> None:
        if not transaction.is_shadow:
            return
        error = ValidationError(
            f"Transaction {transaction.id} mirrors {transaction.origin_type.value} "
            f"{transaction.origin_id}; change the {transaction.origin_type.value} instead",
            issues=[ValidationIssue(
                field="origin_type",
                issue_type="shadow_entry",
                message=f"Managed by its {transaction.origin_type.value}",
            )],
        )
        await self._audit_rejection(transaction.owner_id, error, correlation_id)
        raise error

    async def create_transaction(
        self,
        owner_id: str,
        data: dict[str, Any],
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Record a manual income or expense.

        Raises:
            ValidationError: Invalid input, or an attempt to set an origin
        """
        correlation_id = correlation_id or create_correlation_id()

        linked = sorted(self.read_only & data.keys())
        if linked:
            error = ValidationError(
                "Manual transactions cannot set an origin",
                issues=[
                    ValidationIssue(
                        field=field,
                        issue_type="read_only",
                        message=f"'{field}' cannot be set",
                    )
                    for field in linked
                ],
            )
            await self._audit_rejection(owner_id, error, correlation_id)
            raise error

        transaction = await self._build(Transaction, owner_id, data, correlation_id)
        return await self._insert(transaction, correlation_id)

    async def update_transaction(
        self,
        owner_id: str,
        transaction_id: UUID,
        changes: dict[str, Any],
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Raises:
            ValidationError: Invalid fields, or the entry is a shadow
            NotFoundError: If the transaction does not exist or belongs to someone else
        """
        correlation_id = correlation_id or create_correlation_id()

        previous = await self._get(owner_id, transaction_id)
        await self._reject_shadow(previous, correlation_id)
        candidate = await self._rebuild(previous, changes, correlation_id)
        written = {field: getattr(candidate, field) for field in changes}
        return await self._write_update(previous, written, correlation_id)

    async def delete_transaction(
        self,
        owner_id: str,
        transaction_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Raises:
            ValidationError: If the entry is a shadow
            NotFoundError: If the transaction does not exist or belongs to someone else
        """
        correlation_id = correlation_id or create_correlation_id()

        transaction = await self._get(owner_id, transaction_id)
        await self._reject_shadow(transaction, correlation_id)
        return await self._delete(owner_id, transaction_id, correlation_id)

    async def get_transaction(self, owner_id: str, transaction_id: UUID) -> Transaction:
        return await self._get(owner_id, transaction_id)

    async def list_transactions(
        self,
        owner_id: str,
        origin_type: Optional[OriginType] = None,
    ) -> list[Transaction]:
        """Ledger entries for an owner, newest first."""
        filters: dict[str, Any] = {"owner_id": owner_id}
        if origin_type is not None:
            filters["origin_type"] = origin_type
        transactions = await self._storage.find(**filters)
        return sorted(transactions, key=lambda t: (t.date, t.created_at), reverse=True)


class GoalFlow:
    """Orchestrates savings goals. All rules live in GoalProgressTracker."""

    def __init__(
        self,
        goals: RecordStorageInterface[Goal],
        validator: Optional[RecordValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._tracker = GoalProgressTracker(goals, validator, audit_logger)

    async def create_goal(
        self,
        owner_id: str,
        data: dict[str, Any],
        correlation_id: Optional[UUID] = None,
    ) -> Goal:
        return await self._tracker.create_goal(
            owner_id=owner_id,
            title=data.get("title"),
            target_amount=data.get("target_amount"),
            deadline=data.get("deadline"),
            current_amount=data.get("current_amount", Decimal("0")),
            correlation_id=correlation_id or create_correlation_id(),
        )

    async def add_funds(
        self,
        owner_id: str,
        goal_id: UUID,
        delta: Any,
        correlation_id: Optional[UUID] = None,
    ) -> Goal:
        return await self._tracker.add_funds(
            owner_id,
            goal_id,
            delta,
            correlation_id=correlation_id or create_correlation_id(),
        )

    async def update_goal(
        self,
        owner_id: str,
        goal_id: UUID,
        changes: dict[str, Any],
        correlation_id: Optional[UUID] = None,
    ) -> Goal:
        return await self._tracker.update_goal(
            owner_id,
            goal_id,
            changes,
            correlation_id=correlation_id or create_correlation_id(),
        )

    async def delete_goal(
        self,
        owner_id: str,
        goal_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> Goal:
        return await self._tracker.delete_goal(
            owner_id,
            goal_id,
            correlation_id=correlation_id or create_correlation_id(),
        )

    async def get_goal(self, owner_id: str, goal_id: UUID) -> Goal:
        return await self._tracker.get_goal(owner_id, goal_id)

    async def list_goals(self, owner_id: str) -> list[Goal]:
        return await self._tracker.list_goals(owner_id)


@dataclass
class AppComponents:
    """Everything a caller needs, wired to one storage backend."""
    investments: InvestmentFlow
    subscriptions: SubscriptionFlow
    transactions: TransactionFlow
    goals: GoalFlow
    sync: ShadowLedgerSync
    audit_logger: AuditLogger
    sheets_client: Optional[GoogleSheetsClient] = None


def create_app_components(use_storage: bool = True) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to initialize Google Sheets storage.
                    Set to False (or leave Sheets unconfigured) to run
                    against in-memory storage.
    """
    sheets_client = None
    storages: Optional[dict[str, RecordStorageInterface]] = None
    audit_logger = None

    if use_storage:
        try:
            sheets_settings = get_settings().google_sheets
            sheets_client = GoogleSheetsClient()
            storages = {
                "investments": GoogleSheetsRecordStorage(
                    Investment, sheets_settings.investments_sheet_name, sheets_client
                ),
                "subscriptions": GoogleSheetsRecordStorage(
                    Subscription, sheets_settings.subscriptions_sheet_name, sheets_client
                ),
                "transactions": GoogleSheetsRecordStorage(
                    Transaction, sheets_settings.transactions_sheet_name, sheets_client
                ),
                "goals": GoogleSheetsRecordStorage(
                    Goal, sheets_settings.goals_sheet_name, sheets_client
                ),
                "outbox": GoogleSheetsRecordStorage(
                    SyncIntent, sheets_settings.sync_intents_sheet_name, sheets_client
                ),
            }
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
        except Exception as e:
            # Storage not configured - continue in memory
            logger.warning("storage_not_configured", error=str(e))
            sheets_client = None
            storages = None

    if storages is None:
        storages = {
            name: InMemoryRecordStorage()
            for name in ("investments", "subscriptions", "transactions", "goals", "outbox")
        }
        audit_logger = AuditLogger()  # Local-only logging

    validator = RecordValidator()
    sync = ShadowLedgerSync(
        transactions=storages["transactions"],
        outbox=storages["outbox"],
        audit_logger=audit_logger,
    )

    return AppComponents(
        investments=InvestmentFlow(storages["investments"], sync, validator, audit_logger),
        subscriptions=SubscriptionFlow(storages["subscriptions"], sync, validator, audit_logger),
        transactions=TransactionFlow(storages["transactions"], validator, audit_logger),
        goals=GoalFlow(storages["goals"], validator, audit_logger),
        sync=sync,
        audit_logger=audit_logger,
        sheets_client=sheets_client,
    )
