"""
Tests for shadow ledger synchronization.

Each investment and subscription must have exactly one mirror entry in
the transaction ledger, found through its origin link. Sync problems are
recorded in the outbox and the audit log and never reach the caller.
"""

import pytest
from datetime import date
from decimal import Decimal

from conftest import OWNER, FlakyRecordStorage, event_types, run
from finance_tracker.config import SyncSettings
from finance_tracker.models.records import (
    Investment,
    InvestmentCategory,
    InvestmentKind,
    OriginType,
    SyncAction,
    SyncStatus,
    Transaction,
    TransactionDirection,
)
from finance_tracker.sync import ShadowLedgerSync, snapshot_for


def gold_investment(**overrides) -> dict:
    data = {
        "category": "Gold",
        "kind": "lump_sum",
        "amount": Decimal("1000"),
        "date": date(2024, 1, 1),
        "start_date": date(2024, 1, 1),
    }
    data.update(overrides)
    return data


def manual_expense(amount: str = "1000", day: date = date(2024, 1, 1), category: str = "Gold") -> Transaction:
    return Transaction(
        owner_id=OWNER,
        category=category,
        amount=Decimal(amount),
        direction=TransactionDirection.EXPENSE,
        date=day,
    )


class TestShadowCreation:
    """Tests for mirroring new source records."""

    def test_investment_gets_one_shadow(self, investment_flow, transactions, outbox):
        """Creating a Gold investment books a matching expense."""
        investment = run(investment_flow.create_investment(OWNER, gold_investment()))

        shadows = run(transactions.find(owner_id=OWNER))
        assert len(shadows) == 1
        shadow = shadows[0]
        assert shadow.amount == Decimal("1000")
        assert shadow.direction == TransactionDirection.EXPENSE
        assert shadow.category == "Gold"
        assert shadow.date == date(2024, 1, 1)
        assert shadow.origin_type == OriginType.INVESTMENT
        assert shadow.origin_id == investment.id

        intents = run(outbox.find())
        assert [i.status for i in intents] == [SyncStatus.APPLIED]

    def test_investment_description_defaults_to_category(self, investment_flow, sync):
        investment = run(investment_flow.create_investment(OWNER, gold_investment()))
        shadow = run(sync.find_shadow(investment))
        assert shadow.description == "Gold"

    def test_investment_description_is_kept(self, investment_flow, sync):
        investment = run(investment_flow.create_investment(
            OWNER, gold_investment(description="Sovereign gold bond")
        ))
        shadow = run(sync.find_shadow(investment))
        assert shadow.description == "Sovereign gold bond"

    def test_subscription_shadow(self, subscription_flow, sync):
        subscription = run(subscription_flow.create_subscription(OWNER, {
            "name": "Netflix",
            "amount": Decimal("649"),
            "billing_cycle": "monthly",
            "start_date": date(2024, 2, 5),
        }))

        shadow = run(sync.find_shadow(subscription))
        assert shadow.origin_type == OriginType.SUBSCRIPTION
        assert shadow.amount == Decimal("649")
        assert shadow.date == date(2024, 2, 5)
        assert shadow.category == "General"
        assert shadow.description == "Netflix (monthly subscription)"

    def test_replayed_create_does_not_duplicate(self, investment_flow, sync, transactions, outbox):
        investment = run(investment_flow.create_investment(OWNER, gold_investment()))
        intent = run(outbox.find_one(origin_id=investment.id))

        run(sync.apply(intent))

        assert len(run(transactions.find(owner_id=OWNER))) == 1

    def test_shadow_events_are_audited(self, investment_flow, audit_storage):
        run(investment_flow.create_investment(OWNER, gold_investment()))
        assert event_types(audit_storage) == ["record_created", "shadow_created"]

    def test_events_share_a_correlation_id(self, investment_flow, audit_storage):
        run(investment_flow.create_investment(OWNER, gold_investment()))
        correlation_ids = {event.correlation_id for event in audit_storage.events}
        assert len(correlation_ids) == 1
        assert None not in correlation_ids


class TestShadowUpdate:
    """Tests for carrying edits over to the shadow."""

    def test_amount_change_updates_same_shadow(self, investment_flow, transactions):
        """Editing 1000 to 1500 changes the shadow in place."""
        investment = run(investment_flow.create_investment(OWNER, gold_investment()))
        before = run(transactions.find(owner_id=OWNER))[0]

        run(investment_flow.update_investment(OWNER, investment.id, {"amount": Decimal("1500")}))

        shadows = run(transactions.find(owner_id=OWNER))
        assert len(shadows) == 1
        assert shadows[0].id == before.id
        assert shadows[0].amount == Decimal("1500")

    def test_date_and_category_follow_source(self, investment_flow, sync):
        investment = run(investment_flow.create_investment(OWNER, gold_investment()))

        updated = run(investment_flow.update_investment(OWNER, investment.id, {
            "date": date(2024, 2, 1),
            "category": "Crypto",
        }))

        shadow = run(sync.find_shadow(updated))
        assert shadow.date == date(2024, 2, 1)
        assert shadow.category == "Crypto"
        assert shadow.direction == TransactionDirection.EXPENSE

    def test_update_does_not_touch_coincident_manual_entry(self, investment_flow, transactions):
        manual = run(transactions.insert(manual_expense()))
        investment = run(investment_flow.create_investment(OWNER, gold_investment()))

        run(investment_flow.update_investment(OWNER, investment.id, {"amount": Decimal("1500")}))

        assert run(transactions.find_one(id=manual.id)).amount == Decimal("1000")

    def test_missing_shadow_is_drift(self, investment_flow, transactions, outbox, audit_storage):
        """The source update stands; the intent is marked drifted."""
        investment = run(investment_flow.create_investment(OWNER, gold_investment()))
        shadow = run(transactions.find_one(origin_id=investment.id))
        run(transactions.find_one_and_delete(id=shadow.id))

        updated = run(investment_flow.update_investment(
            OWNER, investment.id, {"amount": Decimal("1500")}
        ))

        assert updated.amount == Decimal("1500")
        intent = run(outbox.find_one(origin_id=investment.id, action=SyncAction.UPDATE))
        assert intent.status == SyncStatus.DRIFTED
        assert "No shadow transaction" in intent.last_error
        assert "sync_drift" in event_types(audit_storage)


class TestShadowDelete:
    """Tests for removing the shadow with its source."""

    def test_delete_removes_shadow(self, investment_flow, transactions):
        investment = run(investment_flow.create_investment(OWNER, gold_investment()))

        run(investment_flow.delete_investment(OWNER, investment.id))

        assert run(transactions.find(owner_id=OWNER)) == []

    def test_second_delete_is_harmless(self, sync, investment_flow, transactions, outbox):
        """Replaying a delete never raises and removes nothing else."""
        manual = run(transactions.insert(manual_expense()))
        investment = run(investment_flow.create_investment(OWNER, gold_investment()))
        run(investment_flow.delete_investment(OWNER, investment.id))

        intent = run(sync.on_deleted(investment))

        assert intent.status == SyncStatus.DRIFTED
        remaining = run(transactions.find(owner_id=OWNER))
        assert [t.id for t in remaining] == [manual.id]

    def test_coincident_manual_entry_survives_delete(self, investment_flow, transactions):
        """A user entry with the same owner, amount, date and category is not a shadow."""
        manual = run(transactions.insert(manual_expense()))
        investment = run(investment_flow.create_investment(OWNER, gold_investment()))

        run(investment_flow.delete_investment(OWNER, investment.id))

        remaining = run(transactions.find(owner_id=OWNER))
        assert [t.id for t in remaining] == [manual.id]

    def test_delete_drift_is_audited_not_raised(self, investment_flow, transactions, audit_storage):
        investment = run(investment_flow.create_investment(OWNER, gold_investment()))
        shadow = run(transactions.find_one(origin_id=investment.id))
        run(transactions.find_one_and_delete(id=shadow.id))

        deleted = run(investment_flow.delete_investment(OWNER, investment.id))

        assert deleted.id == investment.id
        assert event_types(audit_storage)[-1] == "sync_drift"


class TestFailureAndRetry:
    """Tests for storage failures while applying intents."""

    def test_storage_failure_marks_intent_failed(self, investment_flow, transactions, outbox, audit_storage):
        transactions.fail_writes = True

        investment = run(investment_flow.create_investment(OWNER, gold_investment()))

        assert run(investment_flow.get_investment(OWNER, investment.id)) == investment
        intent = run(outbox.find_one(origin_id=investment.id))
        assert intent.status == SyncStatus.FAILED
        assert intent.attempts == 1
        assert intent.last_error == "Storage unavailable"
        assert "sync_failed" in event_types(audit_storage)

    def test_retry_applies_failed_intent(self, investment_flow, sync, transactions, outbox):
        transactions.fail_writes = True
        investment = run(investment_flow.create_investment(OWNER, gold_investment()))
        transactions.fail_writes = False

        applied = run(sync.retry_pending())

        assert applied == 1
        assert run(sync.find_shadow(investment)) is not None
        intent = run(outbox.find_one(origin_id=investment.id))
        assert intent.status == SyncStatus.APPLIED
        assert intent.attempts == 2

    def test_retry_uses_latest_snapshot(self, investment_flow, sync, transactions, outbox):
        """A failed create followed by a failed edit ends up mirroring the edit."""
        transactions.fail_writes = True
        investment = run(investment_flow.create_investment(OWNER, gold_investment()))
        run(investment_flow.update_investment(OWNER, investment.id, {"amount": Decimal("1500")}))
        transactions.fail_writes = False

        run(sync.retry_pending())

        shadows = run(transactions.find(owner_id=OWNER))
        assert len(shadows) == 1
        assert shadows[0].amount == Decimal("1500")

    def test_stale_intent_is_superseded(self, investment_flow, sync, transactions, outbox):
        """An old failed update must not roll back a newer applied one."""
        investment = run(investment_flow.create_investment(OWNER, gold_investment()))
        transactions.fail_writes = True
        run(investment_flow.update_investment(OWNER, investment.id, {"amount": Decimal("1200")}))
        transactions.fail_writes = False
        run(investment_flow.update_investment(OWNER, investment.id, {"amount": Decimal("1500")}))

        applied = run(sync.retry_pending())

        assert applied == 0
        assert run(sync.find_shadow(investment)).amount == Decimal("1500")
        statuses = [i.status for i in run(outbox.find(action=SyncAction.UPDATE))]
        assert SyncStatus.SUPERSEDED in statuses

    def test_retry_respects_max_attempts(self, transactions, outbox, audit_logger, investment_flow):
        sync = ShadowLedgerSync(
            transactions, outbox, audit_logger,
            settings=SyncSettings(max_sync_attempts=1),
        )
        transactions.fail_writes = True
        run(investment_flow.create_investment(OWNER, gold_investment()))
        transactions.fail_writes = False

        assert run(sync.retry_pending()) == 0
        assert run(transactions.find(owner_id=OWNER)) == []

    def test_outbox_failure_still_applies(self, transactions, audit_logger, audit_storage, sync_settings):
        outbox = FlakyRecordStorage()
        outbox.fail_writes = True
        sync = ShadowLedgerSync(transactions, outbox, audit_logger, settings=sync_settings)
        investment = Investment(
            owner_id=OWNER,
            category=InvestmentCategory.GOLD,
            kind=InvestmentKind.LUMP_SUM,
            amount=Decimal("1000"),
            date=date(2024, 1, 1),
        )

        intent = run(sync.on_created(investment))

        assert intent.status == SyncStatus.APPLIED
        assert run(sync.find_shadow(investment)) is not None
        assert "system_error" in event_types(audit_storage)


class TestDriftReport:
    """Tests for the outbox status counts."""

    def test_counts_every_status(self, investment_flow, sync, transactions):
        run(investment_flow.create_investment(OWNER, gold_investment()))
        drifting = run(investment_flow.create_investment(OWNER, gold_investment(amount=Decimal("50"))))
        run(transactions.find_one_and_delete(origin_id=drifting.id))
        run(investment_flow.delete_investment(OWNER, drifting.id))

        report = run(sync.drift_report(owner_id=OWNER))

        assert report == {
            "pending": 0,
            "applied": 2,
            "failed": 0,
            "drifted": 1,
            "superseded": 0,
        }

    def test_other_owners_are_excluded(self, investment_flow, sync):
        run(investment_flow.create_investment(OWNER, gold_investment()))
        assert run(sync.drift_report(owner_id="someone-else"))["applied"] == 0


class TestSyncSettings:
    """Tests for configuration switches."""

    def test_sync_can_be_disabled(self, transactions, outbox, investments, validator):
        from finance_tracker.orchestrator import InvestmentFlow

        sync = ShadowLedgerSync(
            transactions, outbox, settings=SyncSettings(shadow_sync_enabled=False)
        )
        flow = InvestmentFlow(investments, sync, validator)

        run(flow.create_investment(OWNER, gold_investment()))

        assert len(transactions) == 0
        assert len(outbox) == 0

    def test_legacy_matching_adopts_unlinked_entry(self, transactions, outbox, audit_logger, audit_storage):
        """Entries written before origin links are found by value and linked."""
        sync = ShadowLedgerSync(
            transactions, outbox, audit_logger,
            settings=SyncSettings(legacy_value_matching=True),
        )
        investment = Investment(
            owner_id=OWNER,
            category=InvestmentCategory.GOLD,
            kind=InvestmentKind.LUMP_SUM,
            amount=Decimal("1000"),
            date=date(2024, 1, 1),
        )
        legacy = run(transactions.insert(manual_expense()))
        edited = investment.model_copy(update={"amount": Decimal("1500")})

        intent = run(sync.on_updated(investment, edited))

        assert intent.status == SyncStatus.APPLIED
        adopted = run(transactions.find_one(id=legacy.id))
        assert adopted.origin_type == OriginType.INVESTMENT
        assert adopted.origin_id == investment.id
        assert adopted.amount == Decimal("1500")
        assert "shadow_adopted" in event_types(audit_storage)

    def test_legacy_matching_off_by_default(self, sync, transactions):
        investment = Investment(
            owner_id=OWNER,
            category=InvestmentCategory.GOLD,
            kind=InvestmentKind.LUMP_SUM,
            amount=Decimal("1000"),
            date=date(2024, 1, 1),
        )
        legacy = run(transactions.insert(manual_expense()))

        intent = run(sync.on_deleted(investment))

        assert intent.status == SyncStatus.DRIFTED
        assert run(transactions.find_one(id=legacy.id)) is not None


class TestSnapshot:
    """Tests for the mirrored field selection."""

    def test_recurring_is_booked_on_transaction_date(self):
        investment = Investment(
            owner_id=OWNER,
            category=InvestmentCategory.STOCKS,
            kind=InvestmentKind.RECURRING,
            amount=Decimal("250"),
            date=date(2024, 3, 3),
            start_date=date(2024, 1, 1),
        )
        snapshot = snapshot_for(investment)
        assert snapshot.date == date(2024, 3, 3)
        assert snapshot.category == "Stocks"
