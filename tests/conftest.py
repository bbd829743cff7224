"""
Shared fixtures.

Everything runs against in-memory storage; no test talks to Google Sheets.
Async code is driven with asyncio.run through the `run` helper.
"""

import asyncio
from typing import Any, Optional

import pytest

from finance_tracker.audit import AuditLogger
from finance_tracker.config import SyncSettings
from finance_tracker.orchestrator import GoalFlow, InvestmentFlow, SubscriptionFlow, TransactionFlow
from finance_tracker.services.storage import InMemoryAuditStorage, InMemoryRecordStorage, StorageError
from finance_tracker.sync import ShadowLedgerSync
from finance_tracker.validation import RecordValidator


OWNER = "user-1"
OTHER_OWNER = "user-2"


def run(coro):
    """Run a coroutine to completion."""
    return asyncio.run(coro)


class FlakyRecordStorage(InMemoryRecordStorage):
    """In-memory storage whose writes can be switched to fail."""

    def __init__(self):
        super().__init__()
        self.fail_writes = False

    def _check(self) -> None:
        if self.fail_writes:
            raise StorageError("Storage unavailable")

    async def insert(self, record):
        self._check()
        return await super().insert(record)

    async def find_one_and_update(self, filters: dict[str, Any], changes: dict[str, Any]):
        self._check()
        return await super().find_one_and_update(filters, changes)

    async def find_one_and_delete(self, **filters: Any):
        self._check()
        return await super().find_one_and_delete(**filters)


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage) -> AuditLogger:
    return AuditLogger(audit_storage)


@pytest.fixture
def sync_settings() -> SyncSettings:
    return SyncSettings(
        shadow_sync_enabled=True,
        max_sync_attempts=5,
        legacy_value_matching=False,
        subscription_default_category="General",
    )


@pytest.fixture
def validator() -> RecordValidator:
    return RecordValidator(max_amount=100000000, max_rate=100)


@pytest.fixture
def transactions() -> FlakyRecordStorage:
    return FlakyRecordStorage()


@pytest.fixture
def outbox() -> InMemoryRecordStorage:
    return InMemoryRecordStorage()


@pytest.fixture
def investments() -> InMemoryRecordStorage:
    return InMemoryRecordStorage()


@pytest.fixture
def subscriptions() -> InMemoryRecordStorage:
    return InMemoryRecordStorage()


@pytest.fixture
def goals() -> InMemoryRecordStorage:
    return InMemoryRecordStorage()


@pytest.fixture
def sync(transactions, outbox, audit_logger, sync_settings) -> ShadowLedgerSync:
    return ShadowLedgerSync(
        transactions=transactions,
        outbox=outbox,
        audit_logger=audit_logger,
        settings=sync_settings,
    )


@pytest.fixture
def investment_flow(investments, sync, validator, audit_logger) -> InvestmentFlow:
    return InvestmentFlow(investments, sync, validator, audit_logger)


@pytest.fixture
def subscription_flow(subscriptions, sync, validator, audit_logger) -> SubscriptionFlow:
    return SubscriptionFlow(
        subscriptions, sync, validator, audit_logger, default_category="General"
    )


@pytest.fixture
def transaction_flow(transactions, validator, audit_logger) -> TransactionFlow:
    return TransactionFlow(transactions, validator, audit_logger)


@pytest.fixture
def goal_flow(goals, validator, audit_logger) -> GoalFlow:
    return GoalFlow(goals, validator, audit_logger)


def event_types(audit_storage: InMemoryAuditStorage, entity_type: Optional[str] = None) -> list[str]:
    """Audit event types in the order they were logged."""
    return [
        event.event_type.value
        for event in audit_storage.events
        if entity_type is None or event.entity_type == entity_type
    ]
