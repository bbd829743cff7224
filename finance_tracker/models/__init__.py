"""
Data Models Package

This package contains all Pydantic models used in the Finance Tracker core.
All data flowing through the system must conform to these schemas.
"""

from finance_tracker.models.records import (
    BillingCycle,
    Goal,
    Investment,
    InvestmentCategory,
    InvestmentKind,
    OriginType,
    OwnedRecord,
    ShadowSnapshot,
    Subscription,
    SubscriptionStatus,
    SyncAction,
    SyncIntent,
    SyncStatus,
    Transaction,
    TransactionDirection,
    ValidationIssue,
)
from finance_tracker.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Record models
    "BillingCycle",
    "Goal",
    "Investment",
    "InvestmentCategory",
    "InvestmentKind",
    "OriginType",
    "OwnedRecord",
    "ShadowSnapshot",
    "Subscription",
    "SubscriptionStatus",
    "SyncAction",
    "SyncIntent",
    "SyncStatus",
    "Transaction",
    "TransactionDirection",
    "ValidationIssue",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
