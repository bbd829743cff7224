"""
Audit Models for Finance Tracker

Every write to a source record, and every step the shadow ledger takes
to follow it, is logged for audit purposes. This provides:
1. Complete traceability of all operations
2. The only visible trace of sync drift (drift never reaches the user)
3. Ability to reconstruct history

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Source records
    RECORD_CREATED = "record_created"
    RECORD_UPDATED = "record_updated"
    RECORD_DELETED = "record_deleted"
    VALIDATION_FAILED = "validation_failed"

    # Shadow ledger
    SHADOW_CREATED = "shadow_created"
    SHADOW_UPDATED = "shadow_updated"
    SHADOW_DELETED = "shadow_deleted"
    SHADOW_ADOPTED = "shadow_adopted"
    SYNC_DRIFT = "sync_drift"
    SYNC_FAILED = "sync_failed"

    # Goals
    GOAL_FUNDED = "goal_funded"
    GOAL_REACHED = "goal_reached"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - what entity is this about?
    owner_id: Optional[str] = None
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'investment', 'transaction', 'goal')"
    )
    entity_id: Optional[UUID] = None

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., a source write and its sync)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(default_factory=dict)

    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "owner_id": self.owner_id,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, owner_id, entity_type,
         entity_id, correlation_id, description, details_json, error_message]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.owner_id or "",
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.record_created("investment", inv.id, owner_id, correlation_id)
        event = AuditEventBuilder.goal_funded(goal.id, owner_id, "300", "5100", reached=True)
    """

    @staticmethod
    def record_created(
        entity_type: str,
        entity_id: UUID,
        owner_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_CREATED,
            owner_id=owner_id,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{entity_type.capitalize()} created",
        )

    @staticmethod
    def record_updated(
        entity_type: str,
        entity_id: UUID,
        owner_id: str,
        changed_fields: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_UPDATED,
            owner_id=owner_id,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{entity_type.capitalize()} updated: {', '.join(changed_fields) or 'no changes'}",
            details={"changed_fields": changed_fields},
        )

    @staticmethod
    def record_deleted(
        entity_type: str,
        entity_id: UUID,
        owner_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_DELETED,
            owner_id=owner_id,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{entity_type.capitalize()} deleted",
        )

    @staticmethod
    def validation_failed(
        entity_type: str,
        owner_id: str,
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            owner_id=owner_id,
            entity_type=entity_type,
            correlation_id=correlation_id,
            description=f"{entity_type.capitalize()} rejected with {len(issues)} issues",
            details={"issues": issues},
        )

    @staticmethod
    def shadow_event(
        event_type: AuditEventType,
        transaction_id: UUID,
        owner_id: str,
        origin_type: str,
        origin_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        verb = event_type.value.split("_", 1)[1]
        return AuditEvent(
            event_type=event_type,
            owner_id=owner_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Shadow transaction {verb} for {origin_type} {origin_id}",
            details={
                "origin_type": origin_type,
                "origin_id": str(origin_id),
            },
        )

    @staticmethod
    def sync_drift(
        intent_id: UUID,
        owner_id: str,
        origin_type: str,
        origin_id: UUID,
        action: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_DRIFT,
            severity=AuditSeverity.WARNING,
            owner_id=owner_id,
            entity_type="sync_intent",
            entity_id=intent_id,
            correlation_id=correlation_id,
            description=f"Shadow ledger drift on {action} of {origin_type} {origin_id}",
            error_message=reason,
            details={
                "origin_type": origin_type,
                "origin_id": str(origin_id),
                "action": action,
            },
        )

    @staticmethod
    def sync_failed(
        intent_id: UUID,
        owner_id: str,
        action: str,
        attempts: int,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_FAILED,
            severity=AuditSeverity.ERROR,
            owner_id=owner_id,
            entity_type="sync_intent",
            entity_id=intent_id,
            correlation_id=correlation_id,
            description=f"Shadow ledger {action} failed (attempt {attempts})",
            error_message=error_message,
            details={"action": action, "attempts": attempts},
        )

    @staticmethod
    def goal_funded(
        goal_id: UUID,
        owner_id: str,
        delta: str,
        current_amount: str,
        reached: bool,
        newly_reached: bool = False,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.GOAL_REACHED if newly_reached else AuditEventType.GOAL_FUNDED
            ),
            owner_id=owner_id,
            entity_type="goal",
            entity_id=goal_id,
            correlation_id=correlation_id,
            description=f"Goal funded with {delta}, now at {current_amount}",
            details={
                "delta": delta,
                "current_amount": current_amount,
                "reached": reached,
            },
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
