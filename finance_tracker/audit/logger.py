"""
Audit Logger

DESIGN DECISION: Every significant action in the system is logged.
Sync drift in particular is never shown to the user, so the audit trail
is the place it becomes visible.

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to tie a source write to its shadow sync
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from finance_tracker.models.audit import AuditEvent, AuditEventBuilder, AuditEventType
from finance_tracker.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence), when one is configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger()

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_record_created(
        self,
        entity_type: str,
        entity_id: UUID,
        owner_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log creation of a source record."""
        await self.log(AuditEventBuilder.record_created(
            entity_type=entity_type,
            entity_id=entity_id,
            owner_id=owner_id,
            correlation_id=correlation_id,
        ))

    async def log_record_updated(
        self,
        entity_type: str,
        entity_id: UUID,
        owner_id: str,
        changed_fields: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an update to a source record."""
        await self.log(AuditEventBuilder.record_updated(
            entity_type=entity_type,
            entity_id=entity_id,
            owner_id=owner_id,
            changed_fields=changed_fields,
            correlation_id=correlation_id,
        ))

    async def log_record_deleted(
        self,
        entity_type: str,
        entity_id: UUID,
        owner_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log deletion of a source record."""
        await self.log(AuditEventBuilder.record_deleted(
            entity_type=entity_type,
            entity_id=entity_id,
            owner_id=owner_id,
            correlation_id=correlation_id,
        ))

    async def log_validation_failed(
        self,
        entity_type: str,
        owner_id: str,
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a rejected write."""
        await self.log(AuditEventBuilder.validation_failed(
            entity_type=entity_type,
            owner_id=owner_id,
            issues=issues,
            correlation_id=correlation_id,
        ))

    async def log_shadow_event(
        self,
        event_type: AuditEventType,
        transaction_id: UUID,
        owner_id: str,
        origin_type: str,
        origin_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a shadow transaction being created, updated, deleted or adopted."""
        await self.log(AuditEventBuilder.shadow_event(
            event_type=event_type,
            transaction_id=transaction_id,
            owner_id=owner_id,
            origin_type=origin_type,
            origin_id=origin_id,
            correlation_id=correlation_id,
        ))

    async def log_sync_drift(
        self,
        intent_id: UUID,
        owner_id: str,
        origin_type: str,
        origin_id: UUID,
        action: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a shadow entry that could not be found or kept in step."""
        await self.log(AuditEventBuilder.sync_drift(
            intent_id=intent_id,
            owner_id=owner_id,
            origin_type=origin_type,
            origin_id=origin_id,
            action=action,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_sync_failed(
        self,
        intent_id: UUID,
        owner_id: str,
        action: str,
        attempts: int,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a sync intent that failed and will be retried."""
        await self.log(AuditEventBuilder.sync_failed(
            intent_id=intent_id,
            owner_id=owner_id,
            action=action,
            attempts=attempts,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_goal_funded(
        self,
        goal_id: UUID,
        owner_id: str,
        delta: str,
        current_amount: str,
        reached: bool,
        newly_reached: bool = False,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a contribution to a goal."""
        await self.log(AuditEventBuilder.goal_funded(
            goal_id=goal_id,
            owner_id=owner_id,
            delta=delta,
            current_amount=current_amount,
            reached=reached,
            newly_reached=newly_reached,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., an investment edit).
    Pass it through the source write and the shadow sync that follows.
    """
    return uuid4()
