"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real document store later
2. Use in-memory storage for testing
3. Inject a repository per component instead of a global connection

The interface mirrors what a document store gives us and nothing more:
create, find-one, find-many, find-and-update and find-and-delete, all by
field-equality filters. There are no transactions. Writes to two
collections are two independent operations.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Generic, Optional, TypeVar
from uuid import UUID

from finance_tracker.models.records import OwnedRecord
from finance_tracker.models.audit import AuditEvent


RecordT = TypeVar("RecordT", bound=OwnedRecord)


class RecordStorageInterface(ABC, Generic[RecordT]):
    """
    Abstract interface for one collection of records.

    Any storage implementation (Google Sheets, MongoDB, etc.)
    must implement these methods.
    """

    @abstractmethod
    async def insert(self, record: RecordT) -> RecordT:
        """
        Store a new record.

        Raises:
            DuplicateError: If a record with the same id exists
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def find_one(self, **filters: Any) -> Optional[RecordT]:
        """
        Return the first record whose fields equal every filter value.

        Returns:
            The record if found, None otherwise
        """
        pass

    @abstractmethod
    async def find(self, **filters: Any) -> list[RecordT]:
        """Return every record matching the filters, in insertion order."""
        pass

    @abstractmethod
    async def find_one_and_update(
        self,
        filters: dict[str, Any],
        changes: dict[str, Any],
    ) -> Optional[RecordT]:
        """
        Apply field changes to the first matching record.

        The changed record is re-validated before it is written.

        Returns:
            The updated record, or None if nothing matched
        """
        pass

    @abstractmethod
    async def find_one_and_delete(self, **filters: Any) -> Optional[RecordT]:
        """
        Delete the first matching record.

        Returns:
            The deleted record, or None if nothing matched
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get all events for a correlation ID, oldest first."""
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """Get all events for a specific entity, oldest first."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get the most recent audit events (newest first)."""
        pass


def record_matches(record: OwnedRecord, filters: dict[str, Any]) -> bool:
    """Field-equality filter shared by the storage backends."""
    for field, expected in filters.items():
        if not hasattr(record, field):
            raise StorageError(f"Unknown filter field for {type(record).__name__}: {field}")
        if getattr(record, field) != expected:
            return False
    return True


def apply_changes(record: RecordT, changes: dict[str, Any]) -> RecordT:
    """
    Return a re-validated copy of `record` with `changes` applied.

    `id`, `owner_id` and `created_at` never change.
    """
    frozen = {"id", "owner_id", "created_at"} & changes.keys()
    if frozen:
        raise StorageError(f"Cannot change immutable fields: {sorted(frozen)}")

    data = record.model_dump()
    data.update(changes)
    data["updated_at"] = datetime.utcnow()
    return type(record).model_validate(data)


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
