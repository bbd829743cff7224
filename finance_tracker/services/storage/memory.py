"""
In-Memory Storage Implementation

Used by the test suite and for running the core without a configured
backend. Behaves like the document store the core was written against:
no transactions, first match wins, insertion order preserved.
"""

from typing import Any, Optional
from uuid import UUID

from finance_tracker.models.audit import AuditEvent
from finance_tracker.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    RecordStorageInterface,
    RecordT,
    apply_changes,
    record_matches,
)


class InMemoryRecordStorage(RecordStorageInterface[RecordT]):
    """Dictionary-backed collection keyed by record id."""

    def __init__(self):
        self._records: dict[UUID, RecordT] = {}

    def __len__(self) -> int:
        return len(self._records)

    async def insert(self, record: RecordT) -> RecordT:
        if record.id in self._records:
            raise DuplicateError(f"{type(record).__name__} already exists: {record.id}")
        self._records[record.id] = record
        return record

    async def find_one(self, **filters: Any) -> Optional[RecordT]:
        for record in self._records.values():
            if record_matches(record, filters):
                return record
        return None

    async def find(self, **filters: Any) -> list[RecordT]:
        return [
            record for record in self._records.values()
            if record_matches(record, filters)
        ]

    async def find_one_and_update(
        self,
        filters: dict[str, Any],
        changes: dict[str, Any],
    ) -> Optional[RecordT]:
        record = await self.find_one(**filters)
        if record is None:
            return None
        updated = apply_changes(record, changes)
        self._records[record.id] = updated
        return updated

    async def find_one_and_delete(self, **filters: Any) -> Optional[RecordT]:
        record = await self.find_one(**filters)
        if record is None:
            return None
        del self._records[record.id]
        return record


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self.events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            e for e in self.events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return sorted(self.events, key=lambda e: e.timestamp, reverse=True)[:limit]
