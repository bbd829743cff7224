"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the hosted storage backend because:
1. Users can view their ledger directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data (we're fine for personal use)
- No transactions (the shadow ledger outbox covers the gap)
- Limited query capabilities (we filter in Python)

One worksheet per collection. The header row is the model's field list,
so a sheet can be read back without a separate column mapping.
"""

import json
import typing
from typing import Any, Optional
from uuid import UUID

import gspread
from google.oauth2.service_account import Credentials
from pydantic import BaseModel
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from finance_tracker.config import get_settings
from finance_tracker.models.audit import AuditEvent, AuditEventType, AuditSeverity
from finance_tracker.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    RecordStorageInterface,
    RecordT,
    StorageError,
    apply_changes,
    record_matches,
)


# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "owner_id",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
]


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_worksheet(self, title: str, columns: list[str]) -> gspread.Worksheet:
        """Get or create a worksheet, writing the header row on creation."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=1000,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet


def _is_model_field(annotation: Any) -> bool:
    """True for nested pydantic models, which are stored as JSON cells."""
    candidates = typing.get_args(annotation) or (annotation,)
    return any(
        isinstance(candidate, type) and issubclass(candidate, BaseModel)
        for candidate in candidates
    )


class GoogleSheetsRecordStorage(RecordStorageInterface[RecordT]):
    """
    Google Sheets implementation of one record collection.

    Records are stored one per row. Nested models (sync snapshots) are
    JSON-serialized into a single cell; empty cells read back as unset.
    """

    def __init__(
        self,
        model_cls: type[RecordT],
        sheet_name: str,
        client: Optional[GoogleSheetsClient] = None,
    ):
        self._model_cls = model_cls
        self._sheet_name = sheet_name
        self._client = client or GoogleSheetsClient()
        self._columns = list(model_cls.model_fields)
        self._json_columns = {
            name for name, info in model_cls.model_fields.items()
            if _is_model_field(info.annotation)
        }

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_worksheet(self._sheet_name, self._columns)

    def _record_to_row(self, record: RecordT) -> list:
        """Convert a record to a spreadsheet row."""
        data = record.model_dump(mode="json")
        row = []
        for column in self._columns:
            value = data.get(column)
            if value is None:
                row.append("")
            elif column in self._json_columns:
                row.append(json.dumps(value))
            elif isinstance(value, bool):
                row.append("true" if value else "false")
            else:
                row.append(str(value))
        return row

    def _row_to_record(self, row: list) -> RecordT:
        """Convert a spreadsheet row to a record."""
        data = {}
        for column, value in zip(self._columns, row):
            if value == "":
                continue
            data[column] = json.loads(value) if column in self._json_columns else value
        return self._model_cls.model_validate(data)

    def _load(self) -> list[tuple[int, RecordT]]:
        """All (sheet row number, record) pairs, skipping malformed rows."""
        all_rows = self._sheet().get_all_values()
        loaded = []
        for idx, row in enumerate(all_rows[1:], start=2):  # Row 1 is the header
            if not row or not row[0]:
                continue
            try:
                loaded.append((idx, self._row_to_record(row)))
            except Exception:
                continue  # Skip malformed rows
        return loaded

    def _locate(self, filters: dict[str, Any]) -> Optional[tuple[int, RecordT]]:
        for idx, record in self._load():
            if record_matches(record, filters):
                return idx, record
        return None

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_not_exception_type(DuplicateError),
        reraise=True,
    )
    async def insert(self, record: RecordT) -> RecordT:
        """Append a record as a new row."""
        if self._locate({"id": record.id}) is not None:
            raise DuplicateError(f"{self._model_cls.__name__} already exists: {record.id}")
        try:
            self._sheet().append_row(self._record_to_row(record), value_input_option="RAW")
            return record
        except Exception as e:
            raise StorageError(f"Failed to save {self._model_cls.__name__}: {e}")

    async def find_one(self, **filters: Any) -> Optional[RecordT]:
        try:
            found = self._locate(filters)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to read {self._sheet_name}: {e}")
        return found[1] if found else None

    async def find(self, **filters: Any) -> list[RecordT]:
        try:
            return [
                record for _, record in self._load()
                if record_matches(record, filters)
            ]
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to read {self._sheet_name}: {e}")

    async def find_one_and_update(
        self,
        filters: dict[str, Any],
        changes: dict[str, Any],
    ) -> Optional[RecordT]:
        found = self._locate(filters)
        if found is None:
            return None
        idx, record = found
        # Invalid changes fail here, before the retried write
        updated = apply_changes(record, changes)
        await self._write_row(idx, updated)
        return updated

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _write_row(self, idx: int, record: RecordT) -> None:
        try:
            self._sheet().update(
                range_name=f"A{idx}",
                values=[self._record_to_row(record)],
                value_input_option="RAW",
            )
        except Exception as e:
            raise StorageError(f"Failed to update {self._model_cls.__name__}: {e}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def find_one_and_delete(self, **filters: Any) -> Optional[RecordT]:
        found = self._locate(filters)
        if found is None:
            return None
        idx, record = found
        try:
            self._sheet().delete_rows(idx)
            return record
        except Exception as e:
            raise StorageError(f"Failed to delete {self._model_cls.__name__}: {e}")


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._sheet_name = get_settings().google_sheets.audit_sheet_name

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_worksheet(self._sheet_name, AUDIT_COLUMNS)

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=safe_get(1),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            owner_id=safe_get(4) or None,
            entity_type=safe_get(5) or None,
            entity_id=UUID(safe_get(6)) if safe_get(6) else None,
            correlation_id=UUID(safe_get(7)) if safe_get(7) else None,
            description=safe_get(8),
            details=json.loads(safe_get(9)) if safe_get(9) else {},
            error_message=safe_get(10) or None,
        )

    def _load_events(self) -> list[AuditEvent]:
        events = []
        for row in self._sheet().get_all_values()[1:]:
            if row and row[0]:
                try:
                    events.append(self._row_to_event(row))
                except Exception:
                    continue
        return events

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            self._sheet().append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to write audit event: {e}")

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by correlation ID."""
        try:
            events = [e for e in self._load_events() if e.correlation_id == correlation_id]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by entity."""
        try:
            events = [
                e for e in self._load_events()
                if e.entity_type == entity_type and e.entity_id == entity_id
            ]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        try:
            events = self._load_events()
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
