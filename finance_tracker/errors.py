"""
Domain Error Types

Storage-level failures live in finance_tracker.services.storage.interface.
The errors here describe what went wrong with the request itself.

PROPAGATION POLICY:
- ValidationError: raised before any write, always reaches the caller
- NotFoundError (storage): source record missing, reaches the caller
- SyncDriftError: logged through the audit logger, NEVER reaches the caller
"""

from typing import TYPE_CHECKING, Optional
from uuid import UUID

if TYPE_CHECKING:
    from finance_tracker.models.records import ValidationIssue


class FinanceTrackerError(Exception):
    """Base exception for the finance tracker core."""
    pass


class ValidationError(FinanceTrackerError, ValueError):
    """
    Input rejected before any write.

    Carries the individual issues so callers can show all of them at once.
    """

    def __init__(
        self,
        message: str,
        issues: Optional[list["ValidationIssue"]] = None,
    ):
        super().__init__(message)
        self.issues = issues or []

    @property
    def fields(self) -> list[str]:
        """Fields that failed validation."""
        return [issue.field for issue in self.issues]


class SyncDriftError(FinanceTrackerError):
    """
    A shadow transaction could not be kept in step with its source.

    Raised inside ShadowLedgerSync and caught there. The source record
    operation has already completed when this happens.
    """

    def __init__(
        self,
        message: str,
        origin_type: Optional[str] = None,
        origin_id: Optional[UUID] = None,
    ):
        super().__init__(message)
        self.origin_type = origin_type
        self.origin_id = origin_id
