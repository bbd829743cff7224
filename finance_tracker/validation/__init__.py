"""Record validation package."""

from finance_tracker.validation.validator import RecordValidator, validate_contribution

__all__ = ["RecordValidator", "validate_contribution"]
