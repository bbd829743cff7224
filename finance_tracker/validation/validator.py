"""
Two-Stage Record Validation

DESIGN DECISION: Validation happens in two distinct stages, before
anything is written:

STAGE 1 - SCHEMA VALIDATION:
- Type checking, required fields, closed category sets
- Done by the pydantic models; errors are translated into ValidationIssues

STAGE 2 - SEMANTIC VALIDATION:
- Non-positive amounts (the schema allows 0, a new record does not)
- Implausible return rates
- Suspicious amounts and far-future dates (warnings only)

IMPORTANT: Validation NEVER silently fixes issues. Errors raise
ValidationError; warnings are logged and the write goes ahead.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Optional, TypeVar

import pydantic
import structlog

from finance_tracker.config import get_settings
from finance_tracker.errors import ValidationError
from finance_tracker.models.records import (
    Goal,
    Investment,
    OwnedRecord,
    Subscription,
    Transaction,
    ValidationIssue,
)


RecordT = TypeVar("RecordT", bound=OwnedRecord)

# Set by the system, never by an update request
READ_ONLY_FIELDS = frozenset({"id", "owner_id", "created_at", "updated_at"})

logger = structlog.get_logger(__name__)


class RecordValidator:
    """
    Validates records through a two-stage pipeline.

    Stage 1: Schema validation (pydantic)
    Stage 2: Semantic validation (business rules)
    """

    def __init__(self, max_amount: Optional[float] = None, max_rate: Optional[float] = None):
        settings = get_settings().app
        self._max_amount = Decimal(str(max_amount if max_amount is not None else settings.max_amount))
        self._max_rate = Decimal(str(max_rate if max_rate is not None else settings.max_annual_rate_percent))
        self._future_tolerance = timedelta(days=settings.future_date_tolerance_days)

    def _validate_schema(
        self,
        model_cls: type[RecordT],
        data: dict[str, Any],
    ) -> tuple[Optional[RecordT], list[ValidationIssue]]:
        """
        Stage 1: Build the model, collecting every schema error.

        Returns: (record or None, list_of_issues)
        """
        try:
            return model_cls.model_validate(data), []
        except pydantic.ValidationError as e:
            issues = []
            for error in e.errors():
                field = ".".join(str(part) for part in error["loc"]) or "record"
                issue_type = error["type"]
                if issue_type == "enum" and field == "category":
                    issue_type = "unknown_category"
                issues.append(ValidationIssue(
                    field=field,
                    issue_type=issue_type,
                    message=error["msg"],
                ))
            return None, issues

    def _validate_semantic(self, record: OwnedRecord) -> list[ValidationIssue]:
        """
        Stage 2: Business rules the schema cannot express.

        Returns: list_of_issues (errors and warnings)
        """
        issues = []

        if isinstance(record, (Investment, Subscription, Transaction)):
            issues.extend(self._check_amount("amount", record.amount))
        if isinstance(record, Goal):
            issues.extend(self._check_amount("target_amount", record.target_amount))

        if isinstance(record, Investment):
            if record.annual_rate_percent > self._max_rate:
                issues.append(ValidationIssue(
                    field="annual_rate_percent",
                    issue_type="invalid_value",
                    message=f"Expected return of {record.annual_rate_percent}% is not plausible",
                ))
            issues.extend(self._check_date("date", record.date))
        elif isinstance(record, Subscription):
            issues.extend(self._check_date("start_date", record.start_date))
        elif isinstance(record, Transaction):
            issues.extend(self._check_date("date", record.date))

        return issues

    def _check_amount(self, field: str, amount: Decimal) -> list[ValidationIssue]:
        if amount <= 0:
            return [ValidationIssue(
                field=field,
                issue_type="invalid_value",
                message=f"{field.replace('_', ' ').capitalize()} must be greater than zero",
            )]
        if amount > self._max_amount:
            return [ValidationIssue(
                field=field,
                issue_type="suspicious_value",
                message=f"Amount ({amount:,.2f}) seems unusually high",
                severity="warning",
            )]
        return []

    def _check_date(self, field: str, value: date) -> list[ValidationIssue]:
        if value > date.today() + self._future_tolerance:
            return [ValidationIssue(
                field=field,
                issue_type="future_date",
                message=f"{field.replace('_', ' ').capitalize()} ({value}) is far in the future",
                severity="warning",
            )]
        return []

    def build(
        self,
        model_cls: type[RecordT],
        data: dict[str, Any],
    ) -> RecordT:
        """
        Run the full pipeline and return the validated record.

        Raises:
            ValidationError: If either stage reports an error-level issue
        """
        record, issues = self._validate_schema(model_cls, data)
        if record is not None:
            issues.extend(self._validate_semantic(record))

        errors = [issue for issue in issues if issue.severity == "error"]
        if errors:
            raise ValidationError(
                f"{model_cls.__name__} rejected: "
                + "; ".join(f"{issue.field}: {issue.message}" for issue in errors),
                issues=errors,
            )

        for issue in issues:
            logger.warning(
                "validation_warning",
                record_type=model_cls.__name__,
                field=issue.field,
                issue_type=issue.issue_type,
                message=issue.message,
            )
        return record

    def rebuild(
        self,
        record: RecordT,
        changes: dict[str, Any],
        read_only: frozenset[str] = frozenset(),
    ) -> RecordT:
        """
        Validate a partial update against an existing record.

        Returns the record as it would look after the change. Nothing is
        written here.

        Raises:
            ValidationError: Unknown or read-only fields, or an invalid result
        """
        model_cls = type(record)
        locked = READ_ONLY_FIELDS | read_only
        issues = []
        for field in changes:
            if field not in model_cls.model_fields:
                issues.append(ValidationIssue(
                    field=field,
                    issue_type="unknown_field",
                    message=f"{model_cls.__name__} has no field '{field}'",
                ))
            elif field in locked:
                issues.append(ValidationIssue(
                    field=field,
                    issue_type="read_only",
                    message=f"'{field}' cannot be changed",
                ))
        if issues:
            raise ValidationError(
                f"{model_cls.__name__} update rejected: "
                + "; ".join(issue.message for issue in issues),
                issues=issues,
            )

        data = record.model_dump()
        data.update(changes)
        return self.build(model_cls, data)


def validate_contribution(delta: Any) -> Decimal:
    """
    Check a goal contribution and return it as a Decimal.

    Raises:
        ValidationError: If delta is missing, not a number, not positive,
            or finer than cents
    """
    try:
        amount = Decimal(str(delta))
    except (ArithmeticError, ValueError, TypeError):
        amount = None

    if amount is None or not amount.is_finite():
        raise ValidationError(
            f"Contribution is not a number: {delta!r}",
            issues=[ValidationIssue(
                field="delta",
                issue_type="invalid_format",
                message="Contribution must be a number",
            )],
        )
    if amount <= 0:
        raise ValidationError(
            "Contribution must be greater than zero",
            issues=[ValidationIssue(
                field="delta",
                issue_type="invalid_value",
                message="Contribution must be greater than zero",
            )],
        )
    if amount.as_tuple().exponent < -2:
        raise ValidationError(
            f"Contribution has more than 2 decimal places: {delta!r}",
            issues=[ValidationIssue(
                field="delta",
                issue_type="invalid_format",
                message="Contribution must have at most 2 decimal places",
            )],
        )
    return amount
