"""
Goal Progress Tracking

DESIGN DECISION: `reached` is a derived value. It is recomputed by
compute_reached() on every write path that touches current_amount or
target_amount, never left to a storage hook and never set directly by
callers.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from finance_tracker.audit import AuditLogger
from finance_tracker.errors import ValidationError
from finance_tracker.models.records import Goal
from finance_tracker.services.storage import NotFoundError, RecordStorageInterface
from finance_tracker.validation import RecordValidator, validate_contribution


def compute_reached(current_amount: Decimal, target_amount: Decimal) -> bool:
    """A goal is reached once contributions meet or exceed the target."""
    return current_amount >= target_amount


def apply_funds(goal: Goal, delta: Any) -> Goal:
    """
    Return a copy of `goal` with `delta` added.

    There is no upper clamp: contributions past the target are kept.

    Raises:
        ValidationError: If delta is zero, negative or not a number
    """
    amount = validate_contribution(delta)
    current = goal.current_amount + amount
    return goal.model_copy(update={
        "current_amount": current,
        "reached": compute_reached(current, goal.target_amount),
    })


class GoalProgressTracker:
    """Create, fund and delete savings goals."""

    def __init__(
        self,
        goals: RecordStorageInterface[Goal],
        validator: Optional[RecordValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._goals = goals
        self._validator = validator or RecordValidator()
        self._audit_logger = audit_logger

    async def create_goal(
        self,
        owner_id: str,
        title: str,
        target_amount: Any,
        deadline: Optional[date] = None,
        current_amount: Any = Decimal("0"),
        correlation_id: Optional[UUID] = None,
    ) -> Goal:
        """
        Create a goal. Has no side effects on other records.

        Raises:
            ValidationError: Missing title, non-positive target, negative current amount
        """
        goal = self._validator.build(Goal, {
            "owner_id": owner_id,
            "title": title,
            "target_amount": target_amount,
            "current_amount": current_amount,
            "deadline": deadline,
        })
        goal = goal.model_copy(update={
            "reached": compute_reached(goal.current_amount, goal.target_amount),
        })
        await self._goals.insert(goal)

        if self._audit_logger:
            await self._audit_logger.log_record_created(
                entity_type="goal",
                entity_id=goal.id,
                owner_id=owner_id,
                correlation_id=correlation_id,
            )
        return goal

    async def get_goal(self, owner_id: str, goal_id: UUID) -> Goal:
        """
        Raises:
            NotFoundError: If the goal does not exist or belongs to someone else
        """
        goal = await self._goals.find_one(id=goal_id, owner_id=owner_id)
        if goal is None:
            raise NotFoundError(f"Goal not found: {goal_id}")
        return goal

    async def list_goals(self, owner_id: str) -> list[Goal]:
        """Goals for an owner, newest first."""
        goals = await self._goals.find(owner_id=owner_id)
        return sorted(goals, key=lambda g: g.created_at, reverse=True)

    async def add_funds(
        self,
        owner_id: str,
        goal_id: UUID,
        delta: Any,
        correlation_id: Optional[UUID] = None,
    ) -> Goal:
        """
        Add a contribution to a goal and persist it.

        Raises:
            ValidationError: If delta is not a positive amount (nothing is written)
            NotFoundError: If the goal does not exist or belongs to someone else
        """
        goal = await self.get_goal(owner_id, goal_id)
        try:
            funded = apply_funds(goal, delta)
        except ValidationError as e:
            if self._audit_logger:
                await self._audit_logger.log_validation_failed(
                    entity_type="goal",
                    owner_id=owner_id,
                    issues=[
                        {"field": i.field, "type": i.issue_type, "message": i.message}
                        for i in e.issues
                    ],
                    correlation_id=correlation_id,
                )
            raise

        updated = await self._goals.find_one_and_update(
            {"id": goal_id, "owner_id": owner_id},
            {
                "current_amount": funded.current_amount,
                "reached": funded.reached,
            },
        )
        if updated is None:
            raise NotFoundError(f"Goal not found: {goal_id}")

        if self._audit_logger:
            await self._audit_logger.log_goal_funded(
                goal_id=goal_id,
                owner_id=owner_id,
                delta=str(funded.current_amount - goal.current_amount),
                current_amount=str(updated.current_amount),
                reached=updated.reached,
                newly_reached=updated.reached and not goal.reached,
                correlation_id=correlation_id,
            )
        return updated

    async def update_goal(
        self,
        owner_id: str,
        goal_id: UUID,
        changes: dict[str, Any],
        correlation_id: Optional[UUID] = None,
    ) -> Goal:
        """
        Change a goal's title, target or deadline.

        Contributions only go through add_funds(); `reached` follows the
        new target.

        Raises:
            ValidationError: Read-only or unknown fields, invalid values
            NotFoundError: If the goal does not exist or belongs to someone else
        """
        goal = await self.get_goal(owner_id, goal_id)
        candidate = self._validator.rebuild(
            goal,
            changes,
            read_only=frozenset({"current_amount", "reached"}),
        )
        written = {field: getattr(candidate, field) for field in changes}
        written["reached"] = compute_reached(candidate.current_amount, candidate.target_amount)

        updated = await self._goals.find_one_and_update(
            {"id": goal_id, "owner_id": owner_id},
            written,
        )
        if updated is None:
            raise NotFoundError(f"Goal not found: {goal_id}")

        if self._audit_logger:
            await self._audit_logger.log_record_updated(
                entity_type="goal",
                entity_id=goal_id,
                owner_id=owner_id,
                changed_fields=sorted(changes),
                correlation_id=correlation_id,
            )
        return updated

    async def delete_goal(
        self,
        owner_id: str,
        goal_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> Goal:
        """
        Delete a goal. Has no side effects on other records.

        Raises:
            NotFoundError: If the goal does not exist or belongs to someone else
        """
        deleted = await self._goals.find_one_and_delete(id=goal_id, owner_id=owner_id)
        if deleted is None:
            raise NotFoundError(f"Goal not found: {goal_id}")

        if self._audit_logger:
            await self._audit_logger.log_record_deleted(
                entity_type="goal",
                entity_id=goal_id,
                owner_id=owner_id,
                correlation_id=correlation_id,
            )
        return deleted
