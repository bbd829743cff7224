"""
Tests for savings goals.

`reached` must always equal current_amount >= target_amount after a
write, and contributions past the target are kept.
"""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from conftest import OTHER_OWNER, OWNER, event_types, run
from finance_tracker.errors import ValidationError
from finance_tracker.goals import apply_funds, compute_reached
from finance_tracker.models.records import Goal
from finance_tracker.services.storage import NotFoundError


def make_goal(target: str = "5000", current: str = "0") -> Goal:
    return Goal(
        owner_id=OWNER,
        title="Emergency fund",
        target_amount=Decimal(target),
        current_amount=Decimal(current),
    )


class TestComputeReached:
    """Tests for the derived reached flag."""

    def test_below_target(self):
        assert compute_reached(Decimal("4999.99"), Decimal("5000")) is False

    def test_exactly_at_target(self):
        assert compute_reached(Decimal("5000"), Decimal("5000")) is True

    def test_past_target(self):
        assert compute_reached(Decimal("5100"), Decimal("5000")) is True


class TestApplyFunds:
    """Tests for the pure contribution function."""

    def test_crossing_the_target(self):
        """5000 target, 4800 saved, +300 gives 5100 and reached."""
        goal = apply_funds(make_goal(current="4800"), Decimal("300"))

        assert goal.current_amount == Decimal("5100")
        assert goal.reached is True

    def test_original_goal_is_untouched(self):
        original = make_goal(current="4800")
        apply_funds(original, Decimal("300"))
        assert original.current_amount == Decimal("4800")
        assert original.reached is False

    def test_accepts_numeric_strings(self):
        goal = apply_funds(make_goal(), "250.50")
        assert goal.current_amount == Decimal("250.50")
        assert goal.reached is False

    @pytest.mark.parametrize("delta", [0, "0", -1, Decimal("-0.01")])
    def test_non_positive_delta_rejected(self, delta):
        with pytest.raises(ValidationError) as exc_info:
            apply_funds(make_goal(), delta)
        assert exc_info.value.fields == ["delta"]

    @pytest.mark.parametrize("delta", [None, "abc", "NaN", "Infinity"])
    def test_non_numeric_delta_rejected(self, delta):
        with pytest.raises(ValidationError):
            apply_funds(make_goal(), delta)

    @pytest.mark.parametrize("delta", ["0.005", Decimal("10.999"), "300.001"])
    def test_sub_cent_delta_rejected(self, delta):
        with pytest.raises(ValidationError) as exc_info:
            apply_funds(make_goal(current="4800"), delta)
        assert exc_info.value.issues[0].issue_type == "invalid_format"


class TestGoalFlow:
    """Tests for goal persistence through the flow."""

    def test_create_goal(self, goal_flow, goals, audit_storage):
        goal = run(goal_flow.create_goal(OWNER, {
            "title": "Vacation",
            "target_amount": Decimal("2000"),
            "deadline": date(2025, 6, 1),
        }))

        assert goal.current_amount == Decimal("0")
        assert goal.reached is False
        assert run(goals.find_one(id=goal.id)) == goal
        assert event_types(audit_storage) == ["record_created"]

    def test_create_goal_already_reached(self, goal_flow):
        goal = run(goal_flow.create_goal(OWNER, {
            "title": "Small win",
            "target_amount": Decimal("100"),
            "current_amount": Decimal("150"),
        }))
        assert goal.reached is True

    def test_create_goal_requires_positive_target(self, goal_flow, goals):
        with pytest.raises(ValidationError):
            run(goal_flow.create_goal(OWNER, {"title": "Nothing", "target_amount": 0}))
        assert len(goals) == 0

    def test_create_goal_requires_title(self, goal_flow):
        with pytest.raises(ValidationError):
            run(goal_flow.create_goal(OWNER, {"target_amount": Decimal("100")}))

    def test_add_funds_persists(self, goal_flow, goals, audit_storage):
        goal = run(goals.insert(make_goal(current="4800")))

        updated = run(goal_flow.add_funds(OWNER, goal.id, Decimal("300")))

        assert updated.current_amount == Decimal("5100")
        assert updated.reached is True
        stored = run(goals.find_one(id=goal.id))
        assert stored.current_amount == Decimal("5100")
        assert stored.reached is True
        assert event_types(audit_storage) == ["goal_reached"]

    def test_add_funds_below_target(self, goal_flow, goals, audit_storage):
        goal = run(goals.insert(make_goal(current="100")))

        updated = run(goal_flow.add_funds(OWNER, goal.id, "100"))

        assert updated.current_amount == Decimal("200")
        assert updated.reached is False
        assert event_types(audit_storage) == ["goal_funded"]

    def test_overshoot_is_kept(self, goal_flow, goals):
        goal = run(goals.insert(make_goal(target="1000", current="900")))

        updated = run(goal_flow.add_funds(OWNER, goal.id, Decimal("500")))

        assert updated.current_amount == Decimal("1400")
        assert updated.reached is True

    def test_funding_a_reached_goal_is_not_reached_again(self, goal_flow, goals, audit_storage):
        goal = run(goals.insert(make_goal(target="100", current="0")))
        run(goal_flow.add_funds(OWNER, goal.id, Decimal("100")))
        run(goal_flow.add_funds(OWNER, goal.id, Decimal("50")))

        assert event_types(audit_storage) == ["goal_reached", "goal_funded"]

    def test_rejected_delta_writes_nothing(self, goal_flow, goals):
        goal = run(goals.insert(make_goal(current="4800")))

        with pytest.raises(ValidationError):
            run(goal_flow.add_funds(OWNER, goal.id, Decimal("-300")))

        assert run(goals.find_one(id=goal.id)).current_amount == Decimal("4800")

    def test_sub_cent_delta_is_audited_and_writes_nothing(self, goal_flow, goals, audit_storage):
        goal = run(goals.insert(make_goal(current="4800")))

        with pytest.raises(ValidationError):
            run(goal_flow.add_funds(OWNER, goal.id, "0.005"))

        stored = run(goals.find_one(id=goal.id))
        assert stored.current_amount == Decimal("4800")
        assert stored.reached is False
        assert event_types(audit_storage) == ["validation_failed"]

    def test_add_funds_missing_goal(self, goal_flow):
        with pytest.raises(NotFoundError):
            run(goal_flow.add_funds(OWNER, uuid4(), Decimal("10")))

    def test_add_funds_other_owner(self, goal_flow, goals):
        goal = run(goals.insert(make_goal()))
        with pytest.raises(NotFoundError):
            run(goal_flow.add_funds(OTHER_OWNER, goal.id, Decimal("10")))

    def test_lowering_target_recomputes_reached(self, goal_flow, goals):
        goal = run(goals.insert(make_goal(target="5000", current="3000")))

        updated = run(goal_flow.update_goal(OWNER, goal.id, {"target_amount": Decimal("2500")}))

        assert updated.reached is True

    def test_raising_target_clears_reached(self, goal_flow, goals):
        goal = run(goals.insert(make_goal(target="100", current="100").model_copy(update={"reached": True})))

        updated = run(goal_flow.update_goal(OWNER, goal.id, {"target_amount": Decimal("500")}))

        assert updated.reached is False

    @pytest.mark.parametrize("field", ["current_amount", "reached", "owner_id"])
    def test_derived_fields_cannot_be_edited(self, goal_flow, goals, field):
        goal = run(goals.insert(make_goal()))
        with pytest.raises(ValidationError) as exc_info:
            run(goal_flow.update_goal(OWNER, goal.id, {field: Decimal("1")}))
        assert exc_info.value.fields == [field]

    def test_delete_goal(self, goal_flow, goals):
        goal = run(goals.insert(make_goal()))

        run(goal_flow.delete_goal(OWNER, goal.id))

        assert len(goals) == 0

    def test_delete_missing_goal(self, goal_flow):
        with pytest.raises(NotFoundError):
            run(goal_flow.delete_goal(OWNER, uuid4()))

    def test_list_goals_is_per_owner(self, goal_flow, goals):
        run(goals.insert(make_goal()))
        run(goals.insert(Goal(owner_id=OTHER_OWNER, title="Car", target_amount=Decimal("9000"))))

        assert [g.title for g in run(goal_flow.list_goals(OWNER))] == ["Emergency fund"]
