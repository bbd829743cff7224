"""Savings goal package."""

from finance_tracker.goals.tracker import GoalProgressTracker, apply_funds, compute_reached

__all__ = ["GoalProgressTracker", "apply_funds", "compute_reached"]
