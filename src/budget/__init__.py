"""Envelope budget computation."""

from src.budget.calculator import BudgetCalculator, compute_target_progress

__all__ = ["BudgetCalculator", "compute_target_progress"]
