"""
Planner - Source Package

The core of a personal planner: recurring calendar events with
per-occurrence exceptions, and a zero-sum envelope budget.

DESIGN PRINCIPLES:
1. Occurrences are computed, never stored
2. Budget figures are derived from assignments and transactions, never stored
3. Fail early, fail visibly: bad input is rejected before storage is touched
4. Every state change is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Planner Team"
