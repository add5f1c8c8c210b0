"""Recurring event expansion."""

from src.recurrence.expander import (
    ExpansionResult,
    exception_keys,
    expand,
    expand_with_stats,
    nth_occurrence_start,
    virtual_id,
)

__all__ = [
    "ExpansionResult",
    "exception_keys",
    "expand",
    "expand_with_stats",
    "nth_occurrence_start",
    "virtual_id",
]
