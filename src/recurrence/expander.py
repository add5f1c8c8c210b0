"""
Recurrence Expander

Turns one recurring master into the concrete occurrences that overlap a
query window.

DESIGN DECISION: Occurrence n is computed from the anchor
(start + n steps), not by stepping from occurrence n-1. With month steps
that matters: Jan 31 -> Feb 28 -> Mar 31 stays on the 31st where
possible, instead of drifting to the 28th for the rest of the series.

EDGE POLICY:
- Overlap is closed on both ends: an occurrence starting exactly at
  range_end, or ending exactly at range_start, is included.
- An occurrence whose start day matches an exception key is dropped.
  Surfacing the exception's own override is the caller's job.
- At most `max_iterations` steps are walked. Hitting the cap is not an
  error: the occurrences found so far are returned and a warning is
  logged.

The expander is a pure function of its inputs. It never reads storage.
"""

from datetime import date, datetime, timedelta
from typing import Iterable, Optional, Union

import structlog
from pydantic import BaseModel, Field

from src.config import get_settings
from src.dates import add_months, add_years, day_key, ensure_aware
from src.models.calendar import (
    ExceptionMarker,
    RecurrenceFrequency,
    RecurringEventRule,
    VirtualOccurrence,
)


logger = structlog.get_logger(__name__)

ExceptionKey = Union[str, date, ExceptionMarker]


class ExpansionResult(BaseModel):
    """Occurrences plus how much of the series was walked to find them."""
    occurrences: list[VirtualOccurrence] = Field(default_factory=list)
    iterations: int = 0
    truncated: bool = False


def virtual_id(parent_id: str, start: datetime) -> str:
    return f"{parent_id}__{day_key(start)}"


def exception_keys(exceptions: Iterable[ExceptionKey]) -> set[str]:
    """Normalize day keys, dates or markers to a set of "YYYY-MM-DD"."""
    keys = set()
    for item in exceptions:
        if isinstance(item, ExceptionMarker):
            keys.add(item.date_key)
        elif isinstance(item, date):
            keys.add(day_key(item))
        else:
            keys.add(item)
    return keys


def nth_occurrence_start(rule: RecurringEventRule, n: int) -> datetime:
    """Start of occurrence n (0 is the anchor itself)."""
    if rule.frequency is RecurrenceFrequency.DAILY:
        return rule.start + timedelta(days=n)
    if rule.frequency is RecurrenceFrequency.WEEKLY:
        return rule.start + timedelta(weeks=n)
    if rule.frequency is RecurrenceFrequency.MONTHLY:
        return add_months(rule.start, n)
    return add_years(rule.start, n)


def expand_with_stats(
    rule: RecurringEventRule,
    exceptions: Iterable[ExceptionKey],
    range_start: datetime,
    range_end: datetime,
    max_iterations: Optional[int] = None,
) -> ExpansionResult:
    """
    Expand a rule over [range_start, range_end].

    Args:
        rule: Validated recurrence rule
        exceptions: Day keys (or dates / markers) of suppressed occurrences
        range_start: Window start, inclusive
        range_end: Window end, inclusive
        max_iterations: Step cap; defaults to the configured value

    Returns:
        ExpansionResult with chronologically ordered occurrences
    """
    if max_iterations is None:
        max_iterations = get_settings().app.max_recurrence_iterations

    range_start, range_end = ensure_aware(range_start), ensure_aware(range_end)
    skipped = exception_keys(exceptions)
    duration = rule.duration

    limit = range_end
    if rule.recurrence_end is not None and rule.recurrence_end < limit:
        limit = rule.recurrence_end

    result = ExpansionResult()
    current = rule.start
    while current <= limit:
        if result.iterations >= max_iterations:
            result.truncated = True
            break
        result.iterations += 1

        occurrence_end = current + duration
        if (
            occurrence_end >= range_start
            and current <= range_end
            and day_key(current) not in skipped
        ):
            result.occurrences.append(VirtualOccurrence(
                parent_id=rule.id,
                start=current,
                end=occurrence_end,
                virtual_id=virtual_id(rule.id, current),
            ))

        current = nth_occurrence_start(rule, result.iterations)

    if result.truncated:
        logger.warning(
            "recurrence_truncated",
            event_id=rule.id,
            frequency=rule.frequency.value,
            iterations=result.iterations,
            emitted=len(result.occurrences),
        )

    return result


def expand(
    rule: RecurringEventRule,
    exceptions: Iterable[ExceptionKey],
    range_start: datetime,
    range_end: datetime,
    max_iterations: Optional[int] = None,
) -> list[VirtualOccurrence]:
    """Occurrences of `rule` overlapping [range_start, range_end], in order."""
    return expand_with_stats(
        rule,
        exceptions,
        range_start,
        range_end,
        max_iterations=max_iterations,
    ).occurrences
