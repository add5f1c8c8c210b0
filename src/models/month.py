"""
Month Key Value Type

Budget state is keyed by month as the literal string "YYYY-MM".
All month arithmetic goes through MonthKey so that no call site
parses or increments the string by hand.

The string form sorts lexicographically in chronological order,
which is what the storage layer relies on for `month <= X` filters.
"""

import re
from datetime import date, datetime, timezone
from functools import total_ordering
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from src.errors import ValidationError


MONTH_KEY_PATTERN = re.compile(r"^\d{4}-\d{2}$")

MONTH_LABELS = [
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
]


@total_ordering
class MonthKey(BaseModel):
    """A calendar month, e.g. MonthKey.parse("2026-02")."""

    model_config = ConfigDict(frozen=True)

    year: int = Field(..., ge=1, le=9999)
    month: int = Field(..., ge=1, le=12)

    @classmethod
    def parse(cls, value: str) -> "MonthKey":
        """
        Parse a strict "YYYY-MM" key.

        Raises:
            ValidationError: if the key is not four digits, a dash and two
                digits, or the month is outside 01..12.
        """
        if not isinstance(value, str) or not MONTH_KEY_PATTERN.match(value):
            raise ValidationError(
                f"Invalid month {value!r} (expected YYYY-MM)",
                field="month",
            )
        year, month = int(value[:4]), int(value[5:])
        if not 1 <= month <= 12 or year < 1:
            raise ValidationError(
                f"Invalid month {value!r} (month must be 01..12)",
                field="month",
            )
        return cls(year=year, month=month)

    @classmethod
    def from_date(cls, value: date) -> "MonthKey":
        return cls(year=value.year, month=value.month)

    def next(self) -> "MonthKey":
        if self.month == 12:
            return MonthKey(year=self.year + 1, month=1)
        return MonthKey(year=self.year, month=self.month + 1)

    def prev(self) -> "MonthKey":
        if self.month == 1:
            return MonthKey(year=self.year - 1, month=12)
        return MonthKey(year=self.year, month=self.month - 1)

    def compare(self, other: "MonthKey") -> int:
        """Return -1, 0 or 1 like a classic comparator."""
        mine = (self.year, self.month)
        theirs = (other.year, other.month)
        return (mine > theirs) - (mine < theirs)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, MonthKey):
            return NotImplemented
        return self.compare(other) < 0

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MonthKey):
            return NotImplemented
        return self.year == other.year and self.month == other.month

    def __hash__(self) -> int:
        return hash((self.year, self.month))

    @property
    def start(self) -> datetime:
        """First instant of the month (UTC midnight on day 1)."""
        return datetime(self.year, self.month, 1, tzinfo=timezone.utc)

    @property
    def end(self) -> datetime:
        """First instant of the following month; the range is [start, end)."""
        return self.next().start

    def range(self) -> tuple[datetime, datetime]:
        return self.start, self.end

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end

    def label(self) -> str:
        """Display form, e.g. "Feb 2026"."""
        return f"{MONTH_LABELS[self.month - 1]} {self.year}"

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


def current_month(today: Optional[date] = None) -> MonthKey:
    return MonthKey.from_date(today or date.today())
