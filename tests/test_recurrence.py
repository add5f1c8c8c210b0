"""
Tests for the recurrence expander

The expander is pure, so these tests build rules directly and never
touch storage.
"""

import random

import pytest
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from src.errors import InvalidRuleError
from src.models.calendar import ExceptionMarker, RecurringEventRule
from src.recurrence import (
    exception_keys,
    expand,
    expand_with_stats,
    nth_occurrence_start,
    virtual_id,
)


UTC = timezone.utc
AMSTERDAM = ZoneInfo("Europe/Amsterdam")


def _rule(start, end, frequency="WEEKLY", recurrence_end=None, rule_id="evt"):
    return RecurringEventRule(
        id=rule_id,
        start=start,
        end=end,
        frequency=frequency,
        recurrence_end=recurrence_end,
    )


def _weekly_standup():
    return _rule(
        datetime(2025, 1, 6, 9, tzinfo=UTC),
        datetime(2025, 1, 6, 10, tzinfo=UTC),
    )


JANUARY = (datetime(2025, 1, 1, tzinfo=UTC), datetime(2025, 1, 31, tzinfo=UTC))


class TestWeeklyScenarios:
    """Tests for the reference weekly event."""

    def test_weekly_january(self):
        """Test Jan 6, 13, 20, 27 each 09:00-10:00."""
        occurrences = expand(_weekly_standup(), set(), *JANUARY)
        assert [o.start.day for o in occurrences] == [6, 13, 20, 27]
        for occurrence in occurrences:
            assert occurrence.start.hour == 9
            assert occurrence.end.hour == 10

    def test_exception_suppresses_occurrence(self):
        """Test that an exception on Jan 13 leaves Jan 6, 20, 27."""
        occurrences = expand(_weekly_standup(), {"2025-01-13"}, *JANUARY)
        assert [o.start.day for o in occurrences] == [6, 20, 27]

    def test_virtual_ids(self):
        """Test virtual ids are parent id + day key."""
        occurrences = expand(_weekly_standup(), set(), *JANUARY)
        assert occurrences[0].virtual_id == "evt__2025-01-06"
        assert occurrences[0].parent_id == "evt"
        assert virtual_id("x", datetime(2025, 3, 4, 23, tzinfo=UTC)) == "x__2025-03-04"

    def test_exceptions_accept_dates_and_markers(self):
        """Test that dates and ExceptionMarker objects suppress like keys."""
        marker = ExceptionMarker(parent_event_id="evt", original_date=date(2025, 1, 20))
        occurrences = expand(_weekly_standup(), [date(2025, 1, 13), marker], *JANUARY)
        assert [o.start.day for o in occurrences] == [6, 27]

    def test_exception_keys_normalization(self):
        """Test exception key normalization."""
        keys = exception_keys(["2025-01-01", date(2025, 1, 2), datetime(2025, 1, 3, 8, tzinfo=UTC)])
        assert keys == {"2025-01-01", "2025-01-02", "2025-01-03"}


class TestWindowBoundaries:
    """Tests for closed-interval overlap."""

    def test_occurrence_starting_at_range_end_included(self):
        """Test an occurrence starting exactly at range_end is included."""
        rule = _weekly_standup()
        occurrences = expand(
            rule, set(),
            datetime(2025, 1, 10, tzinfo=UTC),
            datetime(2025, 1, 13, 9, tzinfo=UTC),
        )
        assert [o.start.day for o in occurrences] == [13]

    def test_occurrence_ending_at_range_start_included(self):
        """Test an occurrence ending exactly at range_start is included."""
        rule = _weekly_standup()
        occurrences = expand(
            rule, set(),
            datetime(2025, 1, 13, 10, tzinfo=UTC),
            datetime(2025, 1, 19, tzinfo=UTC),
        )
        assert [o.start.day for o in occurrences] == [13]

    def test_occurrences_strictly_outside_excluded(self):
        """Test occurrences just outside the window are excluded."""
        rule = _weekly_standup()
        occurrences = expand(
            rule, set(),
            datetime(2025, 1, 13, 10, 0, 1, tzinfo=UTC),
            datetime(2025, 1, 20, 8, 59, 59, tzinfo=UTC),
        )
        assert occurrences == []

    def test_recurrence_end_limits_series(self):
        """Test no occurrence starts after recurrence_end."""
        rule = _rule(
            datetime(2025, 1, 6, 9, tzinfo=UTC),
            datetime(2025, 1, 6, 10, tzinfo=UTC),
            recurrence_end=datetime(2025, 1, 20, 9, tzinfo=UTC),
        )
        occurrences = expand(rule, set(), *JANUARY)
        assert [o.start.day for o in occurrences] == [6, 13, 20]

    def test_window_before_series_is_empty(self):
        """Test a window entirely before the anchor."""
        occurrences = expand(
            _weekly_standup(), set(),
            datetime(2024, 12, 1, tzinfo=UTC),
            datetime(2024, 12, 31, tzinfo=UTC),
        )
        assert occurrences == []

    def test_naive_window_treated_as_utc(self):
        """Test naive window bounds are treated as UTC."""
        occurrences = expand(_weekly_standup(), set(), datetime(2025, 1, 1), datetime(2025, 1, 31))
        assert len(occurrences) == 4


class TestFrequencies:
    """Tests for each frequency step."""

    def test_daily(self):
        """Test daily occurrences over a week."""
        rule = _rule(
            datetime(2025, 3, 1, 7, tzinfo=UTC),
            datetime(2025, 3, 1, 7, 30, tzinfo=UTC),
            frequency="DAILY",
        )
        occurrences = expand(
            rule, set(),
            datetime(2025, 3, 1, tzinfo=UTC),
            datetime(2025, 3, 7, 23, tzinfo=UTC),
        )
        assert len(occurrences) == 7

    def test_monthly_clamps_without_drift(self):
        """Test Jan 31 monthly: Feb 28, Mar 31, Apr 30."""
        rule = _rule(
            datetime(2025, 1, 31, 12, tzinfo=UTC),
            datetime(2025, 1, 31, 13, tzinfo=UTC),
            frequency="MONTHLY",
        )
        occurrences = expand(
            rule, set(),
            datetime(2025, 1, 1, tzinfo=UTC),
            datetime(2025, 5, 1, tzinfo=UTC),
        )
        assert [o.start.date() for o in occurrences] == [
            date(2025, 1, 31),
            date(2025, 2, 28),
            date(2025, 3, 31),
            date(2025, 4, 30),
        ]

    def test_monthly_leap_year(self):
        """Test Jan 31 monthly lands on Feb 29 in a leap year."""
        rule = _rule(
            datetime(2024, 1, 31, tzinfo=UTC),
            datetime(2024, 1, 31, 1, tzinfo=UTC),
            frequency="MONTHLY",
        )
        assert nth_occurrence_start(rule, 1).date() == date(2024, 2, 29)

    def test_yearly_leap_day(self):
        """Test Feb 29 yearly: Feb 28 in common years, Feb 29 in leap years."""
        rule = _rule(
            datetime(2024, 2, 29, 8, tzinfo=UTC),
            datetime(2024, 2, 29, 9, tzinfo=UTC),
            frequency="YEARLY",
        )
        occurrences = expand(
            rule, set(),
            datetime(2024, 1, 1, tzinfo=UTC),
            datetime(2028, 12, 31, tzinfo=UTC),
        )
        assert [o.start.date() for o in occurrences] == [
            date(2024, 2, 29),
            date(2025, 2, 28),
            date(2026, 2, 28),
            date(2027, 2, 28),
            date(2028, 2, 29),
        ]

    def test_multi_day_occurrence_overlapping_window_start(self):
        """Test an occurrence that started before the window but overlaps it."""
        rule = _rule(
            datetime(2025, 1, 1, 20, tzinfo=UTC),
            datetime(2025, 1, 3, 8, tzinfo=UTC),
            frequency="WEEKLY",
        )
        occurrences = expand(
            rule, set(),
            datetime(2025, 1, 9, tzinfo=UTC),
            datetime(2025, 1, 9, 12, tzinfo=UTC),
        )
        assert [o.start.date() for o in occurrences] == [date(2025, 1, 8)]


class TestLocalTimezone:
    """Tests for a series anchored shortly after local midnight in Amsterdam."""

    def _rule(self):
        return _rule(
            datetime(2026, 1, 5, 0, 30, tzinfo=AMSTERDAM),
            datetime(2026, 1, 5, 1, 0, tzinfo=AMSTERDAM),
        )

    def test_day_keys_use_local_calendar(self):
        """Test virtual ids carry the local day, not the UTC day."""
        occurrences = expand(
            self._rule(), set(),
            datetime(2026, 1, 1, tzinfo=AMSTERDAM),
            datetime(2026, 1, 31, 23, 59, tzinfo=AMSTERDAM),
        )
        assert [o.virtual_id for o in occurrences] == [
            "evt__2026-01-05",
            "evt__2026-01-12",
            "evt__2026-01-19",
            "evt__2026-01-26",
        ]
        # 00:30 CET is still the previous day in UTC
        assert occurrences[0].start.astimezone(UTC).date() == date(2026, 1, 4)

    def test_exception_on_local_day(self):
        """Test an exception keyed by the local day suppresses that occurrence."""
        occurrences = expand(
            self._rule(), {"2026-01-12"},
            datetime(2026, 1, 1, tzinfo=AMSTERDAM),
            datetime(2026, 1, 25, tzinfo=AMSTERDAM),
        )
        assert [o.start.day for o in occurrences] == [5, 19]

    def test_wall_clock_kept_across_dst(self):
        """Test a summer occurrence stays at 00:30 local under CEST."""
        occurrences = expand(
            self._rule(), set(),
            datetime(2026, 7, 1, tzinfo=AMSTERDAM),
            datetime(2026, 7, 10, tzinfo=AMSTERDAM),
        )
        assert len(occurrences) == 1
        start = occurrences[0].start
        assert (start.month, start.day, start.hour, start.minute) == (7, 6, 0, 30)
        assert start.utcoffset() == timedelta(hours=2)
        assert occurrences[0].virtual_id == "evt__2026-07-06"
        assert occurrences[0].end - start == timedelta(minutes=30)


class TestProperties:
    """Property checks over randomized rules and windows."""

    @pytest.mark.parametrize("seed", range(20))
    def test_duration_and_exceptions_hold(self, seed):
        """Test duration preservation and exception suppression."""
        rng = random.Random(seed)
        frequency = rng.choice(["DAILY", "WEEKLY", "MONTHLY", "YEARLY"])
        start = datetime(2020, 1, 1, tzinfo=UTC) + timedelta(
            days=rng.randrange(0, 400),
            minutes=rng.randrange(0, 24 * 60),
        )
        duration = timedelta(minutes=rng.randrange(1, 3 * 24 * 60))
        rule = _rule(start, start + duration, frequency=frequency)

        window_start = start + timedelta(days=rng.randrange(-30, 300))
        window_end = window_start + timedelta(days=rng.randrange(0, 400))

        everything = expand(rule, set(), window_start, window_end)
        skipped = {o.start.date().isoformat() for o in everything[::3]}
        kept = expand(rule, skipped, window_start, window_end)

        for occurrence in everything:
            assert occurrence.end - occurrence.start == duration
            assert occurrence.end >= window_start
            assert occurrence.start <= window_end
        for occurrence in kept:
            assert occurrence.start.date().isoformat() not in skipped
        assert len(kept) == len(everything) - len(skipped)
        assert [o.start for o in everything] == sorted(o.start for o in everything)


class TestIterationCap:
    """Tests for the hard iteration cap."""

    def test_cap_truncates_daily_series(self):
        """Test a decades-long daily series stops at the cap."""
        rule = _rule(
            datetime(2000, 1, 1, 9, tzinfo=UTC),
            datetime(2000, 1, 1, 10, tzinfo=UTC),
            frequency="DAILY",
        )
        result = expand_with_stats(
            rule, set(),
            datetime(2000, 1, 1, tzinfo=UTC),
            datetime(2040, 1, 1, tzinfo=UTC),
            max_iterations=1000,
        )
        assert result.truncated
        assert result.iterations == 1000
        assert len(result.occurrences) == 1000
        assert result.occurrences[-1].start == datetime(2002, 9, 26, 9, tzinfo=UTC)

    def test_cap_counts_steps_before_window(self):
        """Test steps walked before the window count toward the cap."""
        rule = _rule(
            datetime(2000, 1, 1, 9, tzinfo=UTC),
            datetime(2000, 1, 1, 10, tzinfo=UTC),
            frequency="DAILY",
        )
        occurrences = expand(
            rule, set(),
            datetime(2010, 1, 1, tzinfo=UTC),
            datetime(2010, 1, 31, tzinfo=UTC),
            max_iterations=1000,
        )
        assert occurrences == []

    def test_default_cap_from_settings(self):
        """Test the configured default cap is 1000."""
        rule = _rule(
            datetime(2000, 1, 1, tzinfo=UTC),
            datetime(2000, 1, 1, 1, tzinfo=UTC),
            frequency="DAILY",
        )
        result = expand_with_stats(
            rule, set(),
            datetime(2000, 1, 1, tzinfo=UTC),
            datetime(2100, 1, 1, tzinfo=UTC),
        )
        assert result.iterations == 1000
        assert result.truncated

    def test_series_ending_exactly_at_cap_not_truncated(self):
        """Test a series that fits in the cap is not flagged."""
        rule = _rule(
            datetime(2000, 1, 1, tzinfo=UTC),
            datetime(2000, 1, 1, 1, tzinfo=UTC),
            frequency="DAILY",
            recurrence_end=datetime(2000, 1, 10, tzinfo=UTC),
        )
        result = expand_with_stats(
            rule, set(),
            datetime(2000, 1, 1, tzinfo=UTC),
            datetime(2001, 1, 1, tzinfo=UTC),
            max_iterations=10,
        )
        assert len(result.occurrences) == 10
        assert not result.truncated


class TestInvalidRules:
    """Tests for rules that must never reach the loop."""

    def test_unknown_frequency(self):
        """Test InvalidRuleError for an unknown frequency."""
        with pytest.raises(InvalidRuleError):
            _rule(
                datetime(2025, 1, 1, tzinfo=UTC),
                datetime(2025, 1, 1, 1, tzinfo=UTC),
                frequency="FORTNIGHTLY",
            )

    def test_zero_duration(self):
        """Test InvalidRuleError for a zero-length occurrence."""
        moment = datetime(2025, 1, 1, tzinfo=UTC)
        with pytest.raises(InvalidRuleError):
            _rule(moment, moment)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
