"""
Tests for CalendarFlow

Runs the calendar flow end-to-end against in-memory storage:
window listing, per-occurrence edits, moves and scoped deletes.
"""

import asyncio

import pytest
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from src.audit import AuditLogger
from src.dates import end_of_day
from src.errors import InvalidRuleError, ValidationError
from src.models.audit import AuditEventType
from src.models.calendar import DeleteMode, EditMode, EventChanges
from src.orchestrator import CalendarFlow
from src.services.storage import (
    InMemoryAuditStorage,
    InMemoryEventStorage,
    NotFoundError,
)


UTC = timezone.utc
AMSTERDAM = ZoneInfo("Europe/Amsterdam")
USER = "user-1"
JANUARY = (datetime(2026, 1, 1, tzinfo=UTC), datetime(2026, 1, 31, 23, 59, tzinfo=UTC))


def run(coro):
    return asyncio.run(coro)


class FlowTestCase:
    """Shared setup: a flow with audit logging and one visible sub-calendar."""

    def setup_method(self):
        self.storage = InMemoryEventStorage()
        self.audit_storage = InMemoryAuditStorage()
        self.flow = CalendarFlow(self.storage, AuditLogger(self.audit_storage))
        self.calendar = run(self.flow.create_sub_calendar(USER, "Work"))

    def standup(self, **overrides):
        """Weekly Monday standup from 2026-01-05 09:00 UTC."""
        values = dict(
            title="Standup",
            start=datetime(2026, 1, 5, 9, 0, tzinfo=UTC),
            end=datetime(2026, 1, 5, 9, 30, tzinfo=UTC),
            frequency="WEEKLY",
        )
        values.update(overrides)
        return run(self.flow.create_event(USER, self.calendar.id, **values))

    def january(self, user_id=USER):
        return run(self.flow.list_events(user_id, *JANUARY))


class TestListEvents(FlowTestCase):
    """Tests for merging regular events, virtual occurrences and exceptions."""

    def test_virtual_occurrences(self):
        """Test a weekly master expands to every Monday in the window."""
        master = self.standup()
        entries = self.january()
        assert [e.start.day for e in entries] == [5, 12, 19, 26]
        assert all(e.is_virtual for e in entries)
        assert entries[1].entry_id == f"{master.id}__2026-01-12"

    def test_merged_with_regular_events_sorted(self):
        """Test regular events interleave with occurrences by start."""
        self.standup()
        lunch = run(self.flow.create_event(
            USER,
            self.calendar.id,
            "Lunch",
            datetime(2026, 1, 14, 12, tzinfo=UTC),
            datetime(2026, 1, 14, 13, tzinfo=UTC),
        ))
        entries = self.january()
        assert [e.start.day for e in entries] == [5, 12, 14, 19, 26]
        assert entries[2].event.id == lunch.id
        assert not entries[2].is_virtual

    def test_hidden_sub_calendar_excluded(self):
        """Test events on invisible sub-calendars are not listed."""
        hidden = run(self.flow.create_sub_calendar(USER, "Private", is_visible=False))
        run(self.flow.create_event(
            USER,
            hidden.id,
            "Dentist",
            datetime(2026, 1, 8, 15, tzinfo=UTC),
            datetime(2026, 1, 8, 16, tzinfo=UTC),
        ))
        assert self.january() == []

    def test_other_user_sees_nothing(self):
        """Test listing is scoped to the requesting user."""
        self.standup()
        assert self.january(user_id="someone-else") == []

    def test_reversed_window_rejected(self):
        """Test end before start raises ValidationError."""
        with pytest.raises(ValidationError):
            run(self.flow.list_events(USER, JANUARY[1], JANUARY[0]))

    def test_truncation_is_audited(self):
        """Test hitting the iteration cap records a warning audit event."""
        flow = CalendarFlow(self.storage, AuditLogger(self.audit_storage), max_iterations=5)
        master = run(flow.create_event(
            USER,
            self.calendar.id,
            "Pills",
            datetime(2026, 1, 1, 8, tzinfo=UTC),
            datetime(2026, 1, 1, 8, 5, tzinfo=UTC),
            frequency="DAILY",
        ))
        entries = run(flow.list_events(USER, *JANUARY))
        assert len(entries) == 5

        events = run(self.audit_storage.get_events_by_entity("event", master.id))
        truncated = [e for e in events if e.event_type == AuditEventType.RECURRENCE_TRUNCATED]
        assert len(truncated) == 1
        assert truncated[0].details == {"iterations": 5, "emitted": 5}


class TestLocalTimezone(FlowTestCase):
    """Tests for a weekly series at 00:30 Amsterdam time."""

    def night_shift(self):
        return self.standup(
            title="Night shift",
            start=datetime(2026, 1, 5, 0, 30, tzinfo=AMSTERDAM),
            end=datetime(2026, 1, 5, 1, 0, tzinfo=AMSTERDAM),
        )

    def test_delete_this_on_local_day(self):
        """Test deleting the local Jan 12 occurrence removes exactly that one."""
        master = self.night_shift()
        run(self.flow.delete_event(USER, master.id, DeleteMode.THIS, "2026-01-12"))

        entries = run(self.flow.list_events(
            USER,
            datetime(2026, 1, 1, tzinfo=AMSTERDAM),
            datetime(2026, 1, 31, 23, 59, tzinfo=AMSTERDAM),
        ))
        local = [e.start.astimezone(AMSTERDAM) for e in entries]
        assert [s.strftime("%m-%d %H:%M") for s in local] == [
            "01-05 00:30", "01-19 00:30", "01-26 00:30",
        ]
        assert [e.entry_id for e in entries] == [
            f"{master.id}__2026-01-05",
            f"{master.id}__2026-01-19",
            f"{master.id}__2026-01-26",
        ]

    def test_summer_occurrence_keeps_local_time(self):
        """Test the series stays at 00:30 local after the DST switch."""
        master = self.night_shift()
        entries = run(self.flow.list_events(
            USER,
            datetime(2026, 7, 1, tzinfo=AMSTERDAM),
            datetime(2026, 7, 10, tzinfo=AMSTERDAM),
        ))
        assert len(entries) == 1
        assert entries[0].start.astimezone(AMSTERDAM).strftime("%m-%d %H:%M") == "07-06 00:30"
        assert entries[0].start.utcoffset() == timedelta(hours=2)
        assert entries[0].entry_id == f"{master.id}__2026-07-06"


class TestCreateAndUpdate(FlowTestCase):
    """Tests for event creation and series-wide updates."""

    def test_create_recurring_master(self):
        """Test create_event with a frequency stores a master."""
        master = self.standup(frequency="weekly")
        stored = run(self.storage.get_event(USER, master.id))
        assert stored.is_recurring
        assert stored.frequency.value == "WEEKLY"

    def test_create_audited(self):
        """Test event creation is audited."""
        master = self.standup()
        events = run(self.audit_storage.get_events_by_entity("event", master.id))
        assert [e.event_type for e in events] == [AuditEventType.EVENT_CREATED]

    def test_recurring_with_non_positive_duration(self):
        """Test a recurring event ending before it starts is an invalid rule."""
        with pytest.raises(InvalidRuleError):
            self.standup(end=datetime(2026, 1, 5, 8, tzinfo=UTC))
        with pytest.raises(InvalidRuleError):
            self.standup(end=datetime(2026, 1, 5, 9, 0, tzinfo=UTC))

    def test_unknown_frequency(self):
        """Test an unknown frequency is an invalid rule."""
        with pytest.raises(InvalidRuleError):
            self.standup(frequency="HOURLY")

    def test_regular_event_end_before_start(self):
        """Test a regular event ending before it starts is a validation error."""
        with pytest.raises(ValidationError):
            run(self.flow.create_event(
                USER,
                self.calendar.id,
                "Backwards",
                datetime(2026, 1, 5, 10, tzinfo=UTC),
                datetime(2026, 1, 5, 9, tzinfo=UTC),
            ))

    def test_foreign_sub_calendar(self):
        """Test creating on another user's sub-calendar raises NotFoundError."""
        other = run(self.flow.create_sub_calendar("someone-else", "Theirs"))
        with pytest.raises(NotFoundError):
            run(self.flow.create_event(
                USER,
                other.id,
                "Sneaky",
                datetime(2026, 1, 5, 10, tzinfo=UTC),
                datetime(2026, 1, 5, 11, tzinfo=UTC),
            ))

    def test_update_series_title(self):
        """Test update_event renames every occurrence."""
        master = self.standup()
        run(self.flow.update_event(USER, master.id, EventChanges(title="Daily sync")))
        assert {e.event.title for e in self.january()} == {"Daily sync"}

    def test_update_ical_event_marks_local_modification(self):
        """Test editing an iCal-sourced row sets is_locally_modified."""
        master = self.standup(ical_uid="abc@example.com")
        updated = run(self.flow.update_event(USER, master.id, EventChanges(location="Room 2")))
        assert updated.is_locally_modified
        assert updated.location == "Room 2"

    def test_update_unknown_event(self):
        """Test updating a missing event raises NotFoundError."""
        with pytest.raises(NotFoundError):
            run(self.flow.update_event(USER, "missing", EventChanges(title="x")))


class TestEditOccurrence(FlowTestCase):
    """Tests for single-occurrence edits."""

    def test_edit_writes_exception(self):
        """Test editing one occurrence leaves the others virtual."""
        master = self.standup()
        exception = run(self.flow.edit_occurrence(
            USER, master.id, "2026-01-12", EventChanges(title="Retro")
        ))
        assert exception.parent_event_id == master.id
        assert exception.original_date == date(2026, 1, 12)

        entries = self.january()
        assert [e.start.day for e in entries] == [5, 12, 19, 26]
        assert [e.is_virtual for e in entries] == [True, False, True, True]
        assert entries[1].event.title == "Retro"
        assert run(self.storage.get_event(USER, master.id)).title == "Standup"

    def test_edit_twice_updates_same_exception(self):
        """Test a second edit on the same day doesn't create a duplicate."""
        master = self.standup()
        first = run(self.flow.edit_occurrence(
            USER, master.id, date(2026, 1, 12), EventChanges(title="Retro")
        ))
        second = run(self.flow.edit_occurrence(
            USER, master.id, date(2026, 1, 12), EventChanges(location="Room 4")
        ))
        assert first.id == second.id
        assert second.title == "Retro"
        assert len(run(self.storage.list_exceptions(USER, [master.id]))) == 1

    def test_edit_non_recurring(self):
        """Test editing an occurrence of a regular event is rejected."""
        single = self.standup(frequency=None)
        with pytest.raises(ValidationError):
            run(self.flow.edit_occurrence(USER, single.id, "2026-01-05", EventChanges(title="x")))

    def test_edit_bad_date(self):
        """Test a malformed original_date is rejected."""
        master = self.standup()
        with pytest.raises(ValidationError):
            run(self.flow.edit_occurrence(USER, master.id, "12/01/2026", EventChanges(title="x")))

    def test_edit_ical_occurrence_marked_modified(self):
        """Test exceptions of iCal series are flagged as locally modified."""
        master = self.standup(ical_uid="abc@example.com")
        exception = run(self.flow.edit_occurrence(
            USER, master.id, "2026-01-19", EventChanges(title="Moved")
        ))
        assert exception.is_locally_modified


class TestMoveEvent(FlowTestCase):
    """Tests for moving events and occurrences."""

    def test_move_this_occurrence(self):
        """Test moving one occurrence to another day."""
        master = self.standup()
        run(self.flow.move_event(
            USER,
            master.id,
            datetime(2026, 1, 20, 10, tzinfo=UTC),
            datetime(2026, 1, 20, 10, 30, tzinfo=UTC),
            edit_mode=EditMode.THIS,
            original_date="2026-01-19",
        ))
        entries = self.january()
        assert [e.start.day for e in entries] == [5, 12, 20, 26]
        assert entries[2].event.original_date == date(2026, 1, 19)

    def test_move_this_requires_original_date(self):
        """Test moving a single occurrence without its date is rejected."""
        master = self.standup()
        with pytest.raises(ValidationError):
            run(self.flow.move_event(
                USER,
                master.id,
                datetime(2026, 1, 20, 10, tzinfo=UTC),
                datetime(2026, 1, 20, 10, 30, tzinfo=UTC),
                edit_mode="this",
            ))

    def test_move_all_shifts_series(self):
        """Test moving the master moves every occurrence."""
        master = self.standup()
        run(self.flow.move_event(
            USER,
            master.id,
            datetime(2026, 1, 5, 11, tzinfo=UTC),
            datetime(2026, 1, 5, 11, 30, tzinfo=UTC),
        ))
        assert {e.start.hour for e in self.january()} == {11}

    def test_move_regular_event(self):
        """Test moving a regular event ignores the edit mode."""
        single = self.standup(frequency=None)
        moved = run(self.flow.move_event(
            USER,
            single.id,
            datetime(2026, 1, 6, 9, tzinfo=UTC),
            datetime(2026, 1, 6, 9, 30, tzinfo=UTC),
            edit_mode="this",
        ))
        assert moved.id == single.id
        assert moved.start.day == 6

    def test_move_unknown_mode(self):
        """Test an unknown edit mode is rejected."""
        master = self.standup()
        with pytest.raises(ValidationError):
            run(self.flow.move_event(
                USER,
                master.id,
                datetime(2026, 1, 5, 11, tzinfo=UTC),
                datetime(2026, 1, 5, 12, tzinfo=UTC),
                edit_mode="some",
            ))


class TestDeleteEvent(FlowTestCase):
    """Tests for scoped deletes."""

    def test_delete_this(self):
        """Test deleting one occurrence writes a deleted marker."""
        master = self.standup()
        run(self.flow.delete_event(USER, master.id, DeleteMode.THIS, "2026-01-12"))

        assert [e.start.day for e in self.january()] == [5, 19, 26]
        markers = run(self.storage.list_exceptions(USER, [master.id]))
        assert len(markers) == 1
        assert markers[0].is_locally_deleted

    def test_delete_this_after_edit(self):
        """Test deleting an edited occurrence removes it from the window."""
        master = self.standup()
        run(self.flow.edit_occurrence(USER, master.id, "2026-01-12", EventChanges(title="Retro")))
        run(self.flow.delete_event(USER, master.id, "this", "2026-01-12"))

        assert [e.start.day for e in self.january()] == [5, 19, 26]
        assert len(run(self.storage.list_exceptions(USER, [master.id]))) == 1

    def test_delete_this_requires_original_date(self):
        """Test THIS on a series without a date is rejected."""
        master = self.standup()
        with pytest.raises(ValidationError):
            run(self.flow.delete_event(USER, master.id, DeleteMode.THIS))
        assert run(self.storage.get_event(USER, master.id)) is not None

    def test_delete_future(self):
        """Test deleting from the 19th on ends the series on the 18th."""
        master = self.standup()
        run(self.flow.delete_event(USER, master.id, DeleteMode.FUTURE, date(2026, 1, 19)))

        assert [e.start.day for e in self.january()] == [5, 12]
        stored = run(self.storage.get_event(USER, master.id))
        assert stored.recurrence_end == end_of_day(date(2026, 1, 18))

    def test_delete_future_hides_later_edits(self):
        """Test an edited occurrence after the new series end is no longer listed."""
        master = self.standup()
        run(self.flow.edit_occurrence(USER, master.id, "2026-01-26", EventChanges(title="Retro")))
        run(self.flow.delete_event(USER, master.id, DeleteMode.FUTURE, "2026-01-19"))

        entries = self.january()
        assert [e.start.day for e in entries] == [5, 12]
        assert "Retro" not in {e.event.title for e in entries}

    def test_delete_future_keeps_earlier_edits(self):
        """Test an edit before the new series end is still listed."""
        master = self.standup()
        run(self.flow.edit_occurrence(USER, master.id, "2026-01-12", EventChanges(title="Retro")))
        run(self.flow.delete_event(USER, master.id, DeleteMode.FUTURE, "2026-01-19"))

        entries = self.january()
        assert [e.start.day for e in entries] == [5, 12]
        assert entries[1].event.title == "Retro"

    def test_delete_future_from_first_occurrence(self):
        """Test ending a series before it starts deletes the series."""
        master = self.standup()
        run(self.flow.delete_event(USER, master.id, DeleteMode.FUTURE, "2026-01-05"))
        assert run(self.storage.get_event(USER, master.id)) is None
        assert self.january() == []

    def test_delete_all_removes_exceptions(self):
        """Test deleting a series also deletes its exception rows."""
        master = self.standup()
        run(self.flow.edit_occurrence(USER, master.id, "2026-01-12", EventChanges(title="Retro")))
        run(self.flow.delete_event(USER, master.id))

        assert run(self.storage.get_event(USER, master.id)) is None
        assert run(self.storage.list_exceptions(USER, [master.id])) == []
        assert self.january() == []

    def test_delete_ical_event_is_soft(self):
        """Test iCal-sourced rows are flagged deleted, not removed."""
        master = self.standup(ical_uid="abc@example.com")
        run(self.flow.delete_event(USER, master.id, DeleteMode.ALL))

        stored = run(self.storage.get_event(USER, master.id))
        assert stored is not None
        assert stored.is_locally_deleted
        assert self.january() == []

    def test_delete_exception_row(self):
        """Test deleting an exception row keeps its day suppressed."""
        master = self.standup()
        exception = run(self.flow.edit_occurrence(
            USER, master.id, "2026-01-12", EventChanges(title="Retro")
        ))
        run(self.flow.delete_event(USER, exception.id))

        assert run(self.storage.get_event(USER, exception.id)).is_locally_deleted
        assert [e.start.day for e in self.january()] == [5, 19, 26]

    def test_delete_this_on_regular_event(self):
        """Test THIS on a regular event deletes the event."""
        single = self.standup(frequency=None)
        run(self.flow.delete_event(USER, single.id, DeleteMode.THIS))
        assert run(self.storage.get_event(USER, single.id)) is None

    def test_delete_unknown_mode(self):
        """Test an unknown delete mode is rejected."""
        master = self.standup()
        with pytest.raises(ValidationError):
            run(self.flow.delete_event(USER, master.id, "some"))

    def test_delete_other_users_event(self):
        """Test another user's event is indistinguishable from a missing one."""
        master = self.standup()
        with pytest.raises(NotFoundError):
            run(self.flow.delete_event("someone-else", master.id))
        assert run(self.storage.get_event(USER, master.id)) is not None

    def test_delete_audited(self):
        """Test scoped deletes record matching audit events."""
        master = self.standup()
        run(self.flow.delete_event(USER, master.id, DeleteMode.THIS, "2026-01-12"))
        run(self.flow.delete_event(USER, master.id, DeleteMode.FUTURE, "2026-01-26"))

        types = [
            e.event_type
            for e in run(self.audit_storage.get_events_by_entity("event", master.id))
        ]
        assert AuditEventType.OCCURRENCE_DELETED in types
        assert AuditEventType.SERIES_ENDED in types


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
