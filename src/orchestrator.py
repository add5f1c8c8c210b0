"""
Main Orchestrator for the Planner

This module ties together all the components and defines the
end-to-end flows for:
1. Calendar (window listing, event creation, per-occurrence edits,
   moves and scoped deletes of recurring series)
2. Budget (monthly snapshot, assignments, money moves, targets)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Every input is validated before storage is touched
- Every row read or written is scoped to an explicit user_id
- Every state change is audited

This is the "glue" that ensures the system works correctly
even when individual components might behave unexpectedly.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional, Union

import structlog

from src.audit import AuditLogger, create_correlation_id
from src.budget import BudgetCalculator
from src.config import get_settings
from src.dates import end_of_day, ensure_aware
from src.models.calendar import (
    CalendarEntry,
    CalendarEvent,
    DeleteMode,
    EditMode,
    EventChanges,
    RecurrenceFrequency,
    RecurringEventRule,
    SubCalendar,
    new_id,
)
from src.models.finance import (
    Account,
    AccountBalance,
    AccountGroup,
    AccountType,
    Category,
    CategoryGroup,
    CategoryTarget,
    LedgerTransaction,
    MonthBudget,
    MonthlyAssignment,
    RefillType,
    TargetType,
)
from src.recurrence import expand_with_stats
from src.services.storage import (
    EventStorageInterface,
    InMemoryAuditStorage,
    InMemoryEventStorage,
    InMemoryLedgerStorage,
    LedgerStorageInterface,
    NotFoundError,
    SqlAuditStorage,
    SqlDatabase,
    SqlEventStorage,
    SqlLedgerStorage,
)
from src.validation import (
    ValidationError,
    model_errors_as_validation,
    require_id,
    validate_amount,
    validate_day,
    validate_month_key,
    validate_non_negative_amount,
    validate_positive_amount,
    validate_window,
)


logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _check_rule(
    event_id: str,
    start: Any,
    end: Any,
    frequency: Any,
    recurrence_end: Any,
) -> RecurringEventRule:
    """
    Validate a recurrence before any event row is built from it.

    Raises:
        InvalidRuleError: unknown frequency or non-positive duration
        ValidationError: malformed start/end values
    """
    with model_errors_as_validation():
        return RecurringEventRule(
            id=event_id,
            start=start,
            end=end,
            frequency=frequency,
            recurrence_end=recurrence_end,
        )


class CalendarFlow:
    """
    Orchestrates calendar reads and edits.

    Recurring masters are stored once; their occurrences are expanded
    per request. Editing or deleting a single occurrence writes an
    exception row keyed by (master id, original day) instead of touching
    the master.
    """

    def __init__(
        self,
        event_storage: EventStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        max_iterations: Optional[int] = None,
    ):
        self._storage = event_storage
        self._audit_logger = audit_logger
        self._max_iterations = max_iterations

    async def create_sub_calendar(
        self,
        user_id: str,
        name: str,
        color: str = "#6C63FF",
        is_visible: bool = True,
        sort_order: int = 0,
    ) -> SubCalendar:
        user_id = require_id(user_id, "user_id")
        with model_errors_as_validation():
            sub_calendar = SubCalendar(
                user_id=user_id,
                name=name,
                color=color,
                is_visible=is_visible,
                sort_order=sort_order,
            )
        return await self._storage.save_sub_calendar(sub_calendar)

    async def _require_event(self, user_id: str, event_id: str) -> CalendarEvent:
        event = await self._storage.get_event(user_id, require_id(event_id, "event_id"))
        if event is None:
            raise NotFoundError(f"Event not found: {event_id}")
        return event

    async def _require_sub_calendar(self, user_id: str, sub_calendar_id: str) -> SubCalendar:
        sub_calendar_id = require_id(sub_calendar_id, "sub_calendar_id")
        sub_calendar = await self._storage.get_sub_calendar(user_id, sub_calendar_id)
        if sub_calendar is None:
            raise NotFoundError(f"Sub-calendar not found: {sub_calendar_id}")
        return sub_calendar

    async def list_events(
        self,
        user_id: str,
        range_start: datetime,
        range_end: datetime,
    ) -> list[CalendarEntry]:
        """
        Everything visible in [range_start, range_end], sorted by start.

        Merges three sources:
        1. Regular events overlapping the window
        2. Virtual occurrences of recurring masters (minus exception days)
        3. Non-deleted exception rows overlapping the window
        """
        user_id = require_id(user_id, "user_id")
        range_start, range_end = validate_window(range_start, range_end)

        visible = await self._storage.list_visible_sub_calendar_ids(user_id)
        if not visible:
            return []

        entries = [
            CalendarEntry(event=e, start=e.start, end=e.end)
            for e in await self._storage.list_regular_events(
                user_id, visible, range_start, range_end
            )
        ]

        masters = await self._storage.list_recurring_masters(
            user_id, visible, range_start, range_end
        )
        if masters:
            exceptions = await self._storage.list_exceptions(
                user_id, [m.id for m in masters]
            )
            by_parent: dict[str, list[CalendarEvent]] = {}
            for exception in exceptions:
                by_parent.setdefault(exception.parent_event_id, []).append(exception)

            for master in masters:
                children = by_parent.get(master.id, [])
                result = expand_with_stats(
                    master.to_rule(),
                    [c.original_date for c in children],
                    range_start,
                    range_end,
                    max_iterations=self._max_iterations,
                )
                if result.truncated and self._audit_logger:
                    await self._audit_logger.log_recurrence_truncated(
                        event_id=master.id,
                        iterations=result.iterations,
                        emitted=len(result.occurrences),
                    )
                entries.extend(
                    CalendarEntry(
                        event=master,
                        start=occurrence.start,
                        end=occurrence.end,
                        is_virtual=True,
                        virtual_id=occurrence.virtual_id,
                    )
                    for occurrence in result.occurrences
                )
                last_day = None
                if master.recurrence_end is not None:
                    last_day = master.recurrence_end.astimezone(master.start.tzinfo).date()
                # Edits of days after a "delete future" belong to the removed tail
                entries.extend(
                    CalendarEntry(event=c, start=c.start, end=c.end)
                    for c in children
                    if not c.is_locally_deleted
                    and (last_day is None or c.original_date <= last_day)
                    and c.start <= range_end
                    and c.end >= range_start
                )

        entries.sort(key=lambda entry: entry.start)
        return entries

    async def create_event(
        self,
        user_id: str,
        sub_calendar_id: str,
        title: str,
        start: datetime,
        end: datetime,
        description: Optional[str] = None,
        location: Optional[str] = None,
        is_all_day: bool = False,
        frequency: Optional[Union[RecurrenceFrequency, str]] = None,
        recurrence_end: Optional[datetime] = None,
        ical_uid: Optional[str] = None,
    ) -> CalendarEvent:
        """
        Create a regular event, or a recurring master when `frequency` is set.

        Raises:
            ValidationError: malformed fields
            InvalidRuleError: unknown frequency or non-positive duration
            NotFoundError: sub-calendar missing or owned by someone else
        """
        user_id = require_id(user_id, "user_id")
        event_id = new_id()
        if frequency is not None:
            frequency = _check_rule(event_id, start, end, frequency, recurrence_end).frequency

        with model_errors_as_validation():
            event = CalendarEvent(
                id=event_id,
                user_id=user_id,
                sub_calendar_id=require_id(sub_calendar_id, "sub_calendar_id"),
                title=title,
                description=description,
                location=location,
                start=start,
                end=end,
                is_all_day=is_all_day,
                frequency=frequency,
                recurrence_end=recurrence_end,
                ical_uid=ical_uid,
            )

        await self._require_sub_calendar(user_id, event.sub_calendar_id)
        await self._storage.save_event(event)

        if self._audit_logger:
            await self._audit_logger.log_event_created(
                user_id=user_id,
                event_id=event.id,
                title=event.title,
                recurring=event.is_recurring,
            )
        return event

    async def update_event(
        self,
        user_id: str,
        event_id: str,
        changes: EventChanges,
    ) -> CalendarEvent:
        """Apply `changes` to the stored row (the whole series for a master)."""
        user_id = require_id(user_id, "user_id")
        existing = await self._require_event(user_id, event_id)

        values = changes.applied_to(existing)
        values["updated_at"] = _utcnow()
        if existing.ical_uid:
            values["is_locally_modified"] = True
        if values.get("frequency") is not None and values.get("parent_event_id") is None:
            values["frequency"] = _check_rule(
                existing.id,
                values["start"],
                values["end"],
                values["frequency"],
                values.get("recurrence_end"),
            ).frequency

        with model_errors_as_validation():
            updated = CalendarEvent(**values)
        if updated.sub_calendar_id != existing.sub_calendar_id:
            await self._require_sub_calendar(user_id, updated.sub_calendar_id)

        await self._storage.update_event(updated)

        if self._audit_logger:
            await self._audit_logger.log_event_updated(
                user_id=user_id,
                event_id=updated.id,
                fields=list(changes.model_fields_set),
            )
        return updated

    async def _find_exception(
        self,
        user_id: str,
        master: CalendarEvent,
        original_date: date,
    ) -> Optional[CalendarEvent]:
        for exception in await self._storage.list_exceptions(user_id, [master.id]):
            if exception.original_date == original_date:
                return exception
        return None

    def _occurrence_on(self, master: CalendarEvent, original_date: date) -> CalendarEvent:
        """The un-modified occurrence of `master` starting on `original_date`."""
        start = datetime.combine(original_date, master.start.timetz())
        return CalendarEvent(
            user_id=master.user_id,
            sub_calendar_id=master.sub_calendar_id,
            title=master.title,
            description=master.description,
            location=master.location,
            start=start,
            end=start + (master.end - master.start),
            is_all_day=master.is_all_day,
            parent_event_id=master.id,
            original_date=original_date,
            is_locally_modified=bool(master.ical_uid),
        )

    async def edit_occurrence(
        self,
        user_id: str,
        event_id: str,
        original_date: Union[date, str],
        changes: EventChanges,
    ) -> CalendarEvent:
        """
        Edit one occurrence of a recurring master.

        Writes (or updates) the exception row for that day; the master
        and every other occurrence are untouched.
        """
        user_id = require_id(user_id, "user_id")
        original_date = validate_day(original_date)
        master = await self._require_event(user_id, event_id)
        if not master.is_recurring:
            raise ValidationError(
                f"Event {master.id} is not a recurring series",
                field="event_id",
            )

        existing = await self._find_exception(user_id, master, original_date)
        base = existing or self._occurrence_on(master, original_date)

        values = changes.applied_to(base)
        values["updated_at"] = _utcnow()
        with model_errors_as_validation():
            exception = CalendarEvent(**values)
        if exception.sub_calendar_id != master.sub_calendar_id:
            await self._require_sub_calendar(user_id, exception.sub_calendar_id)

        if existing is None:
            await self._storage.save_event(exception)
        else:
            await self._storage.update_event(exception)

        if self._audit_logger:
            await self._audit_logger.log_occurrence_edited(
                user_id=user_id,
                parent_event_id=master.id,
                exception_id=exception.id,
                original_date=original_date.isoformat(),
            )
        return exception

    async def move_event(
        self,
        user_id: str,
        event_id: str,
        new_start: datetime,
        new_end: datetime,
        edit_mode: Union[EditMode, str] = EditMode.ALL,
        original_date: Optional[Union[date, str]] = None,
    ) -> CalendarEvent:
        """
        Move an event to a new time slot.

        For a recurring master, EditMode.THIS moves only the occurrence on
        `original_date`; EditMode.ALL moves the master (and with it the
        whole series).
        """
        user_id = require_id(user_id, "user_id")
        try:
            edit_mode = EditMode(edit_mode)
        except ValueError:
            raise ValidationError(f"Unknown edit mode: {edit_mode!r}", field="edit_mode")
        new_start, new_end = validate_window(new_start, new_end)
        changes = EventChanges(start=new_start, end=new_end)

        existing = await self._require_event(user_id, event_id)
        if edit_mode is EditMode.THIS and existing.is_recurring:
            if original_date is None:
                raise ValidationError(
                    "original_date is required to move a single occurrence",
                    field="original_date",
                )
            return await self.edit_occurrence(user_id, event_id, original_date, changes)

        return await self.update_event(user_id, event_id, changes)

    async def delete_event(
        self,
        user_id: str,
        event_id: str,
        mode: Union[DeleteMode, str] = DeleteMode.ALL,
        original_date: Optional[Union[date, str]] = None,
    ) -> None:
        """
        Delete an event or part of a recurring series.

        THIS:   mark the occurrence on `original_date` deleted
        FUTURE: end the series the day before `original_date`
        ALL:    remove the event; iCal-sourced rows and exception rows
                are only flagged deleted so a re-sync won't resurrect them

        THIS and FUTURE only apply to recurring masters. On any other
        event they behave like ALL.
        """
        user_id = require_id(user_id, "user_id")
        try:
            mode = DeleteMode(mode)
        except ValueError:
            raise ValidationError(f"Unknown delete mode: {mode!r}", field="mode")

        existing = await self._require_event(user_id, event_id)

        if mode is not DeleteMode.ALL and existing.is_recurring:
            day = validate_day(original_date)
            if mode is DeleteMode.THIS:
                await self._delete_occurrence(user_id, existing, day)
                return
            if await self._end_series(user_id, existing, day):
                return
            # Ending before the first occurrence removes the whole series

        if existing.ical_uid or existing.is_exception:
            soft_deleted = existing.model_copy(update={
                "is_locally_deleted": True,
                "updated_at": _utcnow(),
            })
            await self._storage.update_event(soft_deleted)
            soft = True
        else:
            removed = await self._storage.delete_exceptions(user_id, existing.id)
            await self._storage.delete_event(user_id, existing.id)
            logger.info(
                "event_deleted",
                user_id=user_id,
                event_id=existing.id,
                exceptions_removed=removed,
            )
            soft = False

        if self._audit_logger:
            await self._audit_logger.log_event_deleted(user_id, existing.id, soft)

    async def _delete_occurrence(
        self,
        user_id: str,
        master: CalendarEvent,
        original_date: date,
    ) -> None:
        existing = await self._find_exception(user_id, master, original_date)
        if existing is None:
            marker = self._occurrence_on(master, original_date).model_copy(update={
                "is_locally_deleted": True,
                "is_locally_modified": False,
            })
            await self._storage.save_event(marker)
        else:
            await self._storage.update_event(existing.model_copy(update={
                "is_locally_deleted": True,
                "updated_at": _utcnow(),
            }))

        if self._audit_logger:
            await self._audit_logger.log_occurrence_deleted(
                user_id=user_id,
                parent_event_id=master.id,
                original_date=original_date.isoformat(),
            )

    async def _end_series(
        self,
        user_id: str,
        master: CalendarEvent,
        original_date: date,
    ) -> bool:
        # Last instant of the previous day, in the series' own timezone
        recurrence_end = end_of_day(
            original_date - timedelta(days=1),
            tz=master.start.tzinfo,
        )
        if recurrence_end < master.start:
            return False
        updated = master.model_copy(update={
            "recurrence_end": recurrence_end,
            "updated_at": _utcnow(),
        })
        await self._storage.update_event(updated)

        if self._audit_logger:
            await self._audit_logger.log_series_ended(
                user_id=user_id,
                parent_event_id=master.id,
                recurrence_end=recurrence_end.isoformat(),
            )
        return True


class BudgetFlow:
    """
    Orchestrates the envelope budget.

    Reads go through BudgetCalculator; the only budget writes are
    assignment upserts (set_assigned, move_money) and target upserts.
    """

    def __init__(
        self,
        ledger_storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        calculator: Optional[BudgetCalculator] = None,
    ):
        self._storage = ledger_storage
        self._audit_logger = audit_logger
        self._calculator = calculator or BudgetCalculator(ledger_storage)

    async def _require_category(self, user_id: str, category_id: Any) -> Category:
        category_id = require_id(category_id, "category_id")
        category = await self._storage.get_category(user_id, category_id)
        if category is None:
            raise NotFoundError(f"Category not found: {category_id}")
        return category

    async def _require_account(self, user_id: str, account_id: Any) -> Account:
        account_id = require_id(account_id, "account_id")
        account = await self._storage.get_account(user_id, account_id)
        if account is None:
            raise NotFoundError(f"Account not found: {account_id}")
        return account

    # -- setup ----------------------------------------------------------------

    async def create_account(
        self,
        user_id: str,
        name: str,
        account_type: Union[AccountType, str] = AccountType.CHECKING,
        group: Union[AccountGroup, str] = AccountGroup.CASH,
        start_balance: int = 0,
        currency: Optional[str] = None,
    ) -> Account:
        """Create an account. Only CASH-group accounts are on-budget."""
        user_id = require_id(user_id, "user_id")
        start_balance = validate_amount(start_balance, "start_balance")
        with model_errors_as_validation():
            account = Account(
                user_id=user_id,
                name=name,
                account_type=account_type,
                group=group,
                start_balance=start_balance,
                currency=currency or get_settings().app.default_currency,
            )
        account = account.model_copy(update={"on_budget": account.group.on_budget})
        return await self._storage.save_account(account)

    async def create_category_group(
        self,
        user_id: str,
        name: str,
        sort_order: int = 0,
        is_hidden: bool = False,
    ) -> CategoryGroup:
        user_id = require_id(user_id, "user_id")
        with model_errors_as_validation():
            group = CategoryGroup(
                user_id=user_id,
                name=name,
                sort_order=sort_order,
                is_hidden=is_hidden,
            )
        return await self._storage.save_category_group(group)

    async def create_category(
        self,
        user_id: str,
        group_id: str,
        name: str,
        sort_order: int = 0,
        is_hidden: bool = False,
    ) -> Category:
        user_id = require_id(user_id, "user_id")
        group_id = require_id(group_id, "group_id")
        owned = {
            g.id for g, _ in await self._storage.list_groups_with_categories(
                user_id, include_hidden=True
            )
        }
        if group_id not in owned:
            raise NotFoundError(f"Category group not found: {group_id}")
        with model_errors_as_validation():
            category = Category(
                user_id=user_id,
                group_id=group_id,
                name=name,
                sort_order=sort_order,
                is_hidden=is_hidden,
            )
        return await self._storage.save_category(category)

    async def record_transaction(
        self,
        user_id: str,
        account_id: str,
        amount: int,
        transaction_date: datetime,
        category_id: Optional[str] = None,
        payee: Optional[str] = None,
        memo: Optional[str] = None,
        is_cleared: bool = False,
    ) -> LedgerTransaction:
        """Record a signed transaction (+ inflow, - outflow) in cents."""
        user_id = require_id(user_id, "user_id")
        amount = validate_amount(amount)
        await self._require_account(user_id, account_id)
        if category_id is not None:
            await self._require_category(user_id, category_id)
        with model_errors_as_validation():
            transaction = LedgerTransaction(
                user_id=user_id,
                account_id=account_id,
                category_id=category_id,
                date=transaction_date,
                amount=amount,
                payee=payee,
                memo=memo,
                is_cleared=is_cleared,
            )
        return await self._storage.save_transaction(transaction)

    # -- budget ---------------------------------------------------------------

    async def compute_month(self, user_id: str, month: Any) -> MonthBudget:
        """
        Budget snapshot for one month.

        Raises:
            ValidationError: month is not a YYYY-MM key
        """
        user_id = require_id(user_id, "user_id")
        month_key = validate_month_key(month)

        budget = await self._calculator.compute_month(user_id, month_key)

        if self._audit_logger:
            await self._audit_logger.log_budget_computed(
                user_id=user_id,
                month=budget.month,
                ready_to_assign=budget.ready_to_assign,
                category_count=len(budget.all_budgets),
            )
        return budget

    async def set_assigned(
        self,
        user_id: str,
        category_id: str,
        month: Any,
        amount: int,
    ) -> MonthlyAssignment:
        """
        Set (replace, never add to) the amount assigned for one month.

        Calling it twice with the same arguments leaves the same state.

        Raises:
            ValidationError: bad month key or non-integer amount
            NotFoundError: category missing or owned by someone else
        """
        user_id = require_id(user_id, "user_id")
        month_key = str(validate_month_key(month))
        amount = validate_amount(amount)
        category = await self._require_category(user_id, category_id)

        previous = await self._storage.get_assignment(user_id, category.id, month_key)
        assignment = await self._storage.upsert_assignment(MonthlyAssignment(
            user_id=user_id,
            category_id=category.id,
            month=month_key,
            assigned=amount,
        ))

        if self._audit_logger:
            await self._audit_logger.log_assignment_set(
                user_id=user_id,
                category_id=category.id,
                month=month_key,
                assigned=amount,
                previous=previous.assigned if previous else None,
            )
        return assignment

    async def move_money(
        self,
        user_id: str,
        from_category_id: Optional[str],
        to_category_id: str,
        month: Any,
        amount: int,
    ) -> list[MonthlyAssignment]:
        """
        Move `amount` of this month's assignment between categories.

        `from_category_id=None` moves money out of ready-to-assign, so only
        the destination changes. Both categories are checked before either
        row is written.
        """
        user_id = require_id(user_id, "user_id")
        month_key = str(validate_month_key(month))
        amount = validate_positive_amount(amount)
        if from_category_id is not None and from_category_id == to_category_id:
            raise ValidationError(
                "Source and destination category are the same",
                field="to_category_id",
            )

        destination = await self._require_category(user_id, to_category_id)
        source = None
        if from_category_id is not None:
            source = await self._require_category(user_id, from_category_id)

        correlation_id = create_correlation_id()
        moves = [(destination, amount)]
        if source is not None:
            moves.insert(0, (source, -amount))

        written = []
        for category, delta in moves:
            previous = await self._storage.get_assignment(user_id, category.id, month_key)
            before = previous.assigned if previous else 0
            written.append(await self._storage.upsert_assignment(MonthlyAssignment(
                user_id=user_id,
                category_id=category.id,
                month=month_key,
                assigned=before + delta,
            )))
            if self._audit_logger:
                await self._audit_logger.log_assignment_set(
                    user_id=user_id,
                    category_id=category.id,
                    month=month_key,
                    assigned=before + delta,
                    previous=before,
                    correlation_id=correlation_id,
                )

        if self._audit_logger:
            await self._audit_logger.log_money_moved(
                user_id=user_id,
                from_category_id=source.id if source else None,
                to_category_id=destination.id,
                month=month_key,
                amount=amount,
                correlation_id=correlation_id,
            )
        return written

    async def set_target(
        self,
        user_id: str,
        category_id: str,
        target_type: Union[TargetType, str],
        amount: int,
        day_of_month: Optional[int] = None,
        refill_type: Union[RefillType, str] = RefillType.REFILL,
    ) -> CategoryTarget:
        """Create or replace the category's single target."""
        user_id = require_id(user_id, "user_id")
        amount = validate_non_negative_amount(amount)
        category = await self._require_category(user_id, category_id)

        with model_errors_as_validation():
            target = CategoryTarget(
                category_id=category.id,
                user_id=user_id,
                target_type=target_type,
                amount=amount,
                day_of_month=day_of_month,
                refill_type=refill_type or RefillType.REFILL,
            )
        await self._storage.upsert_target(target)

        if self._audit_logger:
            await self._audit_logger.log_target_set(
                user_id=user_id,
                category_id=category.id,
                target_type=target.target_type.value,
                amount=target.amount,
                refill_type=target.refill_type.value,
            )
        return target

    async def delete_target(self, user_id: str, category_id: str) -> None:
        """
        Raises:
            NotFoundError: the category has no target (or isn't the user's)
        """
        user_id = require_id(user_id, "user_id")
        category_id = require_id(category_id, "category_id")
        if not await self._storage.delete_target(user_id, category_id):
            raise NotFoundError(f"No target for category: {category_id}")

        if self._audit_logger:
            await self._audit_logger.log_target_deleted(user_id, category_id)

    async def account_balances(
        self,
        user_id: str,
        as_of: Optional[datetime] = None,
    ) -> list[AccountBalance]:
        """start_balance + sum of transactions (dated before `as_of`, if given)."""
        user_id = require_id(user_id, "user_id")
        as_of = ensure_aware(as_of) if as_of is not None else None

        balances = []
        for account in await self._storage.list_accounts(user_id):
            activity = await self._storage.sum_transactions(
                user_id, [account.id], date_before=as_of
            )
            balances.append(AccountBalance(
                account=account,
                balance=account.start_balance + activity,
            ))
        return balances


def create_app_components(
    use_database: bool = True,
    database_url: Optional[str] = None,
) -> tuple[CalendarFlow, BudgetFlow, Optional[SqlDatabase]]:
    """
    Factory function to create all application components.

    Args:
        use_database: Whether to use the SQL backend.
                      Set to False for in-memory storage (tests, demos).
        database_url: Overrides DATABASE_URL.

    Returns:
        (calendar_flow, budget_flow, database)
    """
    database = None

    if use_database:
        try:
            database = SqlDatabase(url=database_url)
            database.connect()
            event_storage = SqlEventStorage(database)
            ledger_storage = SqlLedgerStorage(database)
            audit_logger = AuditLogger(SqlAuditStorage(database))
        except Exception as e:
            # Database not reachable - continue in memory
            logger.warning("database_unavailable", error=str(e))
            database = None

    if database is None:
        event_storage = InMemoryEventStorage()
        ledger_storage = InMemoryLedgerStorage()
        audit_logger = AuditLogger(InMemoryAuditStorage())

    calendar_flow = CalendarFlow(
        event_storage=event_storage,
        audit_logger=audit_logger,
        max_iterations=get_settings().app.max_recurrence_iterations,
    )

    budget_flow = BudgetFlow(
        ledger_storage=ledger_storage,
        audit_logger=audit_logger,
    )

    return calendar_flow, budget_flow, database
