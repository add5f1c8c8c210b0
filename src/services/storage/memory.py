"""
In-Memory Storage Implementation

Used by tests and for running the flows without a database.
Rows are kept as model copies in dicts; every read returns copies so
callers can never mutate stored state behind the store's back.
"""

from datetime import datetime
from typing import Iterable, Optional

from src.dates import ensure_aware
from src.models.audit import AuditEvent
from src.models.calendar import CalendarEvent, SubCalendar
from src.models.finance import (
    Account,
    Category,
    CategoryGroup,
    CategoryTarget,
    LedgerTransaction,
    MonthlyAssignment,
)
from src.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    EventStorageInterface,
    LedgerStorageInterface,
    NotFoundError,
)


class InMemoryEventStorage(EventStorageInterface):
    """Calendar storage backed by dicts."""

    def __init__(self):
        self._sub_calendars: dict[str, SubCalendar] = {}
        self._events: dict[str, CalendarEvent] = {}

    async def save_sub_calendar(self, sub_calendar: SubCalendar) -> SubCalendar:
        self._sub_calendars[sub_calendar.id] = sub_calendar.model_copy()
        return sub_calendar

    async def get_sub_calendar(
        self,
        user_id: str,
        sub_calendar_id: str,
    ) -> Optional[SubCalendar]:
        found = self._sub_calendars.get(sub_calendar_id)
        if found is None or found.user_id != user_id:
            return None
        return found.model_copy()

    async def list_visible_sub_calendar_ids(self, user_id: str) -> list[str]:
        calendars = [
            c for c in self._sub_calendars.values()
            if c.user_id == user_id and c.is_visible
        ]
        calendars.sort(key=lambda c: c.sort_order)
        return [c.id for c in calendars]

    async def save_event(self, event: CalendarEvent) -> CalendarEvent:
        if event.id in self._events:
            raise DuplicateError(f"Event already exists: {event.id}")
        self._events[event.id] = event.model_copy()
        return event

    async def get_event(self, user_id: str, event_id: str) -> Optional[CalendarEvent]:
        found = self._events.get(event_id)
        if found is None or found.user_id != user_id:
            return None
        return found.model_copy()

    async def update_event(self, event: CalendarEvent) -> CalendarEvent:
        existing = self._events.get(event.id)
        if existing is None or existing.user_id != event.user_id:
            raise NotFoundError(f"Event not found: {event.id}")
        self._events[event.id] = event.model_copy()
        return event

    async def delete_event(self, user_id: str, event_id: str) -> bool:
        existing = self._events.get(event_id)
        if existing is None or existing.user_id != user_id:
            return False
        del self._events[event_id]
        return True

    async def delete_exceptions(self, user_id: str, parent_event_id: str) -> int:
        doomed = [
            e.id for e in self._events.values()
            if e.user_id == user_id and e.parent_event_id == parent_event_id
        ]
        for event_id in doomed:
            del self._events[event_id]
        return len(doomed)

    def _owned(self, user_id: str, sub_calendar_ids: Iterable[str]) -> list[CalendarEvent]:
        visible = set(sub_calendar_ids)
        return [
            e for e in self._events.values()
            if e.user_id == user_id and e.sub_calendar_id in visible
        ]

    async def list_regular_events(
        self,
        user_id: str,
        sub_calendar_ids: Iterable[str],
        range_start: datetime,
        range_end: datetime,
    ) -> list[CalendarEvent]:
        range_start, range_end = ensure_aware(range_start), ensure_aware(range_end)
        events = [
            e.model_copy() for e in self._owned(user_id, sub_calendar_ids)
            if e.frequency is None
            and e.parent_event_id is None
            and not e.is_locally_deleted
            and e.start <= range_end
            and e.end >= range_start
        ]
        events.sort(key=lambda e: e.start)
        return events

    async def list_recurring_masters(
        self,
        user_id: str,
        sub_calendar_ids: Iterable[str],
        range_start: datetime,
        range_end: datetime,
    ) -> list[CalendarEvent]:
        range_start, range_end = ensure_aware(range_start), ensure_aware(range_end)
        return [
            e.model_copy() for e in self._owned(user_id, sub_calendar_ids)
            if e.frequency is not None
            and e.parent_event_id is None
            and not e.is_locally_deleted
            and e.start <= range_end
            and (e.recurrence_end is None or e.recurrence_end >= range_start)
        ]

    async def list_exceptions(
        self,
        user_id: str,
        parent_event_ids: Iterable[str],
    ) -> list[CalendarEvent]:
        parents = set(parent_event_ids)
        return [
            e.model_copy() for e in self._events.values()
            if e.user_id == user_id and e.parent_event_id in parents
        ]


class InMemoryLedgerStorage(LedgerStorageInterface):
    """Ledger storage backed by dicts."""

    def __init__(self):
        self._groups: dict[str, CategoryGroup] = {}
        self._categories: dict[str, Category] = {}
        self._assignments: dict[tuple[str, str], MonthlyAssignment] = {}
        self._targets: dict[str, CategoryTarget] = {}
        self._accounts: dict[str, Account] = {}
        self._transactions: dict[str, LedgerTransaction] = {}

    async def save_category_group(self, group: CategoryGroup) -> CategoryGroup:
        self._groups[group.id] = group.model_copy()
        return group

    async def save_category(self, category: Category) -> Category:
        self._categories[category.id] = category.model_copy()
        return category

    async def get_category(self, user_id: str, category_id: str) -> Optional[Category]:
        found = self._categories.get(category_id)
        if found is None or found.user_id != user_id:
            return None
        return found.model_copy()

    async def list_groups_with_categories(
        self,
        user_id: str,
        include_hidden: bool = False,
    ) -> list[tuple[CategoryGroup, list[Category]]]:
        groups = [
            g for g in self._groups.values()
            if g.user_id == user_id and (include_hidden or not g.is_hidden)
        ]
        groups.sort(key=lambda g: g.sort_order)
        result = []
        for group in groups:
            categories = [
                c.model_copy() for c in self._categories.values()
                if c.group_id == group.id
                and c.user_id == user_id
                and (include_hidden or not c.is_hidden)
            ]
            categories.sort(key=lambda c: c.sort_order)
            result.append((group.model_copy(), categories))
        return result

    async def list_assignments(
        self,
        user_id: str,
        category_ids: Iterable[str],
        up_to_month: str,
    ) -> list[MonthlyAssignment]:
        wanted = set(category_ids)
        return [
            a.model_copy() for a in self._assignments.values()
            if a.user_id == user_id
            and a.category_id in wanted
            and a.month <= up_to_month
        ]

    async def get_assignment(
        self,
        user_id: str,
        category_id: str,
        month: str,
    ) -> Optional[MonthlyAssignment]:
        found = self._assignments.get((category_id, month))
        if found is None or found.user_id != user_id:
            return None
        return found.model_copy()

    async def upsert_assignment(self, assignment: MonthlyAssignment) -> MonthlyAssignment:
        self._assignments[assignment.key] = assignment.model_copy()
        return assignment

    async def list_targets(
        self,
        user_id: str,
        category_ids: Iterable[str],
    ) -> list[CategoryTarget]:
        wanted = set(category_ids)
        return [
            t.model_copy() for t in self._targets.values()
            if t.user_id == user_id and t.category_id in wanted
        ]

    async def get_target(self, user_id: str, category_id: str) -> Optional[CategoryTarget]:
        found = self._targets.get(category_id)
        if found is None or found.user_id != user_id:
            return None
        return found.model_copy()

    async def upsert_target(self, target: CategoryTarget) -> CategoryTarget:
        self._targets[target.category_id] = target.model_copy()
        return target

    async def delete_target(self, user_id: str, category_id: str) -> bool:
        found = self._targets.get(category_id)
        if found is None or found.user_id != user_id:
            return False
        del self._targets[category_id]
        return True

    async def save_account(self, account: Account) -> Account:
        self._accounts[account.id] = account.model_copy()
        return account

    async def get_account(self, user_id: str, account_id: str) -> Optional[Account]:
        found = self._accounts.get(account_id)
        if found is None or found.user_id != user_id:
            return None
        return found.model_copy()

    async def list_accounts(
        self,
        user_id: str,
        on_budget_only: bool = False,
        include_archived: bool = True,
    ) -> list[Account]:
        accounts = [
            a.model_copy() for a in self._accounts.values()
            if a.user_id == user_id
            and (not on_budget_only or a.on_budget)
            and (include_archived or not a.is_archived)
        ]
        accounts.sort(key=lambda a: (a.group.value, a.sort_order, a.name))
        return accounts

    async def save_transaction(self, transaction: LedgerTransaction) -> LedgerTransaction:
        self._transactions[transaction.id] = transaction.model_copy()
        return transaction

    async def list_transactions(
        self,
        user_id: str,
        category_ids: Optional[Iterable[str]] = None,
        account_ids: Optional[Iterable[str]] = None,
        date_from: Optional[datetime] = None,
        date_before: Optional[datetime] = None,
    ) -> list[LedgerTransaction]:
        categories = set(category_ids) if category_ids is not None else None
        accounts = set(account_ids) if account_ids is not None else None
        date_from = ensure_aware(date_from) if date_from else None
        date_before = ensure_aware(date_before) if date_before else None

        result = []
        for tx in self._transactions.values():
            if tx.user_id != user_id:
                continue
            if categories is not None and tx.category_id not in categories:
                continue
            if accounts is not None and tx.account_id not in accounts:
                continue
            if date_from is not None and tx.date < date_from:
                continue
            if date_before is not None and tx.date >= date_before:
                continue
            result.append(tx.model_copy())
        result.sort(key=lambda tx: tx.date)
        return result

    async def sum_transactions(
        self,
        user_id: str,
        account_ids: Iterable[str],
        date_before: Optional[datetime] = None,
    ) -> int:
        rows = await self.list_transactions(
            user_id,
            account_ids=list(account_ids),
            date_before=date_before,
        )
        return sum(tx.amount for tx in rows)


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only audit log kept in a list."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        return [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return list(reversed(self._events))[:limit]
