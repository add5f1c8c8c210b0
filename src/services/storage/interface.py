"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Run the same flows against SQLite, PostgreSQL or memory
2. Use in-memory storage for testing
3. Keep calendar and budget logic decoupled from the store

The interface is intentionally simple - we're not building a full ORM.
Just the reads the expander and the budget calculator need, plus the
few writes the flows perform.

Every method takes an explicit user_id. There is no ambient "current
user": a row owned by another user is indistinguishable from a missing
one.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, Optional

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


class EventStorageInterface(ABC):
    """
    Abstract interface for calendar event storage.

    Masters, exceptions and regular events share one table; see
    src.models.calendar for how the roles are told apart.
    """

    @abstractmethod
    async def save_sub_calendar(self, sub_calendar: SubCalendar) -> SubCalendar:
        pass

    @abstractmethod
    async def get_sub_calendar(
        self,
        user_id: str,
        sub_calendar_id: str,
    ) -> Optional[SubCalendar]:
        pass

    @abstractmethod
    async def list_visible_sub_calendar_ids(self, user_id: str) -> list[str]:
        pass

    @abstractmethod
    async def save_event(self, event: CalendarEvent) -> CalendarEvent:
        """
        Insert a new event row.

        Raises:
            DuplicateError: if an event with the same id exists
        """
        pass

    @abstractmethod
    async def get_event(self, user_id: str, event_id: str) -> Optional[CalendarEvent]:
        """Return the event if it exists AND belongs to user_id."""
        pass

    @abstractmethod
    async def update_event(self, event: CalendarEvent) -> CalendarEvent:
        """
        Replace an existing event row.

        Raises:
            NotFoundError: if the event doesn't exist for event.user_id
        """
        pass

    @abstractmethod
    async def delete_event(self, user_id: str, event_id: str) -> bool:
        pass

    @abstractmethod
    async def delete_exceptions(self, user_id: str, parent_event_id: str) -> int:
        """Delete every exception row of a master. Returns the count."""
        pass

    @abstractmethod
    async def list_regular_events(
        self,
        user_id: str,
        sub_calendar_ids: Iterable[str],
        range_start: datetime,
        range_end: datetime,
    ) -> list[CalendarEvent]:
        """
        Non-recurring, non-exception, non-deleted events overlapping
        [range_start, range_end] (closed on both ends), by start.
        """
        pass

    @abstractmethod
    async def list_recurring_masters(
        self,
        user_id: str,
        sub_calendar_ids: Iterable[str],
        range_start: datetime,
        range_end: datetime,
    ) -> list[CalendarEvent]:
        """
        Non-deleted masters with start <= range_end and
        (no recurrence_end or recurrence_end >= range_start).
        """
        pass

    @abstractmethod
    async def list_exceptions(
        self,
        user_id: str,
        parent_event_ids: Iterable[str],
    ) -> list[CalendarEvent]:
        """All exception rows (deleted or not) for the given masters."""
        pass


class LedgerStorageInterface(ABC):
    """
    Abstract interface for the finance ledger.

    Amounts are integer cents. Month filters compare "YYYY-MM" strings.
    """

    # -- categories ---------------------------------------------------------

    @abstractmethod
    async def save_category_group(self, group: CategoryGroup) -> CategoryGroup:
        pass

    @abstractmethod
    async def save_category(self, category: Category) -> Category:
        pass

    @abstractmethod
    async def get_category(self, user_id: str, category_id: str) -> Optional[Category]:
        """Return the category if it exists AND belongs to user_id."""
        pass

    @abstractmethod
    async def list_groups_with_categories(
        self,
        user_id: str,
        include_hidden: bool = False,
    ) -> list[tuple[CategoryGroup, list[Category]]]:
        """Groups ordered by sort_order, each with its ordered categories."""
        pass

    # -- assignments --------------------------------------------------------

    @abstractmethod
    async def list_assignments(
        self,
        user_id: str,
        category_ids: Iterable[str],
        up_to_month: str,
    ) -> list[MonthlyAssignment]:
        """Assignment rows with month <= up_to_month."""
        pass

    @abstractmethod
    async def get_assignment(
        self,
        user_id: str,
        category_id: str,
        month: str,
    ) -> Optional[MonthlyAssignment]:
        pass

    @abstractmethod
    async def upsert_assignment(self, assignment: MonthlyAssignment) -> MonthlyAssignment:
        """
        Replace (never accumulate) the row keyed by (category_id, month).

        The write must be atomic for the single row.
        """
        pass

    # -- targets ------------------------------------------------------------

    @abstractmethod
    async def list_targets(
        self,
        user_id: str,
        category_ids: Iterable[str],
    ) -> list[CategoryTarget]:
        pass

    @abstractmethod
    async def get_target(self, user_id: str, category_id: str) -> Optional[CategoryTarget]:
        pass

    @abstractmethod
    async def upsert_target(self, target: CategoryTarget) -> CategoryTarget:
        pass

    @abstractmethod
    async def delete_target(self, user_id: str, category_id: str) -> bool:
        pass

    # -- accounts and transactions -----------------------------------------

    @abstractmethod
    async def save_account(self, account: Account) -> Account:
        pass

    @abstractmethod
    async def get_account(self, user_id: str, account_id: str) -> Optional[Account]:
        pass

    @abstractmethod
    async def list_accounts(
        self,
        user_id: str,
        on_budget_only: bool = False,
        include_archived: bool = True,
    ) -> list[Account]:
        pass

    @abstractmethod
    async def save_transaction(self, transaction: LedgerTransaction) -> LedgerTransaction:
        pass

    @abstractmethod
    async def list_transactions(
        self,
        user_id: str,
        category_ids: Optional[Iterable[str]] = None,
        account_ids: Optional[Iterable[str]] = None,
        date_from: Optional[datetime] = None,
        date_before: Optional[datetime] = None,
    ) -> list[LedgerTransaction]:
        """
        Transactions filtered by category/account sets and the half-open
        date range [date_from, date_before). None means "no filter".
        """
        pass

    @abstractmethod
    async def sum_transactions(
        self,
        user_id: str,
        account_ids: Iterable[str],
        date_before: Optional[datetime] = None,
    ) -> int:
        """Sum of amounts on the given accounts dated before date_before."""
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """Events for one entity in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Most recent events, newest first."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage (or not owned by the requesting user)."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
