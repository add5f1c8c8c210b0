"""
Relational Storage Implementation (SQLAlchemy)

DESIGN DECISION: The production store is an ordinary relational database
reached through SQLAlchemy. SQLite is the default; any SQLAlchemy URL
(PostgreSQL, MySQL) works unchanged.

TRADEOFFS:
- Calls are synchronous under async method signatures. Every call is a
  short single-statement (or single-row) transaction, so this is fine for
  a personal-scale store.
- All datetimes are written as UTC. SQLite returns them naive, so
  calendar rows also store the series timezone and are converted back
  to it on read. Day keys and recurrence steps depend on that zone.

Per-row atomicity is what the budget relies on: an assignment upsert is
one transaction against a row guarded by UNIQUE(category_id, month).
"""

import json
from contextlib import contextmanager
from datetime import date, datetime
from enum import Enum
from typing import Any, Iterable, Iterator, Optional
from uuid import UUID

import structlog
from pydantic import BaseModel
from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Engine,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    delete,
    func,
    select,
    text,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    Session,
    mapped_column,
    sessionmaker,
)
from sqlalchemy.pool import StaticPool
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.config import get_settings
from src.dates import localize, to_utc, zone_from_name, zone_name
from src.models.audit import AuditEvent, AuditEventType, AuditSeverity
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
    ConnectionError,
    DuplicateError,
    EventStorageInterface,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
)


logger = structlog.get_logger(__name__)


# =============================================================================
# TABLES
# =============================================================================

class Base(DeclarativeBase):
    pass


class SubCalendarRow(Base):
    __tablename__ = "sub_calendars"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    name: Mapped[str] = mapped_column(String(100))
    color: Mapped[str] = mapped_column(String(7))
    is_visible: Mapped[bool] = mapped_column(Boolean, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)


class CalendarEventRow(Base):
    __tablename__ = "calendar_events"

    __table_args__ = (
        # One exception per occurrence of a master
        UniqueConstraint("parent_event_id", "original_date", name="uq_event_exception"),
        Index("idx_events_user_start", "user_id", "start"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    sub_calendar_id: Mapped[str] = mapped_column(ForeignKey("sub_calendars.id"))
    title: Mapped[str] = mapped_column(String(200))
    description: Mapped[Optional[str]] = mapped_column(Text)
    location: Mapped[Optional[str]] = mapped_column(String(500))
    start: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    end: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    tz_name: Mapped[str] = mapped_column(String(64), default="UTC")
    is_all_day: Mapped[bool] = mapped_column(Boolean, default=False)
    frequency: Mapped[Optional[str]] = mapped_column(String(16))
    recurrence_end: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    parent_event_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    original_date: Mapped[Optional[date]] = mapped_column(Date)
    ical_uid: Mapped[Optional[str]] = mapped_column(String(255))
    is_locally_modified: Mapped[bool] = mapped_column(Boolean, default=False)
    is_locally_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class CategoryGroupRow(Base):
    __tablename__ = "finance_category_groups"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    name: Mapped[str] = mapped_column(String(100))
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    is_hidden: Mapped[bool] = mapped_column(Boolean, default=False)


class CategoryRow(Base):
    __tablename__ = "finance_categories"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    group_id: Mapped[str] = mapped_column(ForeignKey("finance_category_groups.id"))
    name: Mapped[str] = mapped_column(String(100))
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    is_hidden: Mapped[bool] = mapped_column(Boolean, default=False)


class CategoryTargetRow(Base):
    __tablename__ = "finance_category_targets"

    category_id: Mapped[str] = mapped_column(
        ForeignKey("finance_categories.id"), primary_key=True
    )
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    target_type: Mapped[str] = mapped_column(String(16))
    amount: Mapped[int] = mapped_column(Integer)
    day_of_month: Mapped[Optional[int]] = mapped_column(Integer)
    refill_type: Mapped[str] = mapped_column(String(16))


class MonthlyAssignmentRow(Base):
    __tablename__ = "finance_monthly_budgets"

    __table_args__ = (
        UniqueConstraint("category_id", "month", name="uq_assignment_category_month"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    category_id: Mapped[str] = mapped_column(ForeignKey("finance_categories.id"))
    month: Mapped[str] = mapped_column(String(7))
    assigned: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class AccountRow(Base):
    __tablename__ = "finance_accounts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    name: Mapped[str] = mapped_column(String(100))
    account_type: Mapped[str] = mapped_column(String(16))
    group: Mapped[str] = mapped_column(String(16))
    on_budget: Mapped[bool] = mapped_column(Boolean, default=True)
    start_balance: Mapped[int] = mapped_column(Integer, default=0)
    currency: Mapped[str] = mapped_column(String(3))
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)


class TransactionRow(Base):
    __tablename__ = "finance_transactions"

    __table_args__ = (
        Index("idx_transactions_user_date", "user_id", "date"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64))
    account_id: Mapped[str] = mapped_column(ForeignKey("finance_accounts.id"), index=True)
    category_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    amount: Mapped[int] = mapped_column(Integer)
    payee: Mapped[Optional[str]] = mapped_column(String(200))
    memo: Mapped[Optional[str]] = mapped_column(String(500))
    is_cleared: Mapped[bool] = mapped_column(Boolean, default=False)
    transfer_account_id: Mapped[Optional[str]] = mapped_column(String(64))


class AuditEventRow(Base):
    __tablename__ = "audit_log"

    event_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    event_type: Mapped[str] = mapped_column(String(50))
    severity: Mapped[str] = mapped_column(String(16))
    user_id: Mapped[Optional[str]] = mapped_column(String(64))
    entity_type: Mapped[Optional[str]] = mapped_column(String(50))
    entity_id: Mapped[Optional[str]] = mapped_column(String(64))
    correlation_id: Mapped[Optional[str]] = mapped_column(String(36))
    description: Mapped[str] = mapped_column(String(500))
    details_json: Mapped[str] = mapped_column(Text, default="")
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    is_user_action: Mapped[bool] = mapped_column(Boolean, default=False)


# =============================================================================
# CONNECTION
# =============================================================================

def _column_values(model: BaseModel) -> dict[str, Any]:
    """Model -> column values: enums by value, datetimes in UTC."""
    values = {}
    for name, value in model.model_dump().items():
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, datetime):
            value = to_utc(value)
        values[name] = value
    return values


class SqlDatabase:
    """
    Low-level database wrapper.

    Owns the engine and session factory and provides retry logic for
    establishing the connection.
    """

    def __init__(self, url: Optional[str] = None, echo: Optional[bool] = None):
        settings = get_settings().database
        self._url = url or settings.url
        self._echo = settings.echo if echo is None else echo
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(ConnectionError),
        reraise=True,
    )
    def connect(self) -> Engine:
        """
        Create the engine, check it answers, and create missing tables.
        """
        if self._engine is None:
            options: dict[str, Any] = {"echo": self._echo}
            if self._url in ("sqlite://", "sqlite:///:memory:"):
                # One shared connection, otherwise every session gets an empty DB
                options["poolclass"] = StaticPool
                options["connect_args"] = {"check_same_thread": False}
            try:
                engine = create_engine(self._url, **options)
                with engine.connect() as conn:
                    conn.execute(text("SELECT 1"))
                Base.metadata.create_all(engine)
            except SQLAlchemyError as e:
                logger.warning("database_connect_failed", url=self._safe_url, error=str(e))
                raise ConnectionError(f"Failed to connect to database: {e}")
            self._engine = engine
            self._session_factory = sessionmaker(engine, expire_on_commit=False)
            logger.info("database_connected", url=self._safe_url)
        return self._engine

    @property
    def _safe_url(self) -> str:
        # Never log credentials
        return self._url.split("@")[-1]

    @contextmanager
    def session(self) -> Iterator[Session]:
        """One transaction: committed on success, rolled back on error."""
        self.connect()
        try:
            with self._session_factory.begin() as session:
                yield session
        except IntegrityError as e:
            raise DuplicateError(f"Constraint violated: {e.orig}") from e
        except SQLAlchemyError as e:
            raise StorageError(f"Database operation failed: {e}") from e

    def dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._session_factory = None


# =============================================================================
# CALENDAR
# =============================================================================

class SqlEventStorage(EventStorageInterface):
    """Calendar storage on SQLAlchemy."""

    def __init__(self, database: Optional[SqlDatabase] = None):
        self._db = database or SqlDatabase()

    async def save_sub_calendar(self, sub_calendar: SubCalendar) -> SubCalendar:
        with self._db.session() as session:
            session.merge(SubCalendarRow(**_column_values(sub_calendar)))
        return sub_calendar

    async def get_sub_calendar(
        self,
        user_id: str,
        sub_calendar_id: str,
    ) -> Optional[SubCalendar]:
        with self._db.session() as session:
            row = session.scalar(
                select(SubCalendarRow).where(
                    SubCalendarRow.id == sub_calendar_id,
                    SubCalendarRow.user_id == user_id,
                )
            )
            return SubCalendar.model_validate(row, from_attributes=True) if row else None

    async def list_visible_sub_calendar_ids(self, user_id: str) -> list[str]:
        with self._db.session() as session:
            return list(session.scalars(
                select(SubCalendarRow.id)
                .where(SubCalendarRow.user_id == user_id, SubCalendarRow.is_visible.is_(True))
                .order_by(SubCalendarRow.sort_order)
            ))

    @staticmethod
    def _event_values(event: CalendarEvent) -> dict[str, Any]:
        values = _column_values(event)
        values["tz_name"] = zone_name(event.start)
        return values

    @staticmethod
    def _event(row: CalendarEventRow) -> CalendarEvent:
        """Row -> event with its datetimes back in the series timezone."""
        event = CalendarEvent.model_validate(row, from_attributes=True)
        tz = zone_from_name(row.tz_name)
        return event.model_copy(update={
            "start": localize(event.start, tz),
            "end": localize(event.end, tz),
            "recurrence_end": (
                localize(event.recurrence_end, tz) if event.recurrence_end else None
            ),
        })

    async def save_event(self, event: CalendarEvent) -> CalendarEvent:
        with self._db.session() as session:
            session.add(CalendarEventRow(**self._event_values(event)))
        return event

    async def get_event(self, user_id: str, event_id: str) -> Optional[CalendarEvent]:
        with self._db.session() as session:
            row = session.scalar(
                select(CalendarEventRow).where(
                    CalendarEventRow.id == event_id,
                    CalendarEventRow.user_id == user_id,
                )
            )
            return self._event(row) if row else None

    async def update_event(self, event: CalendarEvent) -> CalendarEvent:
        with self._db.session() as session:
            row = session.scalar(
                select(CalendarEventRow).where(
                    CalendarEventRow.id == event.id,
                    CalendarEventRow.user_id == event.user_id,
                )
            )
            if row is None:
                raise NotFoundError(f"Event not found: {event.id}")
            for name, value in self._event_values(event).items():
                setattr(row, name, value)
        return event

    async def delete_event(self, user_id: str, event_id: str) -> bool:
        with self._db.session() as session:
            result = session.execute(
                delete(CalendarEventRow).where(
                    CalendarEventRow.id == event_id,
                    CalendarEventRow.user_id == user_id,
                )
            )
            return result.rowcount > 0

    async def delete_exceptions(self, user_id: str, parent_event_id: str) -> int:
        with self._db.session() as session:
            result = session.execute(
                delete(CalendarEventRow).where(
                    CalendarEventRow.parent_event_id == parent_event_id,
                    CalendarEventRow.user_id == user_id,
                )
            )
            return result.rowcount

    async def list_regular_events(
        self,
        user_id: str,
        sub_calendar_ids: Iterable[str],
        range_start: datetime,
        range_end: datetime,
    ) -> list[CalendarEvent]:
        with self._db.session() as session:
            rows = session.scalars(
                select(CalendarEventRow)
                .where(
                    CalendarEventRow.user_id == user_id,
                    CalendarEventRow.sub_calendar_id.in_(list(sub_calendar_ids)),
                    CalendarEventRow.is_locally_deleted.is_(False),
                    CalendarEventRow.frequency.is_(None),
                    CalendarEventRow.parent_event_id.is_(None),
                    CalendarEventRow.start <= to_utc(range_end),
                    CalendarEventRow.end >= to_utc(range_start),
                )
                .order_by(CalendarEventRow.start)
            )
            return [self._event(r) for r in rows]

    async def list_recurring_masters(
        self,
        user_id: str,
        sub_calendar_ids: Iterable[str],
        range_start: datetime,
        range_end: datetime,
    ) -> list[CalendarEvent]:
        with self._db.session() as session:
            rows = session.scalars(
                select(CalendarEventRow).where(
                    CalendarEventRow.user_id == user_id,
                    CalendarEventRow.sub_calendar_id.in_(list(sub_calendar_ids)),
                    CalendarEventRow.is_locally_deleted.is_(False),
                    CalendarEventRow.frequency.is_not(None),
                    CalendarEventRow.parent_event_id.is_(None),
                    CalendarEventRow.start <= to_utc(range_end),
                    (CalendarEventRow.recurrence_end.is_(None))
                    | (CalendarEventRow.recurrence_end >= to_utc(range_start)),
                )
            )
            return [self._event(r) for r in rows]

    async def list_exceptions(
        self,
        user_id: str,
        parent_event_ids: Iterable[str],
    ) -> list[CalendarEvent]:
        with self._db.session() as session:
            rows = session.scalars(
                select(CalendarEventRow).where(
                    CalendarEventRow.user_id == user_id,
                    CalendarEventRow.parent_event_id.in_(list(parent_event_ids)),
                )
            )
            return [self._event(r) for r in rows]


# =============================================================================
# LEDGER
# =============================================================================

class SqlLedgerStorage(LedgerStorageInterface):
    """Finance ledger storage on SQLAlchemy."""

    def __init__(self, database: Optional[SqlDatabase] = None):
        self._db = database or SqlDatabase()

    async def save_category_group(self, group: CategoryGroup) -> CategoryGroup:
        with self._db.session() as session:
            session.merge(CategoryGroupRow(**_column_values(group)))
        return group

    async def save_category(self, category: Category) -> Category:
        with self._db.session() as session:
            session.merge(CategoryRow(**_column_values(category)))
        return category

    async def get_category(self, user_id: str, category_id: str) -> Optional[Category]:
        with self._db.session() as session:
            row = session.scalar(
                select(CategoryRow).where(
                    CategoryRow.id == category_id,
                    CategoryRow.user_id == user_id,
                )
            )
            return Category.model_validate(row, from_attributes=True) if row else None

    async def list_groups_with_categories(
        self,
        user_id: str,
        include_hidden: bool = False,
    ) -> list[tuple[CategoryGroup, list[Category]]]:
        with self._db.session() as session:
            group_query = select(CategoryGroupRow).where(CategoryGroupRow.user_id == user_id)
            category_query = select(CategoryRow).where(CategoryRow.user_id == user_id)
            if not include_hidden:
                group_query = group_query.where(CategoryGroupRow.is_hidden.is_(False))
                category_query = category_query.where(CategoryRow.is_hidden.is_(False))

            groups = session.scalars(group_query.order_by(CategoryGroupRow.sort_order)).all()
            categories = session.scalars(category_query.order_by(CategoryRow.sort_order)).all()

            by_group: dict[str, list[Category]] = {}
            for row in categories:
                by_group.setdefault(row.group_id, []).append(
                    Category.model_validate(row, from_attributes=True)
                )
            return [
                (
                    CategoryGroup.model_validate(g, from_attributes=True),
                    by_group.get(g.id, []),
                )
                for g in groups
            ]

    async def list_assignments(
        self,
        user_id: str,
        category_ids: Iterable[str],
        up_to_month: str,
    ) -> list[MonthlyAssignment]:
        with self._db.session() as session:
            rows = session.scalars(
                select(MonthlyAssignmentRow).where(
                    MonthlyAssignmentRow.user_id == user_id,
                    MonthlyAssignmentRow.category_id.in_(list(category_ids)),
                    MonthlyAssignmentRow.month <= up_to_month,
                )
            )
            return [self._assignment(r) for r in rows]

    async def get_assignment(
        self,
        user_id: str,
        category_id: str,
        month: str,
    ) -> Optional[MonthlyAssignment]:
        with self._db.session() as session:
            row = session.scalar(
                select(MonthlyAssignmentRow).where(
                    MonthlyAssignmentRow.user_id == user_id,
                    MonthlyAssignmentRow.category_id == category_id,
                    MonthlyAssignmentRow.month == month,
                )
            )
            return self._assignment(row) if row else None

    async def upsert_assignment(self, assignment: MonthlyAssignment) -> MonthlyAssignment:
        values = _column_values(assignment)
        try:
            self._upsert_assignment_row(values)
        except DuplicateError:
            # A concurrent insert won the race for this key; replace its value.
            self._upsert_assignment_row(values)
        return assignment

    def _upsert_assignment_row(self, values: dict[str, Any]) -> None:
        with self._db.session() as session:
            row = session.scalar(
                select(MonthlyAssignmentRow)
                .where(
                    MonthlyAssignmentRow.category_id == values["category_id"],
                    MonthlyAssignmentRow.month == values["month"],
                )
                .with_for_update()
            )
            if row is None:
                session.add(MonthlyAssignmentRow(**values))
            else:
                row.assigned = values["assigned"]
                row.updated_at = values["updated_at"]

    @staticmethod
    def _assignment(row: MonthlyAssignmentRow) -> MonthlyAssignment:
        return MonthlyAssignment(
            user_id=row.user_id,
            category_id=row.category_id,
            month=row.month,
            assigned=row.assigned,
            updated_at=row.updated_at,
        )

    async def list_targets(
        self,
        user_id: str,
        category_ids: Iterable[str],
    ) -> list[CategoryTarget]:
        with self._db.session() as session:
            rows = session.scalars(
                select(CategoryTargetRow).where(
                    CategoryTargetRow.user_id == user_id,
                    CategoryTargetRow.category_id.in_(list(category_ids)),
                )
            )
            return [CategoryTarget.model_validate(r, from_attributes=True) for r in rows]

    async def get_target(self, user_id: str, category_id: str) -> Optional[CategoryTarget]:
        with self._db.session() as session:
            row = session.scalar(
                select(CategoryTargetRow).where(
                    CategoryTargetRow.user_id == user_id,
                    CategoryTargetRow.category_id == category_id,
                )
            )
            return CategoryTarget.model_validate(row, from_attributes=True) if row else None

    async def upsert_target(self, target: CategoryTarget) -> CategoryTarget:
        with self._db.session() as session:
            session.merge(CategoryTargetRow(**_column_values(target)))
        return target

    async def delete_target(self, user_id: str, category_id: str) -> bool:
        with self._db.session() as session:
            result = session.execute(
                delete(CategoryTargetRow).where(
                    CategoryTargetRow.user_id == user_id,
                    CategoryTargetRow.category_id == category_id,
                )
            )
            return result.rowcount > 0

    async def save_account(self, account: Account) -> Account:
        with self._db.session() as session:
            session.merge(AccountRow(**_column_values(account)))
        return account

    async def get_account(self, user_id: str, account_id: str) -> Optional[Account]:
        with self._db.session() as session:
            row = session.scalar(
                select(AccountRow).where(
                    AccountRow.id == account_id,
                    AccountRow.user_id == user_id,
                )
            )
            return Account.model_validate(row, from_attributes=True) if row else None

    async def list_accounts(
        self,
        user_id: str,
        on_budget_only: bool = False,
        include_archived: bool = True,
    ) -> list[Account]:
        with self._db.session() as session:
            query = select(AccountRow).where(AccountRow.user_id == user_id)
            if on_budget_only:
                query = query.where(AccountRow.on_budget.is_(True))
            if not include_archived:
                query = query.where(AccountRow.is_archived.is_(False))
            rows = session.scalars(
                query.order_by(AccountRow.group, AccountRow.sort_order, AccountRow.name)
            )
            return [Account.model_validate(r, from_attributes=True) for r in rows]

    async def save_transaction(self, transaction: LedgerTransaction) -> LedgerTransaction:
        with self._db.session() as session:
            session.merge(TransactionRow(**_column_values(transaction)))
        return transaction

    def _transaction_filters(
        self,
        user_id: str,
        category_ids: Optional[Iterable[str]],
        account_ids: Optional[Iterable[str]],
        date_from: Optional[datetime],
        date_before: Optional[datetime],
    ) -> list:
        filters = [TransactionRow.user_id == user_id]
        if category_ids is not None:
            filters.append(TransactionRow.category_id.in_(list(category_ids)))
        if account_ids is not None:
            filters.append(TransactionRow.account_id.in_(list(account_ids)))
        if date_from is not None:
            filters.append(TransactionRow.date >= to_utc(date_from))
        if date_before is not None:
            filters.append(TransactionRow.date < to_utc(date_before))
        return filters

    async def list_transactions(
        self,
        user_id: str,
        category_ids: Optional[Iterable[str]] = None,
        account_ids: Optional[Iterable[str]] = None,
        date_from: Optional[datetime] = None,
        date_before: Optional[datetime] = None,
    ) -> list[LedgerTransaction]:
        filters = self._transaction_filters(
            user_id, category_ids, account_ids, date_from, date_before
        )
        with self._db.session() as session:
            rows = session.scalars(
                select(TransactionRow).where(*filters).order_by(TransactionRow.date)
            )
            return [LedgerTransaction.model_validate(r, from_attributes=True) for r in rows]

    async def sum_transactions(
        self,
        user_id: str,
        account_ids: Iterable[str],
        date_before: Optional[datetime] = None,
    ) -> int:
        filters = self._transaction_filters(user_id, None, account_ids, None, date_before)
        with self._db.session() as session:
            total = session.scalar(
                select(func.coalesce(func.sum(TransactionRow.amount), 0)).where(*filters)
            )
            return int(total or 0)


# =============================================================================
# AUDIT
# =============================================================================

class SqlAuditStorage(AuditStorageInterface):
    """Append-only audit log table."""

    def __init__(self, database: Optional[SqlDatabase] = None):
        self._db = database or SqlDatabase()

    async def append_event(self, event: AuditEvent) -> bool:
        row = event.to_row()
        row["timestamp"] = to_utc(row["timestamp"])
        with self._db.session() as session:
            session.add(AuditEventRow(**row))
        return True

    @staticmethod
    def _event(row: AuditEventRow) -> AuditEvent:
        return AuditEvent(
            event_id=UUID(row.event_id),
            timestamp=row.timestamp,
            event_type=AuditEventType(row.event_type),
            severity=AuditSeverity(row.severity),
            user_id=row.user_id,
            entity_type=row.entity_type,
            entity_id=row.entity_id,
            correlation_id=UUID(row.correlation_id) if row.correlation_id else None,
            description=row.description,
            details=json.loads(row.details_json) if row.details_json else {},
            error_message=row.error_message,
            is_user_action=row.is_user_action,
        )

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        with self._db.session() as session:
            rows = session.scalars(
                select(AuditEventRow)
                .where(
                    AuditEventRow.entity_type == entity_type,
                    AuditEventRow.entity_id == entity_id,
                )
                .order_by(AuditEventRow.timestamp)
            )
            return [self._event(r) for r in rows]

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        with self._db.session() as session:
            rows = session.scalars(
                select(AuditEventRow).order_by(AuditEventRow.timestamp.desc()).limit(limit)
            )
            return [self._event(r) for r in rows]
