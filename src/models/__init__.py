"""
Data Models Package

This package contains all Pydantic models used by the planner core.
All data flowing through the calendar and budget flows must conform
to these schemas.
"""

from src.models.calendar import (
    CalendarEntry,
    CalendarEvent,
    DeleteMode,
    EditMode,
    EventChanges,
    ExceptionMarker,
    RecurrenceFrequency,
    RecurringEventRule,
    SubCalendar,
    VirtualOccurrence,
    new_id,
)
from src.models.finance import (
    Account,
    AccountBalance,
    AccountGroup,
    AccountType,
    Category,
    CategoryBudgetView,
    CategoryGroup,
    CategoryTarget,
    GroupBudget,
    LedgerTransaction,
    MonthBudget,
    MonthlyAssignment,
    RefillType,
    TargetProgress,
    TargetType,
    cents_to_display,
    format_currency,
    parse_amount,
)
from src.models.month import MonthKey, current_month
from src.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Calendar models
    "CalendarEntry",
    "CalendarEvent",
    "DeleteMode",
    "EditMode",
    "EventChanges",
    "ExceptionMarker",
    "RecurrenceFrequency",
    "RecurringEventRule",
    "SubCalendar",
    "VirtualOccurrence",
    "new_id",
    # Finance models
    "Account",
    "AccountBalance",
    "AccountGroup",
    "AccountType",
    "Category",
    "CategoryBudgetView",
    "CategoryGroup",
    "CategoryTarget",
    "GroupBudget",
    "LedgerTransaction",
    "MonthBudget",
    "MonthlyAssignment",
    "RefillType",
    "TargetProgress",
    "TargetType",
    "cents_to_display",
    "format_currency",
    "parse_amount",
    # Month keys
    "MonthKey",
    "current_month",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
