"""
Audit Models for the Planner

Every state change in the calendar and budget flows is recorded as an
AuditEvent. This provides:
1. Traceability of who changed which assignment or occurrence
2. Debugging information when a budget stops reconciling
3. A history the user can inspect

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.
    """
    # Calendar
    EVENT_CREATED = "event_created"
    EVENT_UPDATED = "event_updated"
    EVENT_DELETED = "event_deleted"
    OCCURRENCE_EDITED = "occurrence_edited"
    OCCURRENCE_DELETED = "occurrence_deleted"
    SERIES_ENDED = "series_ended"
    RECURRENCE_TRUNCATED = "recurrence_truncated"

    # Budget
    ASSIGNMENT_SET = "assignment_set"
    MONEY_MOVED = "money_moved"
    TARGET_SET = "target_set"
    TARGET_DELETED = "target_deleted"
    BUDGET_COMPUTED = "budget_computed"

    # System events
    SYSTEM_ERROR = "system_error"
    STORAGE_ERROR = "storage_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every state change creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Who and what
    user_id: Optional[str] = Field(
        default=None,
        description="Owner the change was made for"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'event', 'category', 'assignment')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., both legs of a money move)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": self.user_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_row(self) -> dict:
        """
        Convert to a flat row for relational storage.

        `details` is JSON-encoded; everything else is a plain column.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp,
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": self.user_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details_json": json.dumps(self.details, default=str) if self.details else "",
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.assignment_set(user_id, category_id, "2026-02", 5000)
        event = AuditEventBuilder.occurrence_deleted(user_id, event_id, "2026-02-10")
    """

    @staticmethod
    def event_created(
        user_id: str,
        event_id: str,
        title: str,
        recurring: bool,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EVENT_CREATED,
            user_id=user_id,
            entity_type="event",
            entity_id=event_id,
            description=f"Event created: {title}",
            details={"recurring": recurring},
            is_user_action=True,
        )

    @staticmethod
    def event_updated(
        user_id: str,
        event_id: str,
        fields: list[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EVENT_UPDATED,
            user_id=user_id,
            entity_type="event",
            entity_id=event_id,
            description=f"Event updated ({len(fields)} fields)",
            details={"fields": sorted(fields)},
            is_user_action=True,
        )

    @staticmethod
    def event_deleted(
        user_id: str,
        event_id: str,
        soft: bool,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EVENT_DELETED,
            user_id=user_id,
            entity_type="event",
            entity_id=event_id,
            description="Event marked deleted" if soft else "Event deleted",
            details={"soft_delete": soft},
            is_user_action=True,
        )

    @staticmethod
    def occurrence_edited(
        user_id: str,
        parent_event_id: str,
        exception_id: str,
        original_date: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OCCURRENCE_EDITED,
            user_id=user_id,
            entity_type="event",
            entity_id=exception_id,
            description=f"Occurrence of {original_date} edited",
            details={
                "parent_event_id": parent_event_id,
                "original_date": original_date,
            },
            is_user_action=True,
        )

    @staticmethod
    def occurrence_deleted(
        user_id: str,
        parent_event_id: str,
        original_date: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OCCURRENCE_DELETED,
            user_id=user_id,
            entity_type="event",
            entity_id=parent_event_id,
            description=f"Occurrence of {original_date} deleted",
            details={"original_date": original_date},
            is_user_action=True,
        )

    @staticmethod
    def series_ended(
        user_id: str,
        parent_event_id: str,
        recurrence_end: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SERIES_ENDED,
            user_id=user_id,
            entity_type="event",
            entity_id=parent_event_id,
            description=f"Series now ends on {recurrence_end}",
            details={"recurrence_end": recurrence_end},
            is_user_action=True,
        )

    @staticmethod
    def recurrence_truncated(
        event_id: str,
        iterations: int,
        emitted: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRENCE_TRUNCATED,
            severity=AuditSeverity.WARNING,
            entity_type="event",
            entity_id=event_id,
            description=f"Expansion stopped after {iterations} iterations",
            details={"iterations": iterations, "emitted": emitted},
        )

    @staticmethod
    def assignment_set(
        user_id: str,
        category_id: str,
        month: str,
        assigned: int,
        previous: Optional[int] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ASSIGNMENT_SET,
            user_id=user_id,
            entity_type="category",
            entity_id=category_id,
            correlation_id=correlation_id,
            description=f"Assigned {assigned} cents for {month}",
            details={
                "month": month,
                "assigned": assigned,
                "previous": previous,
            },
            is_user_action=True,
        )

    @staticmethod
    def money_moved(
        user_id: str,
        from_category_id: Optional[str],
        to_category_id: str,
        month: str,
        amount: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MONEY_MOVED,
            user_id=user_id,
            entity_type="category",
            entity_id=to_category_id,
            correlation_id=correlation_id,
            description=f"Moved {amount} cents in {month}",
            details={
                "from_category_id": from_category_id,
                "to_category_id": to_category_id,
                "month": month,
                "amount": amount,
            },
            is_user_action=True,
        )

    @staticmethod
    def target_set(
        user_id: str,
        category_id: str,
        target_type: str,
        amount: int,
        refill_type: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TARGET_SET,
            user_id=user_id,
            entity_type="category",
            entity_id=category_id,
            description=f"Target set: {target_type} {amount} cents ({refill_type})",
            details={
                "target_type": target_type,
                "amount": amount,
                "refill_type": refill_type,
            },
            is_user_action=True,
        )

    @staticmethod
    def target_deleted(
        user_id: str,
        category_id: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TARGET_DELETED,
            user_id=user_id,
            entity_type="category",
            entity_id=category_id,
            description="Target deleted",
            is_user_action=True,
        )

    @staticmethod
    def budget_computed(
        user_id: str,
        month: str,
        ready_to_assign: int,
        category_count: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_COMPUTED,
            severity=AuditSeverity.DEBUG,
            user_id=user_id,
            entity_type="budget",
            description=f"Budget computed for {month}",
            details={
                "month": month,
                "ready_to_assign": ready_to_assign,
                "category_count": category_count,
            },
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def storage_error(
        operation: str,
        error_message: str,
        user_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORAGE_ERROR,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            description=f"Storage error during {operation}",
            error_message=error_message,
            details={"operation": operation},
        )
