"""
Audit Logger

DESIGN DECISION: Every state change in the calendar and budget flows is
logged. This provides:
1. Traceability of assignment and occurrence edits
2. Debugging capability when a month stops reconciling
3. A history the user can inspect

The audit logger:
- Is async to match the storage layer
- Gracefully handles failures (a failed audit write never fails the flow)
- Supports correlation IDs to trace related events
"""

import logging
from typing import Optional
from uuid import UUID, uuid4

import structlog

from src.config import get_settings
from src.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from src.services.storage import AuditStorageInterface


def configure_logging(level: Optional[str] = None) -> None:
    """
    Configure stdlib logging and structlog for JSON output.

    Called once at import; call again to change the level.
    """
    level = level or get_settings().app.log_level
    logging.basicConfig(format="%(message)s", level=level)
    logging.getLogger().setLevel(level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. An audit store (for persistence and user visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity is AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity is AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    # -- calendar -----------------------------------------------------------

    async def log_event_created(
        self,
        user_id: str,
        event_id: str,
        title: str,
        recurring: bool,
    ) -> None:
        await self.log(AuditEventBuilder.event_created(user_id, event_id, title, recurring))

    async def log_event_updated(
        self,
        user_id: str,
        event_id: str,
        fields: list[str],
    ) -> None:
        await self.log(AuditEventBuilder.event_updated(user_id, event_id, fields))

    async def log_event_deleted(self, user_id: str, event_id: str, soft: bool) -> None:
        await self.log(AuditEventBuilder.event_deleted(user_id, event_id, soft))

    async def log_occurrence_edited(
        self,
        user_id: str,
        parent_event_id: str,
        exception_id: str,
        original_date: str,
    ) -> None:
        """Log a single-occurrence edit (an exception row was written)."""
        event = AuditEventBuilder.occurrence_edited(
            user_id=user_id,
            parent_event_id=parent_event_id,
            exception_id=exception_id,
            original_date=original_date,
        )
        await self.log(event)

    async def log_occurrence_deleted(
        self,
        user_id: str,
        parent_event_id: str,
        original_date: str,
    ) -> None:
        event = AuditEventBuilder.occurrence_deleted(
            user_id=user_id,
            parent_event_id=parent_event_id,
            original_date=original_date,
        )
        await self.log(event)

    async def log_series_ended(
        self,
        user_id: str,
        parent_event_id: str,
        recurrence_end: str,
    ) -> None:
        event = AuditEventBuilder.series_ended(
            user_id=user_id,
            parent_event_id=parent_event_id,
            recurrence_end=recurrence_end,
        )
        await self.log(event)

    async def log_recurrence_truncated(
        self,
        event_id: str,
        iterations: int,
        emitted: int,
    ) -> None:
        await self.log(AuditEventBuilder.recurrence_truncated(event_id, iterations, emitted))

    # -- budget -------------------------------------------------------------

    async def log_assignment_set(
        self,
        user_id: str,
        category_id: str,
        month: str,
        assigned: int,
        previous: Optional[int] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an assignment upsert."""
        event = AuditEventBuilder.assignment_set(
            user_id=user_id,
            category_id=category_id,
            month=month,
            assigned=assigned,
            previous=previous,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_money_moved(
        self,
        user_id: str,
        from_category_id: Optional[str],
        to_category_id: str,
        month: str,
        amount: int,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.money_moved(
            user_id=user_id,
            from_category_id=from_category_id,
            to_category_id=to_category_id,
            month=month,
            amount=amount,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_target_set(
        self,
        user_id: str,
        category_id: str,
        target_type: str,
        amount: int,
        refill_type: str,
    ) -> None:
        event = AuditEventBuilder.target_set(
            user_id=user_id,
            category_id=category_id,
            target_type=target_type,
            amount=amount,
            refill_type=refill_type,
        )
        await self.log(event)

    async def log_target_deleted(self, user_id: str, category_id: str) -> None:
        await self.log(AuditEventBuilder.target_deleted(user_id, category_id))

    async def log_budget_computed(
        self,
        user_id: str,
        month: str,
        ready_to_assign: int,
        category_count: int,
    ) -> None:
        event = AuditEventBuilder.budget_computed(
            user_id=user_id,
            month=month,
            ready_to_assign=ready_to_assign,
            category_count=category_count,
        )
        await self.log(event)

    # -- errors -------------------------------------------------------------

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_storage_error(
        self,
        operation: str,
        error_message: str,
        user_id: Optional[str] = None,
    ) -> None:
        event = AuditEventBuilder.storage_error(
            operation=operation,
            error_message=error_message,
            user_id=user_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a multi-step user action (e.g., a money move).
    Pass it through all subsequent operations.
    """
    return uuid4()
