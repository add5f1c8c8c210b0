"""
Request Validation

DESIGN DECISION: Every flow entry point validates its inputs BEFORE it
touches storage or starts a computation. A request either fails here with
a typed error or runs to completion; there is no partial success.

Two kinds of checks live here:

STAGE 1 - SHAPE:
- required ids present
- month keys match YYYY-MM
- amounts are integer cents (never floats)

STAGE 2 - RANGE:
- amounts positive where a positive amount is required
- query windows end after they start

IMPORTANT: Validation NEVER silently fixes input.
It rejects it with a message a human can act on.
"""

from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, Iterator, Optional

from pydantic import ValidationError as ModelValidationError

from src.dates import ensure_aware
from src.errors import InvalidRuleError, PlannerError, ValidationError
from src.models.month import MonthKey
from src.services.storage.interface import NotFoundError, StorageError


def require_id(value: Any, field: str) -> str:
    """Reject missing or blank identifiers."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", field=field)
    return value.strip()


def validate_month_key(value: Any) -> MonthKey:
    """Parse a month key, rejecting anything but strict YYYY-MM."""
    if value is None:
        raise ValidationError("month is required", field="month")
    if isinstance(value, MonthKey):
        return value
    return MonthKey.parse(value)


def validate_amount(value: Any, field: str = "amount") -> int:
    """Amounts are integer cents; floats and bools are rejected."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(
            f"{field} must be an integer number of cents",
            field=field,
        )
    return value


def validate_positive_amount(value: Any, field: str = "amount") -> int:
    amount = validate_amount(value, field)
    if amount <= 0:
        raise ValidationError(f"{field} must be greater than zero", field=field)
    return amount


def validate_non_negative_amount(value: Any, field: str = "amount") -> int:
    amount = validate_amount(value, field)
    if amount < 0:
        raise ValidationError(f"{field} cannot be negative", field=field)
    return amount


def validate_window(
    range_start: Optional[datetime],
    range_end: Optional[datetime],
) -> tuple[datetime, datetime]:
    """Both ends required; end must not precede start."""
    if range_start is None or range_end is None:
        raise ValidationError("Start and end of the range are required", field="range")
    range_start, range_end = ensure_aware(range_start), ensure_aware(range_end)
    if range_end < range_start:
        raise ValidationError("Range end cannot be before range start", field="range")
    return range_start, range_end


@contextmanager
def model_errors_as_validation() -> Iterator[None]:
    """
    Re-raise pydantic model errors as our ValidationError.

    Used where flows build models from caller-supplied values.
    """
    try:
        yield
    except ModelValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ())) or None
        message = first.get("msg", str(e))
        raise ValidationError(message, field=location) from e


def to_http_status(error: Exception) -> tuple[int, str]:
    """
    Map an error to a (status, message) pair for an outer HTTP layer.

    Validation and rule errors are the caller's fault (400), not-found
    hides whether the row exists or belongs to someone else (404), and
    everything else is a generic failure that does not blame the user.
    """
    if isinstance(error, (ValidationError, InvalidRuleError)):
        return 400, error.message
    if isinstance(error, NotFoundError):
        return 404, str(error) or "Not found"
    if isinstance(error, PlannerError):
        return 400, error.message
    if isinstance(error, StorageError):
        return 500, "Storage unavailable, please try again later"
    return 500, "Something went wrong"


def validate_day(value: Any, field: str = "original_date") -> date:
    """Accept a date or an ISO "YYYY-MM-DD" string; datetimes keep their day."""
    if value is None:
        raise ValidationError(f"{field} is required", field=field)
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            pass
    raise ValidationError(f"Invalid {field} {value!r} (expected YYYY-MM-DD)", field=field)
