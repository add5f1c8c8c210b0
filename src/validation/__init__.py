"""Request validation and the domain error taxonomy."""

from src.errors import InvalidRuleError, PlannerError, ValidationError
from src.services.storage.interface import NotFoundError
from src.validation.validator import (
    model_errors_as_validation,
    require_id,
    to_http_status,
    validate_amount,
    validate_day,
    validate_month_key,
    validate_non_negative_amount,
    validate_positive_amount,
    validate_window,
)

__all__ = [
    "InvalidRuleError",
    "NotFoundError",
    "PlannerError",
    "ValidationError",
    "model_errors_as_validation",
    "require_id",
    "to_http_status",
    "validate_amount",
    "validate_day",
    "validate_month_key",
    "validate_non_negative_amount",
    "validate_positive_amount",
    "validate_window",
]
