"""
Domain Errors

DESIGN DECISION: Errors are typed so callers can map them to outcomes
without parsing messages:

- ValidationError  -> caller sent something malformed (4xx)
- InvalidRuleError -> a recurrence rule that can never expand correctly (4xx)
- NotFoundError    -> see src.services.storage (4xx, no existence leak)
- anything else    -> generic failure (5xx)

None of these subclass ValueError. Pydantic wraps ValueError raised inside
validators into its own ValidationError; our errors must reach the caller
unchanged.
"""

from typing import Optional


class PlannerError(Exception):
    """Base class for all domain errors."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field


class ValidationError(PlannerError):
    """Input rejected before any computation or storage access."""
    pass


class InvalidRuleError(PlannerError):
    """Recurrence rule with an unknown frequency or a non-positive duration."""
    pass
