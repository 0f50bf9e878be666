"""
Error taxonomy for the vacation engine.

Every failure the engine reports is a ``LeaveEngineError`` with a stable
``kind`` so the chat layer can render a precise message without parsing
text. Denials that HR must still see carry their notification intents in
``notifications``.
"""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from src.models import Conflict, RequestState
    from src.notifications import NotificationIntent


class LeaveEngineError(Exception):
    """Base class for all engine errors."""

    kind = "LeaveEngineError"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.notifications: list[NotificationIntent] = []

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.kind,
            "message": self.message,
            "details": self.details,
            "notifications": [n.to_dict() for n in self.notifications],
        }


class InvalidInputError(LeaveEngineError):
    """Malformed dates, missing reason, non-positive day counts."""

    kind = "InvalidInputError"

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message, {"field": field} if field else None)
        self.field = field


class RangeViolationError(LeaveEngineError):
    """Day count outside the bounds allowed for the request kind."""

    kind = "RangeViolationError"

    def __init__(self, days: int, min_days: int, max_days: int):
        super().__init__(
            f"A request must cover between {min_days} and {max_days} days, got {days}.",
            {"days": days, "min_days": min_days, "max_days": max_days},
        )
        self.days = days
        self.min_days = min_days
        self.max_days = max_days


class IneligibleError(LeaveEngineError):
    """Employee has not yet passed the eligibility gate."""

    kind = "IneligibleError"

    def __init__(self, message: str, eligible_from: date | None = None):
        super().__init__(
            message, {"eligible_from": eligible_from.isoformat() if eligible_from else None}
        )
        self.eligible_from = eligible_from


class InsufficientBalanceError(LeaveEngineError):
    kind = "InsufficientBalanceError"

    def __init__(self, requested: int, remaining: int):
        super().__init__(
            f"Insufficient vacation balance. You have {remaining} days available "
            f"but requested {requested} days.",
            {"requested": requested, "remaining": remaining, "shortage": requested - remaining},
        )
        self.requested = requested
        self.remaining = remaining


class ConflictError(LeaveEngineError):
    """Candidate dates overlap approved leave in the same team."""

    kind = "ConflictError"

    def __init__(self, conflicts: list[Conflict]):
        super().__init__(
            f"Requested dates overlap {len(conflicts)} approved vacation(s) in your team.",
            {"conflicts": [c.to_dict() for c in conflicts]},
        )
        self.conflicts = conflicts


class InvalidTransitionError(LeaveEngineError):
    """Decision or cancellation against a request in the wrong state."""

    kind = "InvalidTransitionError"

    def __init__(self, message: str, current_state: RequestState | None = None):
        super().__init__(
            message, {"current_state": current_state.value if current_state else None}
        )
        self.current_state = current_state


class NotFoundError(LeaveEngineError):
    kind = "NotFoundError"


class UnauthorizedError(LeaveEngineError):
    """Actor's role does not permit the attempted transition."""

    kind = "UnauthorizedError"


class RepositoryError(LeaveEngineError):
    """Storage or transport failure underneath the repository interface."""

    kind = "RepositoryError"

    def __init__(self, message: str, operation: str | None = None):
        super().__init__(message, {"operation": operation} if operation else None)
        self.operation = operation
