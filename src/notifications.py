"""
Notification intents.

The engine never sends messages. Each transition returns intents that
say who must be told what; the chat layer renders and delivers them and
resolves the actual chat recipients.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from src.models import Conflict, VacationBalance, VacationRequest


class RecipientRole(Enum):
    EMPLOYEE = "employee"
    PM = "pm"
    HR = "hr"


class NotificationKind(Enum):
    REQUEST_SUBMITTED = "request_submitted"
    NEW_REQUEST_FOR_APPROVAL = "new_request_for_approval"
    REQUEST_AWAITING_PM = "request_awaiting_pm"
    EMERGENCY_REQUEST = "emergency_request"
    PM_APPROVED = "pm_approved"
    REQUEST_APPROVED = "request_approved"
    REQUEST_REJECTED = "request_rejected"
    REQUEST_CANCELLED = "request_cancelled"
    BALANCE_DENIED = "balance_denied"
    CONFLICT_DENIED = "conflict_denied"
    EMERGENCY_DENIED = "emergency_denied"
    VACATION_DAYS_EXHAUSTED = "vacation_days_exhausted"


@dataclass(frozen=True)
class NotificationIntent:
    recipient: RecipientRole
    employee_id: str
    kind: NotificationKind
    request: VacationRequest | None = None
    recipient_id: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "recipient": self.recipient.value,
            "recipient_id": self.recipient_id,
            "employee_id": self.employee_id,
            "kind": self.kind.value,
            "request": self.request.to_dict() if self.request else None,
            "extra": self.extra,
        }


def to_employee(kind: NotificationKind, request: VacationRequest, **extra) -> NotificationIntent:
    return NotificationIntent(
        recipient=RecipientRole.EMPLOYEE,
        recipient_id=request.employee_id,
        employee_id=request.employee_id,
        kind=kind,
        request=request,
        extra=extra,
    )


def to_pm(kind: NotificationKind, request: VacationRequest, **extra) -> NotificationIntent:
    return NotificationIntent(
        recipient=RecipientRole.PM,
        recipient_id=request.manager_id,
        employee_id=request.employee_id,
        kind=kind,
        request=request,
        extra=extra,
    )


def to_hr(kind: NotificationKind, request: VacationRequest | None = None, *, employee_id: str,
          **extra) -> NotificationIntent:
    return NotificationIntent(
        recipient=RecipientRole.HR,
        employee_id=employee_id,
        kind=kind,
        request=request,
        extra=extra,
    )


def balance_denied(employee_id: str, requested: int, balance: VacationBalance,
                   candidate: dict[str, Any]) -> NotificationIntent:
    """HR must see every request refused for lack of days."""
    return to_hr(
        NotificationKind.BALANCE_DENIED,
        employee_id=employee_id,
        requested=requested,
        remaining=balance.remaining,
        used=balance.used,
        annual_quota=balance.annual_quota,
        candidate=candidate,
    )


def conflict_denied(employee_id: str, conflicts: list[Conflict],
                    candidate: dict[str, Any]) -> NotificationIntent:
    return to_hr(
        NotificationKind.CONFLICT_DENIED,
        employee_id=employee_id,
        conflicts=[c.to_dict() for c in conflicts],
        candidate=candidate,
    )


def emergency_denied(employee_id: str, error_kind: str, message: str,
                     candidate: dict[str, Any]) -> NotificationIntent:
    return to_hr(
        NotificationKind.EMERGENCY_DENIED,
        employee_id=employee_id,
        error=error_kind,
        message=message,
        candidate=candidate,
    )
