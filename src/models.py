"""
Domain types for vacation requests.

Requests, employees and decisions are immutable values; a state change
produces a new ``VacationRequest`` through ``dataclasses.replace`` and is
persisted by the repository in a single compare-and-swap.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any


class Role(Enum):
    EMPLOYEE = "employee"
    PM = "pm"
    HR = "hr"
    CEO = "ceo"


class RequestKind(Enum):
    REGULAR = "regular"
    EMERGENCY = "emergency"


class RequestState(Enum):
    PENDING_PM = "pending_pm"
    PENDING_HR = "pending_hr"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES

    @property
    def is_pending(self) -> bool:
        return self in (RequestState.PENDING_PM, RequestState.PENDING_HR)


TERMINAL_STATES = frozenset(
    {RequestState.APPROVED, RequestState.REJECTED, RequestState.CANCELLED}
)


class Decision(Enum):
    APPROVE = "approve"
    REJECT = "reject"
    CANCEL = "cancel"


class Stage(Enum):
    """Who a recorded decision belongs to."""

    PM = "pm"
    HR = "hr"
    REQUESTER = "requester"


def _encode(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [_encode(v) for v in value]
    return value


def _dict_factory(items: list[tuple[str, Any]]) -> dict[str, Any]:
    return {key: _encode(value) for key, value in items}


class _Serializable:
    def to_dict(self) -> dict[str, Any]:
        return asdict(self, dict_factory=_dict_factory)


@dataclass(frozen=True)
class Employee(_Serializable):
    employee_id: str
    full_name: str
    department: str
    team: str
    sub_team: str | None = None
    manager_id: str | None = None
    first_working_day: date | None = None
    role: Role = Role.EMPLOYEE
    active: bool = True
    annual_quota: int | None = None


@dataclass(frozen=True)
class DecisionRecord(_Serializable):
    """Actor, outcome and time of one stage's decision."""

    stage: Stage
    actor_id: str
    actor_role: Role
    decision: Decision
    decided_at: datetime
    comment: str = ""
    idempotency_key: str | None = None


@dataclass(frozen=True)
class VacationRequest(_Serializable):
    request_id: str
    employee_id: str
    full_name: str
    department: str
    team: str
    start_date: date
    end_date: date
    days: int
    kind: RequestKind
    state: RequestState
    created_at: datetime
    manager_id: str | None = None
    reason: str = ""
    pm_decision: DecisionRecord | None = None
    hr_decision: DecisionRecord | None = None
    cancellation: DecisionRecord | None = None
    balance_before: int | None = None
    balance_after: int | None = None
    idempotency_key: str | None = None
    updated_at: datetime | None = None

    def overlaps(self, start: date, end: date) -> bool:
        """Closed-interval overlap: touching on a single day counts."""
        return not (self.end_date < start or self.start_date > end)

    def decision_for(self, stage: Stage) -> DecisionRecord | None:
        if stage is Stage.PM:
            return self.pm_decision
        if stage is Stage.HR:
            return self.hr_decision
        return self.cancellation


@dataclass(frozen=True)
class VacationBalance(_Serializable):
    annual_quota: int
    used: int
    remaining: int
    work_year_start: date
    work_year_end: date


@dataclass(frozen=True)
class Eligibility(_Serializable):
    eligible: bool
    reason: str
    eligible_from: date | None = None


@dataclass(frozen=True)
class Conflict(_Serializable):
    """Another employee's leave that intersects the candidate range."""

    request_id: str
    employee_id: str
    full_name: str
    department: str
    team: str
    start_date: date
    end_date: date
    state: RequestState

    @classmethod
    def from_request(cls, request: VacationRequest) -> Conflict:
        return cls(
            request_id=request.request_id,
            employee_id=request.employee_id,
            full_name=request.full_name,
            department=request.department,
            team=request.team,
            start_date=request.start_date,
            end_date=request.end_date,
            state=request.state,
        )


@dataclass(frozen=True)
class SubmitInput:
    """What the chat layer collected from the employee."""

    employee_id: str
    start_date: date
    end_date: date | None = None
    days: int | None = None
    kind: RequestKind = RequestKind.REGULAR
    reason: str = ""
    idempotency_key: str | None = None


@dataclass
class TransitionResult:
    """Outcome of a submit/decide/cancel call.

    ``replayed`` is True when the call matched an already-applied
    transition and nothing was written or notified.
    """

    request: VacationRequest
    notifications: list = field(default_factory=list)
    replayed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "request": self.request.to_dict(),
            "notifications": [n.to_dict() for n in self.notifications],
            "replayed": self.replayed,
        }
