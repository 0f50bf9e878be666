"""
Storage interfaces consumed by the engine, plus in-memory implementations.

The in-memory classes back development mode and the test suite. The
spreadsheet-backed versions live in ``src.sheets_client``.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import date
from typing import Any

from src.errors import InvalidTransitionError, NotFoundError, RepositoryError
from src.models import DecisionRecord, Employee, RequestState, Role, Stage, VacationRequest
from src.utils.dates import parse_date

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"true", "yes", "1", "y", "active", "так"}


class RequestRepository(ABC):
    """Durable row store for vacation requests."""

    @abstractmethod
    def create(self, request: VacationRequest) -> None:
        """Persist a new request. Fails if the id already exists."""

    @abstractmethod
    def get(self, request_id: str) -> VacationRequest | None: ...

    @abstractmethod
    def compare_and_swap_state(
        self,
        request_id: str,
        expected: RequestState,
        next_state: RequestState,
        decision: DecisionRecord,
    ) -> VacationRequest:
        """
        Move a request from ``expected`` to ``next_state`` and record ``decision``.

        Raises InvalidTransitionError if the stored state is no longer
        ``expected`` (someone else decided first) and NotFoundError if the
        request does not exist.
        """

    @abstractmethod
    def list_by_employee_in_window(
        self, employee_id: str, start: date, end: date
    ) -> list[VacationRequest]:
        """Requests of one employee whose start date lies in [start, end]."""

    @abstractmethod
    def list_approved_by_unit_in_range(
        self, department: str, team: str, start: date, end: date
    ) -> list[VacationRequest]:
        """APPROVED requests of a department+team that intersect [start, end]."""

    @abstractmethod
    def find_by_idempotency_key(self, key: str) -> VacationRequest | None: ...

    @abstractmethod
    def list_by_state(self, state: RequestState) -> list[VacationRequest]: ...

    @abstractmethod
    def list_by_employee(self, employee_id: str) -> list[VacationRequest]: ...


class EmployeeDirectory(ABC):
    """Read-only identity and organisation lookup."""

    @abstractmethod
    def get(self, employee_id: str) -> Employee | None: ...


def apply_transition(
    request: VacationRequest, next_state: RequestState, decision: DecisionRecord
) -> VacationRequest:
    """Return ``request`` in ``next_state`` with ``decision`` recorded on its stage."""
    changes: dict[str, Any] = {"state": next_state, "updated_at": decision.decided_at}
    if decision.stage is Stage.PM:
        changes["pm_decision"] = decision
    elif decision.stage is Stage.HR:
        changes["hr_decision"] = decision
    else:
        changes["cancellation"] = decision
    return replace(request, **changes)


def _parse_bool(value: Any, default: bool = True) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_VALUES


def _parse_role(value: Any) -> Role:
    if not value:
        return Role.EMPLOYEE
    try:
        return Role(str(value).strip().lower())
    except ValueError as e:
        raise ValueError(f"Unknown role: {value!r}") from e


def employee_from_record(record: dict[str, Any]) -> Employee:
    """Build an Employee from a plain record (mock data or a parsed sheet row)."""
    quota = record.get("annual_quota")
    return Employee(
        employee_id=str(record["employee_id"]).strip(),
        full_name=record.get("full_name") or "",
        department=record.get("department") or "",
        team=record.get("team") or "",
        sub_team=record.get("sub_team") or None,
        manager_id=str(record["manager_id"]).strip() if record.get("manager_id") else None,
        first_working_day=parse_date(record.get("first_working_day")),
        role=_parse_role(record.get("role")),
        active=_parse_bool(record.get("active")),
        annual_quota=int(quota) if quota not in (None, "") else None,
    )


class InMemoryRequestRepository(RequestRepository):
    """Thread-safe dict-backed repository."""

    def __init__(self):
        self._lock = threading.Lock()
        self._requests: dict[str, VacationRequest] = {}

    def create(self, request: VacationRequest) -> None:
        with self._lock:
            if request.request_id in self._requests:
                raise RepositoryError(
                    f"Request {request.request_id} already exists", operation="create"
                )
            self._requests[request.request_id] = request
        logger.info(f"Stored request {request.request_id} state={request.state.value}")

    def get(self, request_id: str) -> VacationRequest | None:
        with self._lock:
            return self._requests.get(request_id)

    def compare_and_swap_state(
        self,
        request_id: str,
        expected: RequestState,
        next_state: RequestState,
        decision: DecisionRecord,
    ) -> VacationRequest:
        with self._lock:
            current = self._requests.get(request_id)
            if current is None:
                raise NotFoundError(f"Request {request_id} not found.")
            if current.state is not expected:
                raise InvalidTransitionError(
                    f"Request {request_id} is {current.state.value}, expected {expected.value}.",
                    current.state,
                )
            updated = apply_transition(current, next_state, decision)
            self._requests[request_id] = updated
            return updated

    def list_by_employee_in_window(
        self, employee_id: str, start: date, end: date
    ) -> list[VacationRequest]:
        with self._lock:
            return [
                r
                for r in self._requests.values()
                if r.employee_id == employee_id and start <= r.start_date <= end
            ]

    def list_approved_by_unit_in_range(
        self, department: str, team: str, start: date, end: date
    ) -> list[VacationRequest]:
        with self._lock:
            return [
                r
                for r in self._requests.values()
                if r.state is RequestState.APPROVED
                and r.department == department
                and r.team == team
                and r.overlaps(start, end)
            ]

    def find_by_idempotency_key(self, key: str) -> VacationRequest | None:
        with self._lock:
            for r in self._requests.values():
                if r.idempotency_key == key:
                    return r
        return None

    def list_by_state(self, state: RequestState) -> list[VacationRequest]:
        with self._lock:
            return [r for r in self._requests.values() if r.state is state]

    def list_by_employee(self, employee_id: str) -> list[VacationRequest]:
        with self._lock:
            return [r for r in self._requests.values() if r.employee_id == employee_id]


class InMemoryEmployeeDirectory(EmployeeDirectory):
    def __init__(self, employees: list[Employee] | None = None):
        self._employees: dict[str, Employee] = {}
        for employee in employees or []:
            self.seed(employee)

    @classmethod
    def from_records(cls, records: dict[str, dict[str, Any]]) -> InMemoryEmployeeDirectory:
        return cls([employee_from_record(r) for r in records.values()])

    def seed(self, employee: Employee) -> None:
        self._employees[employee.employee_id] = employee

    def get(self, employee_id: str) -> Employee | None:
        return self._employees.get(employee_id)
