"""
Request coordinator: the entry point the chat layer calls.

Orchestrates ledger, conflict detector and state machine per request,
persists each transition with one repository call, and returns
notification intents for the chat layer to deliver.

Concurrency
-----------
- ``submit`` is serialized per employee and per department+team, so two
  submissions cannot both pass the balance or conflict check against
  the same snapshot within this process.
- ``decide``/``cancel`` are serialized per request id and persisted with
  compare-and-swap on the expected state, so a concurrent writer in
  another process loses with InvalidTransitionError instead of
  overwriting.
- Retried chat events are recognised through idempotency keys (submit)
  and recorded decisions (decide/cancel) and return without writing or
  notifying anything.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import date, datetime

from data.leave_policies import MOCK_EMPLOYEES
from src.config import settings
from src.conflicts import ConflictDetector
from src.errors import (
    InvalidInputError,
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedError,
)
from src.ledger import BalanceLedger
from src.models import (
    Conflict,
    Decision,
    Eligibility,
    Employee,
    RequestState,
    Role,
    SubmitInput,
    TransitionResult,
    VacationBalance,
    VacationRequest,
)
from src.observability import trace_span
from src.repository import (
    EmployeeDirectory,
    InMemoryEmployeeDirectory,
    InMemoryRequestRepository,
    RequestRepository,
)
from src.state_machine import HR_ROLES, ApprovalStateMachine
from src.utils.dates import utcnow
from src.utils.keyed_lock import KeyedLock

logger = logging.getLogger(__name__)


def new_request_id(employee_id: str, now: datetime) -> str:
    return f"VAC_{int(now.timestamp() * 1000)}_{employee_id}_{uuid.uuid4().hex[:6]}"


class RequestCoordinator:
    def __init__(
        self,
        repository: RequestRepository,
        directory: EmployeeDirectory,
        ledger: BalanceLedger | None = None,
        detector: ConflictDetector | None = None,
        clock: Callable[[], date] | None = None,
        now: Callable[[], datetime] | None = None,
    ):
        """
        Args:
            repository: Vacation request storage
            directory: Employee lookup
            ledger: Balance ledger; built on ``repository`` when omitted
            detector: Conflict detector; built on ``repository`` when omitted
            clock: Returns "today" for validation and balances
            now: Returns the timestamp recorded on requests and decisions
        """
        self.repository = repository
        self.directory = directory
        self.ledger = ledger or BalanceLedger(repository)
        self.detector = detector or ConflictDetector(repository)
        self.machine = ApprovalStateMachine(self.ledger, self.detector)
        self._now = now or utcnow
        self._clock = clock or (lambda: self._now().date())
        self._locks = KeyedLock("RequestCoordinator")

    def today(self) -> date:
        return self._clock()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_employee(self, employee_id: str) -> Employee:
        employee = self.directory.get(employee_id)
        if employee is None:
            raise NotFoundError(f"Employee {employee_id} not found.", {"employee_id": employee_id})
        return employee

    def get_request(self, request_id: str) -> VacationRequest:
        request = self.repository.get(request_id)
        if request is None:
            raise NotFoundError(f"Request {request_id} not found.", {"request_id": request_id})
        return request

    def get_balance(self, employee_id: str, as_of: date | None = None) -> VacationBalance:
        employee = self.get_employee(employee_id)
        return self.ledger.get_balance(employee, as_of or self.today())

    def check_eligibility(self, employee_id: str, as_of: date | None = None) -> Eligibility:
        employee = self.get_employee(employee_id)
        return self.ledger.is_eligible(employee, as_of or self.today())

    def find_conflicts(
        self,
        department: str,
        team: str,
        start_date: date,
        end_date: date,
        exclude_request_id: str | None = None,
    ) -> list[Conflict]:
        if start_date > end_date:
            raise InvalidInputError("End date is before start date.", field="end_date")
        return self.detector.find_conflicts(
            department, team, start_date, end_date, exclude_request_id=exclude_request_id
        )

    def history(self, employee_id: str) -> list[VacationRequest]:
        """All requests of an employee, newest first."""
        self.get_employee(employee_id)
        requests = self.repository.list_by_employee(employee_id)
        return sorted(requests, key=lambda r: r.created_at, reverse=True)

    def pending_for(self, actor_id: str) -> list[VacationRequest]:
        """Requests waiting for this actor's decision, oldest first."""
        actor = self.get_employee(actor_id)
        if actor.role is Role.PM:
            pending = [
                r
                for r in self.repository.list_by_state(RequestState.PENDING_PM)
                if r.manager_id == actor.employee_id
            ]
        elif actor.role in HR_ROLES:
            pending = self.repository.list_by_state(RequestState.PENDING_HR)
        else:
            raise UnauthorizedError(f"Role {actor.role.value} has no approval queue.")
        return sorted(pending, key=lambda r: r.created_at)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(self, data: SubmitInput) -> TransitionResult:
        """
        Validate and create a vacation request.

        Returns:
            TransitionResult with the stored request and the intents to deliver.
            A repeated idempotency key returns the original request, no intents.

        Raises:
            NotFoundError, InvalidInputError, RangeViolationError, IneligibleError,
            InsufficientBalanceError, ConflictError, RepositoryError
        """
        with trace_span("submit", employee=data.employee_id, kind=data.kind.value):
            replay = self._replayed_submission(data)
            if replay is not None:
                return replay

            employee = self.get_employee(data.employee_id)
            with self._locks.hold_many(
                ("employee", employee.employee_id), ("unit", employee.department, employee.team)
            ):
                replay = self._replayed_submission(data)
                if replay is not None:
                    return replay

                now = self._now()
                request, notifications = self.machine.submit(
                    employee,
                    data,
                    today=self.today(),
                    now=now,
                    request_id=new_request_id(employee.employee_id, now),
                    pm=self._assigned_pm(employee),
                )
                self.repository.create(request)

            logger.info(
                f"Request {request.request_id} created for {employee.employee_id}: "
                f"{request.start_date}..{request.end_date} ({request.days}d) -> {request.state.value}"
            )
            return TransitionResult(request, notifications)

    def _replayed_submission(self, data: SubmitInput) -> TransitionResult | None:
        if not data.idempotency_key:
            return None
        existing = self.repository.find_by_idempotency_key(data.idempotency_key)
        if existing is None:
            return None
        if existing.employee_id != data.employee_id:
            raise InvalidInputError(
                f"Idempotency key {data.idempotency_key} belongs to another employee's request.",
                field="idempotency_key",
            )
        logger.info(f"Duplicate submission {data.idempotency_key} -> {existing.request_id}")
        return TransitionResult(existing, [], replayed=True)

    def _assigned_pm(self, employee: Employee) -> Employee | None:
        """The employee's manager if they can act at the PM stage, else None."""
        if not employee.manager_id:
            return None
        manager = self.directory.get(employee.manager_id)
        if manager is None or not manager.active or manager.role is not Role.PM:
            logger.warning(
                f"Manager {employee.manager_id} of {employee.employee_id} is not an active PM; "
                f"routing to HR"
            )
            return None
        return manager

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def decide(
        self,
        request_id: str,
        actor_id: str,
        decision: Decision | str,
        comment: str = "",
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        """
        Apply a PM or HR approve/reject decision.

        Raises:
            NotFoundError, UnauthorizedError, InvalidInputError,
            InvalidTransitionError (wrong state, or lost a race), RepositoryError
        """
        try:
            decision = Decision(decision)
        except ValueError as e:
            raise InvalidInputError(f"Unknown decision: {decision!r}", field="decision") from e
        if decision is Decision.CANCEL:
            raise InvalidInputError("Use cancel() to cancel a request.", field="decision")

        return self._transition(request_id, actor_id, decision, comment, idempotency_key)

    def cancel(
        self, request_id: str, actor_id: str, comment: str = "", idempotency_key: str | None = None
    ) -> TransitionResult:
        """Requester withdraws a pending request."""
        return self._transition(request_id, actor_id, Decision.CANCEL, comment, idempotency_key)

    def _transition(
        self,
        request_id: str,
        actor_id: str,
        decision: Decision,
        comment: str,
        idempotency_key: str | None,
    ) -> TransitionResult:
        with trace_span("decide", request=request_id, actor=actor_id, decision=decision.value):
            with self._locks.hold(("request", request_id)):
                request = self.get_request(request_id)
                actor = self.get_employee(actor_id)

                plan = self.machine.plan_decision(
                    request, actor, decision, self._now(), comment, idempotency_key
                )
                if plan is None:
                    return TransitionResult(request, [], replayed=True)

                try:
                    updated = self.repository.compare_and_swap_state(
                        request_id, plan.expected, plan.next_state, plan.decision
                    )
                except InvalidTransitionError as e:
                    latest = self.repository.get(request_id)
                    state = latest.state if latest else e.current_state
                    logger.warning(f"Lost decision race on {request_id}: now {state}")
                    raise InvalidTransitionError(
                        f"Request {request_id} was already decided by someone else "
                        f"({state.value if state else 'unknown'}).",
                        state,
                    ) from e

            logger.info(
                f"Request {request_id}: {plan.expected.value} -> {plan.next_state.value} "
                f"by {actor.employee_id} ({actor.role.value})"
            )
            notifications = self.machine.decision_notifications(request, updated, plan.decision)
            if updated.state is RequestState.APPROVED:
                requester = self.directory.get(updated.employee_id)
                if requester is not None:
                    notifications += self.machine.exhausted_notifications(requester, updated)
            return TransitionResult(updated, notifications)

    def storage_health(self) -> dict:
        state_fn = getattr(self.repository, "get_circuit_breaker_state", None)
        return state_fn() if state_fn else {"name": "in-memory", "state": "closed"}


def build_coordinator() -> RequestCoordinator:
    """Wire storage according to settings: spreadsheet if configured, else memory."""
    if settings.uses_spreadsheet:
        from src.sheets_client import SheetsClient, SheetsEmployeeDirectory, SheetsRequestRepository

        client = SheetsClient()
        logger.info("Using Google Sheets storage")
        return RequestCoordinator(SheetsRequestRepository(client), SheetsEmployeeDirectory(client))

    logger.warning("SPREADSHEET_ID not set; using in-memory storage with mock employees")
    return RequestCoordinator(
        InMemoryRequestRepository(), InMemoryEmployeeDirectory.from_records(MOCK_EMPLOYEES)
    )


# Global coordinator instance
_coordinator: RequestCoordinator | None = None


def get_coordinator() -> RequestCoordinator:
    """Get or create global coordinator instance."""
    global _coordinator
    if _coordinator is None:
        _coordinator = build_coordinator()
    return _coordinator
