"""
Approval state machine for vacation requests.

States and transitions:
    submit(regular, PM assigned)   -> PENDING_PM
    submit(regular, no PM)         -> PENDING_HR
    submit(emergency)              -> PENDING_HR
    PENDING_PM  --pm approve-->    PENDING_HR
    PENDING_PM  --pm reject-->     REJECTED
    PENDING_HR  --hr approve-->    APPROVED
    PENDING_HR  --hr reject-->     REJECTED
    PENDING_*   --cancel-->        CANCELLED   (requester only)

APPROVED, REJECTED and CANCELLED are terminal. The machine only plans
transitions and builds notification intents; persisting them is the
coordinator's job.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from data.leave_policies import get_leave_policy_data
from src.conflicts import ConflictDetector
from src.errors import (
    ConflictError,
    IneligibleError,
    InsufficientBalanceError,
    InvalidInputError,
    InvalidTransitionError,
    LeaveEngineError,
    RangeViolationError,
    UnauthorizedError,
)
from src.ledger import BalanceLedger
from src.models import (
    Decision,
    DecisionRecord,
    Employee,
    RequestKind,
    RequestState,
    Role,
    Stage,
    SubmitInput,
    VacationRequest,
)
from src.notifications import (
    NotificationIntent,
    NotificationKind,
    balance_denied,
    conflict_denied,
    emergency_denied,
    to_employee,
    to_hr,
    to_pm,
)
from src.utils.dates import end_from_days, inclusive_days

logger = logging.getLogger(__name__)

TRANSITIONS: dict[tuple[RequestState, Stage, Decision], RequestState] = {
    (RequestState.PENDING_PM, Stage.PM, Decision.APPROVE): RequestState.PENDING_HR,
    (RequestState.PENDING_PM, Stage.PM, Decision.REJECT): RequestState.REJECTED,
    (RequestState.PENDING_HR, Stage.HR, Decision.APPROVE): RequestState.APPROVED,
    (RequestState.PENDING_HR, Stage.HR, Decision.REJECT): RequestState.REJECTED,
    (RequestState.PENDING_PM, Stage.REQUESTER, Decision.CANCEL): RequestState.CANCELLED,
    (RequestState.PENDING_HR, Stage.REQUESTER, Decision.CANCEL): RequestState.CANCELLED,
}

# Roles allowed to act at the HR stage
HR_ROLES = frozenset({Role.HR, Role.CEO})


@dataclass(frozen=True)
class PlannedTransition:
    expected: RequestState
    next_state: RequestState
    decision: DecisionRecord


def can_transition(current: RequestState, stage: Stage, decision: Decision) -> bool:
    return (current, stage, decision) in TRANSITIONS


class ApprovalStateMachine:
    def __init__(self, ledger: BalanceLedger, detector: ConflictDetector):
        self.ledger = ledger
        self.detector = detector

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def validate_input(
        self, employee: Employee, data: SubmitInput, today: date
    ) -> tuple[date, date, int]:
        """
        Structural checks, in order: reason, date range, day-count bounds.

        Returns the normalized (start_date, end_date, days).
        """
        policy = get_leave_policy_data(data.kind.value)
        if policy is None:
            raise InvalidInputError(f"Unknown request kind: {data.kind}", field="kind")

        if not employee.active:
            raise InvalidInputError(
                f"Employee {employee.employee_id} is deactivated.", field="employee_id"
            )

        if policy["reason_required"] and not (data.reason or "").strip():
            raise InvalidInputError("A reason is required for an emergency request.", field="reason")

        start = data.start_date
        if start is None:
            raise InvalidInputError("Start date is required.", field="start_date")

        if data.days is not None and data.days < 1:
            raise InvalidInputError("Number of days must be positive.", field="days")

        if data.end_date is None:
            if data.days is None:
                raise InvalidInputError("Either end date or number of days is required.", field="end_date")
            end = end_from_days(start, data.days)
        else:
            end = data.end_date

        if start > end:
            raise InvalidInputError("End date is before start date.", field="end_date")

        days = inclusive_days(start, end)
        if data.days is not None and data.days != days:
            raise InvalidInputError(
                f"{start.isoformat()}..{end.isoformat()} is {days} days, not {data.days}.",
                field="days",
            )

        if start < today:
            raise InvalidInputError("Vacation cannot start in the past.", field="start_date")

        max_days = policy["max_days"]
        if days < policy["min_days"] or (max_days is not None and days > max_days):
            raise RangeViolationError(days, policy["min_days"], max_days)

        return start, end, days

    def submit(
        self,
        employee: Employee,
        data: SubmitInput,
        today: date,
        now: datetime,
        request_id: str,
        pm: Employee | None = None,
    ) -> tuple[VacationRequest, list[NotificationIntent]]:
        """
        Run the full pre-submit pipeline and build the new request.

        ``pm`` is the employee's resolved, active PM. Without one the
        request starts at the HR stage.

        Validation order (first failure wins):
        1. reason and date range, 2. day-count bounds, 3. eligibility gate,
        4. balance sufficiency, 5. team conflicts.

        Raises:
            InvalidInputError, RangeViolationError, IneligibleError,
            InsufficientBalanceError, ConflictError. Balance, conflict and
            emergency denials carry HR notification intents.
        """
        start, end, days = self.validate_input(employee, data, today)
        emergency = data.kind is RequestKind.EMERGENCY
        candidate = {
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
            "days": days,
            "kind": data.kind.value,
            "reason": data.reason,
        }

        try:
            self.ledger.ensure_eligible(employee, today)

            balance = self.ledger.get_balance(employee, start)
            if days > balance.remaining:
                error = InsufficientBalanceError(days, balance.remaining)
                error.notifications.append(
                    balance_denied(employee.employee_id, days, balance, candidate)
                )
                raise error

            conflicts = self.detector.find_conflicts(
                employee.department,
                employee.team,
                start,
                end,
                exclude_employee_id=employee.employee_id,
            )
            if conflicts:
                error = ConflictError(conflicts)
                error.notifications.append(
                    conflict_denied(employee.employee_id, conflicts, candidate)
                )
                raise error

        except (IneligibleError, InsufficientBalanceError, ConflictError) as e:
            logger.warning(f"Submission denied for {employee.employee_id}: {e.kind} {e.message}")
            if emergency and not e.notifications:
                e.notifications.append(
                    emergency_denied(employee.employee_id, e.kind, e.message, candidate)
                )
            raise

        if get_leave_policy_data(data.kind.value)["pm_review"] and pm is not None:
            state = RequestState.PENDING_PM
        else:
            state = RequestState.PENDING_HR

        request = VacationRequest(
            request_id=request_id,
            employee_id=employee.employee_id,
            full_name=employee.full_name,
            department=employee.department,
            team=employee.team,
            manager_id=pm.employee_id if pm is not None else None,
            start_date=start,
            end_date=end,
            days=days,
            kind=data.kind,
            state=state,
            reason=(data.reason or "").strip(),
            created_at=now,
            updated_at=now,
            balance_before=balance.remaining,
            balance_after=balance.remaining - days,
            idempotency_key=data.idempotency_key,
        )
        return request, self._submission_notifications(request)

    def _submission_notifications(self, request: VacationRequest) -> list[NotificationIntent]:
        intents = [to_employee(NotificationKind.REQUEST_SUBMITTED, request)]
        if request.state is RequestState.PENDING_PM:
            intents.append(to_pm(NotificationKind.NEW_REQUEST_FOR_APPROVAL, request))
            intents.append(
                to_hr(NotificationKind.REQUEST_AWAITING_PM, request, employee_id=request.employee_id)
            )
        elif request.kind is RequestKind.EMERGENCY:
            intents.append(
                to_hr(
                    NotificationKind.EMERGENCY_REQUEST,
                    request,
                    employee_id=request.employee_id,
                    reason=request.reason,
                )
            )
        else:
            intents.append(
                to_hr(
                    NotificationKind.NEW_REQUEST_FOR_APPROVAL,
                    request,
                    employee_id=request.employee_id,
                    pm_assigned=False,
                )
            )
        return intents

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def stage_for(self, actor: Employee, request: VacationRequest, decision: Decision) -> Stage:
        """
        Single authorization check for every decision.

        Raises:
            UnauthorizedError: actor may not act on this request
        """
        if decision is Decision.CANCEL:
            if actor.employee_id != request.employee_id:
                raise UnauthorizedError("Only the requester can cancel a vacation request.")
            return Stage.REQUESTER

        if actor.employee_id == request.employee_id:
            raise UnauthorizedError("You cannot decide on your own vacation request.")

        if actor.role is Role.PM:
            if request.manager_id and actor.employee_id != request.manager_id:
                raise UnauthorizedError(
                    f"{actor.employee_id} is not the PM assigned to request {request.request_id}."
                )
            return Stage.PM

        if actor.role in HR_ROLES:
            return Stage.HR

        raise UnauthorizedError(f"Role {actor.role.value} cannot approve or reject requests.")

    def plan_decision(
        self,
        request: VacationRequest,
        actor: Employee,
        decision: Decision,
        now: datetime,
        comment: str = "",
        idempotency_key: str | None = None,
    ) -> PlannedTransition | None:
        """
        Work out the transition a decision causes.

        Returns None when the same decision was already applied (a retried
        event): the caller must treat it as success without side effects.

        Raises:
            UnauthorizedError: actor's role does not fit the decision
            InvalidTransitionError: request is not in the state the decision needs
        """
        stage = self.stage_for(actor, request, decision)

        recorded = request.decision_for(stage)
        if recorded is not None and recorded.decision is decision:
            same_event = idempotency_key is not None and recorded.idempotency_key == idempotency_key
            if same_event or recorded.actor_id == actor.employee_id:
                logger.info(
                    f"Replayed {decision.value} on {request.request_id} by {actor.employee_id}; no-op"
                )
                return None

        next_state = TRANSITIONS.get((request.state, stage, decision))
        if next_state is None:
            if request.state.is_terminal:
                message = f"Request {request.request_id} is already {request.state.value}."
            else:
                message = (
                    f"Cannot {decision.value} request {request.request_id} "
                    f"at the {stage.value} stage while it is {request.state.value}."
                )
            raise InvalidTransitionError(message, request.state)

        return PlannedTransition(
            expected=request.state,
            next_state=next_state,
            decision=DecisionRecord(
                stage=stage,
                actor_id=actor.employee_id,
                actor_role=actor.role,
                decision=decision,
                decided_at=now,
                comment=comment or "",
                idempotency_key=idempotency_key,
            ),
        )

    def decision_notifications(
        self, before: VacationRequest, after: VacationRequest, record: DecisionRecord
    ) -> list[NotificationIntent]:
        extra: dict[str, Any] = {"by": record.actor_id, "comment": record.comment}
        intents: list[NotificationIntent] = []
        pm_involved = bool(after.manager_id) and after.kind is RequestKind.REGULAR

        if record.stage is Stage.PM:
            if after.state is RequestState.PENDING_HR:
                intents.append(to_employee(NotificationKind.PM_APPROVED, after, **extra))
                intents.append(
                    to_hr(
                        NotificationKind.NEW_REQUEST_FOR_APPROVAL,
                        after,
                        employee_id=after.employee_id,
                        pm_assigned=True,
                        **extra,
                    )
                )
            else:
                intents.append(to_employee(NotificationKind.REQUEST_REJECTED, after, stage="pm", **extra))
                intents.append(
                    to_hr(
                        NotificationKind.REQUEST_REJECTED,
                        after,
                        employee_id=after.employee_id,
                        stage="pm",
                        **extra,
                    )
                )

        elif record.stage is Stage.HR:
            kind = (
                NotificationKind.REQUEST_APPROVED
                if after.state is RequestState.APPROVED
                else NotificationKind.REQUEST_REJECTED
            )
            intents.append(to_employee(kind, after, stage="hr", **extra))
            if pm_involved:
                intents.append(to_pm(kind, after, stage="hr", **extra))

        else:
            if pm_involved and (
                before.state is RequestState.PENDING_PM or before.pm_decision is not None
            ):
                intents.append(to_pm(NotificationKind.REQUEST_CANCELLED, after, **extra))
            intents.append(
                to_hr(NotificationKind.REQUEST_CANCELLED, after, employee_id=after.employee_id, **extra)
            )

        return intents

    def exhausted_notifications(
        self, employee: Employee, request: VacationRequest
    ) -> list[NotificationIntent]:
        """Tell employee and HR when an approval used up the work year's days."""
        try:
            balance = self.ledger.get_balance(employee, request.start_date)
        except LeaveEngineError as e:
            logger.warning(f"Skipping exhausted check for {employee.employee_id}: {e.message}")
            return []

        if balance.remaining > 0:
            return []

        extra = {
            "annual_quota": balance.annual_quota,
            "used": balance.used,
            "work_year_end": balance.work_year_end.isoformat(),
        }
        return [
            to_employee(NotificationKind.VACATION_DAYS_EXHAUSTED, request, **extra),
            to_hr(
                NotificationKind.VACATION_DAYS_EXHAUSTED,
                request,
                employee_id=employee.employee_id,
                **extra,
            ),
        ]
