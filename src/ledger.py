"""
Balance ledger.

Balances are never stored. Every read recomputes ``used`` from the
employee's approved requests in the work year that contains ``as_of``,
so approving a request is the only thing that changes a balance.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta

from data.leave_policies import ANNUAL_QUOTA_DAYS, ELIGIBILITY_MONTHS
from src.errors import IneligibleError
from src.models import Eligibility, Employee, RequestState, VacationBalance
from src.observability import trace_span
from src.repository import RequestRepository
from src.utils.dates import add_months, add_years

logger = logging.getLogger(__name__)


def work_year_window(first_working_day: date, as_of: date) -> tuple[date, date]:
    """
    Return the inclusive work year [start, end] that contains ``as_of``.

    The work year starts on the anniversary of the first working day, not on
    January 1st. Before the first working day the first work year is used.
    """
    if as_of < first_working_day:
        offset = 0
    else:
        offset = as_of.year - first_working_day.year
        if add_years(first_working_day, offset) > as_of:
            offset -= 1

    start = add_years(first_working_day, offset)
    end = add_years(first_working_day, offset + 1) - timedelta(days=1)
    return start, end


class BalanceLedger:
    """Read-only view of vacation entitlement and consumption."""

    def __init__(
        self,
        repository: RequestRepository,
        annual_quota: int = ANNUAL_QUOTA_DAYS,
        eligibility_months: int = ELIGIBILITY_MONTHS,
    ):
        self.repository = repository
        self.annual_quota = annual_quota
        self.eligibility_months = eligibility_months

    def quota_for(self, employee: Employee) -> int:
        if employee.annual_quota is not None:
            return employee.annual_quota
        return self.annual_quota

    def eligible_from(self, employee: Employee) -> date | None:
        if employee.first_working_day is None:
            return None
        return add_months(employee.first_working_day, self.eligibility_months)

    def is_eligible(self, employee: Employee, as_of: date) -> Eligibility:
        """
        Check the probation gate.

        Independent of the remaining balance: a new hire with a full balance
        is still ineligible until the gate opens.
        """
        eligible_from = self.eligible_from(employee)
        if eligible_from is None:
            return Eligibility(
                eligible=False,
                reason="First working day is not recorded. Please contact HR.",
            )

        if as_of < eligible_from:
            return Eligibility(
                eligible=False,
                reason=f"Vacation becomes available {self.eligibility_months} months after "
                f"your first working day, from {eligible_from.isoformat()}.",
                eligible_from=eligible_from,
            )

        return Eligibility(eligible=True, reason="Eligible for vacation.", eligible_from=eligible_from)

    def ensure_eligible(self, employee: Employee, as_of: date) -> None:
        eligibility = self.is_eligible(employee, as_of)
        if not eligibility.eligible:
            logger.warning(
                f"Employee {employee.employee_id} ineligible as of {as_of}: {eligibility.reason}"
            )
            raise IneligibleError(eligibility.reason, eligibility.eligible_from)

    def get_balance(self, employee: Employee, as_of: date) -> VacationBalance:
        """
        Compute the balance for the work year containing ``as_of``.

        Only APPROVED requests whose start date falls inside the window count.
        An employee with no history gets the full quota.
        """
        if employee.first_working_day is None:
            raise IneligibleError("First working day is not recorded. Please contact HR.")

        start, end = work_year_window(employee.first_working_day, as_of)
        quota = self.quota_for(employee)

        with trace_span("get_balance", employee=employee.employee_id, as_of=as_of):
            history = self.repository.list_by_employee_in_window(employee.employee_id, start, end)

        used = sum(
            r.days
            for r in history
            if r.state is RequestState.APPROVED and start <= r.start_date <= end
        )

        return VacationBalance(
            annual_quota=quota,
            used=used,
            remaining=max(0, quota - used),
            work_year_start=start,
            work_year_end=end,
        )
