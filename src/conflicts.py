"""
Team absence conflict detection.

A conflict is another employee's APPROVED vacation in the same
department and team whose dates intersect the candidate range. Both
ends of a range are days off, so touching on a single day is a conflict.
"""

from __future__ import annotations

import logging
from datetime import date

from src.models import Conflict, RequestState
from src.observability import trace_span
from src.repository import RequestRepository

logger = logging.getLogger(__name__)


class ConflictDetector:
    def __init__(self, repository: RequestRepository):
        self.repository = repository

    def find_conflicts(
        self,
        department: str,
        team: str,
        start_date: date,
        end_date: date,
        exclude_request_id: str | None = None,
        exclude_employee_id: str | None = None,
    ) -> list[Conflict]:
        """
        Return every conflicting request, sorted by start date.

        Args:
            department: Department of the candidate
            team: Team of the candidate
            start_date: First day off (inclusive)
            end_date: Last day off (inclusive)
            exclude_request_id: Request being amended, never its own conflict
            exclude_employee_id: Candidate employee; own vacations are not team conflicts
        """
        with trace_span("find_conflicts", department=department, team=team):
            candidates = self.repository.list_approved_by_unit_in_range(
                department, team, start_date, end_date
            )

        conflicts = [
            Conflict.from_request(r)
            for r in candidates
            if r.state is RequestState.APPROVED
            and r.department == department
            and r.team == team
            and r.request_id != exclude_request_id
            and (exclude_employee_id is None or r.employee_id != exclude_employee_id)
            and r.overlaps(start_date, end_date)
        ]
        conflicts.sort(key=lambda c: (c.start_date, c.end_date, c.request_id))

        if conflicts:
            logger.info(
                f"{len(conflicts)} conflict(s) in {department}/{team} "
                f"for {start_date.isoformat()}..{end_date.isoformat()}"
            )
        return conflicts
