"""
Tests for the in-memory storage and record parsing helpers.
"""

from datetime import date

import pytest

from conftest import NOW
from src.errors import InvalidTransitionError, NotFoundError, RepositoryError
from src.models import Decision, DecisionRecord, RequestState, Role, Stage
from src.repository import InMemoryEmployeeDirectory, apply_transition, employee_from_record


def hr_approval(actor_id="HR1"):
    return DecisionRecord(
        stage=Stage.HR,
        actor_id=actor_id,
        actor_role=Role.HR,
        decision=Decision.APPROVE,
        decided_at=NOW,
    )


class TestInMemoryRequestRepository:
    """Dict-backed repository used in development and tests."""

    def test_duplicate_create_fails(self, repository, employees, seed_request):
        """Request ids are unique."""
        request = seed_request(employees["E1"], date(2025, 6, 2), date(2025, 6, 3))

        with pytest.raises(RepositoryError):
            repository.create(request)

    def test_compare_and_swap_applies_decision(self, repository, employees, seed_request):
        """A matching expected state moves the request and records the decision."""
        request = seed_request(
            employees["E2"], date(2025, 6, 2), date(2025, 6, 3), state=RequestState.PENDING_HR
        )

        updated = repository.compare_and_swap_state(
            request.request_id, RequestState.PENDING_HR, RequestState.APPROVED, hr_approval()
        )

        assert updated.state is RequestState.APPROVED
        assert updated.hr_decision.actor_id == "HR1"
        assert updated.updated_at == NOW
        assert repository.get(request.request_id) == updated

    def test_compare_and_swap_stale_state(self, repository, employees, seed_request):
        """A stale expected state is refused and nothing changes."""
        request = seed_request(employees["E2"], date(2025, 6, 2), date(2025, 6, 3))

        with pytest.raises(InvalidTransitionError) as exc_info:
            repository.compare_and_swap_state(
                request.request_id, RequestState.PENDING_HR, RequestState.APPROVED, hr_approval()
            )

        assert exc_info.value.current_state is RequestState.APPROVED
        assert repository.get(request.request_id) == request

    def test_compare_and_swap_missing(self, repository):
        with pytest.raises(NotFoundError):
            repository.compare_and_swap_state(
                "VAC_missing", RequestState.PENDING_HR, RequestState.APPROVED, hr_approval()
            )

    def test_window_query_filters_on_start_date(self, repository, employees, seed_request):
        """Only requests starting inside [start, end] are returned."""
        inside = seed_request(employees["E1"], date(2025, 3, 1), date(2025, 3, 2))
        seed_request(employees["E1"], date(2025, 1, 30), date(2025, 2, 2))
        seed_request(employees["E3"], date(2025, 3, 1), date(2025, 3, 2))

        found = repository.list_by_employee_in_window("E1", date(2025, 2, 1), date(2026, 1, 31))
        assert found == [inside]

    def test_unit_query_only_approved(self, repository, employees, seed_request):
        approved = seed_request(employees["E1"], date(2025, 6, 1), date(2025, 6, 2))
        seed_request(employees["E3"], date(2025, 6, 1), date(2025, 6, 2), state=RequestState.PENDING_PM)

        found = repository.list_approved_by_unit_in_range(
            "Marketing", "PPC", date(2025, 6, 2), date(2025, 6, 9)
        )
        assert found == [approved]


class TestApplyTransition:
    """Each stage writes its own decision slot."""

    def test_stage_slots(self, employees, seed_request):
        request = seed_request(employees["E1"], date(2025, 6, 2), date(2025, 6, 3), state=RequestState.PENDING_PM)
        pm = DecisionRecord(Stage.PM, "PM1", Role.PM, Decision.APPROVE, NOW)
        cancel = DecisionRecord(Stage.REQUESTER, "E1", Role.EMPLOYEE, Decision.CANCEL, NOW)

        after_pm = apply_transition(request, RequestState.PENDING_HR, pm)
        after_cancel = apply_transition(after_pm, RequestState.CANCELLED, cancel)

        assert after_pm.pm_decision == pm
        assert after_pm.hr_decision is None
        assert after_cancel.cancellation == cancel
        assert after_cancel.pm_decision == pm
        assert request.state is RequestState.PENDING_PM


class TestEmployeeRecords:
    """Parsing employee rows typed by HR."""

    def test_parses_sheet_values(self):
        employee = employee_from_record(
            {
                "employee_id": " 2001 ",
                "full_name": "Nazar Ivanenko",
                "department": "SMM",
                "team": "PM",
                "manager_id": 1003,
                "first_working_day": "01.03.2025",
                "role": "CEO",
                "active": "no",
                "annual_quota": "20",
            }
        )

        assert employee.employee_id == "2001"
        assert employee.manager_id == "1003"
        assert employee.first_working_day == date(2025, 3, 1)
        assert employee.role is Role.CEO
        assert employee.active is False
        assert employee.annual_quota == 20

    def test_defaults_for_blank_cells(self):
        employee = employee_from_record({"employee_id": "2002", "active": "", "role": ""})

        assert employee.role is Role.EMPLOYEE
        assert employee.active is True
        assert employee.manager_id is None
        assert employee.first_working_day is None
        assert employee.annual_quota is None

    def test_unknown_role(self):
        with pytest.raises(ValueError):
            employee_from_record({"employee_id": "2003", "role": "boss"})

    def test_mock_directory_loads(self, mock_employee_data):
        """Development fixtures form a consistent org."""
        directory = InMemoryEmployeeDirectory.from_records(mock_employee_data)

        olena = directory.get("1001")
        assert olena.first_working_day == date(2023, 2, 1)
        assert directory.get(olena.manager_id).role is Role.PM
        assert directory.get("1005").role is Role.CEO
        assert directory.get("9999") is None
