"""
Pytest configuration and fixtures.
Shared test utilities and mock data.
"""

import itertools
from datetime import date, datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from data.leave_policies import LEAVE_POLICIES, MOCK_EMPLOYEES
from src.coordinator import RequestCoordinator
from src.models import Employee, RequestKind, RequestState, Role, VacationRequest
from src.repository import InMemoryEmployeeDirectory, InMemoryRequestRepository
from src.utils.dates import inclusive_days

# All scenarios run on this calendar day
TODAY = date(2025, 2, 20)
NOW = datetime(2025, 2, 20, 9, 0, tzinfo=timezone.utc)


class TickingClock:
    """Returns a strictly increasing timestamp on every call."""

    def __init__(self, start: datetime = NOW, step: timedelta = timedelta(seconds=1)):
        self._ticks = itertools.count()
        self.start = start
        self.step = step

    def __call__(self) -> datetime:
        return self.start + self.step * next(self._ticks)


@pytest.fixture
def mock_employee_data():
    """Return mock employee data for testing."""
    return MOCK_EMPLOYEES.copy()


@pytest.fixture
def mock_leave_policies():
    """Return mock leave policies for testing."""
    return LEAVE_POLICIES.copy()


@pytest.fixture
def employees():
    """Org used across the suite: one PPC team with a PM, plus HR and CEO."""
    return {
        "E1": Employee(
            employee_id="E1",
            full_name="Olena Kovalenko",
            department="Marketing",
            team="PPC",
            manager_id="PM1",
            first_working_day=date(2023, 2, 1),
        ),
        "E2": Employee(
            employee_id="E2",
            full_name="Andrii Shevchenko",
            department="Design",
            team="Motion Designer",
            first_working_day=date(2022, 9, 15),
        ),
        "E3": Employee(
            employee_id="E3",
            full_name="Dmytro Lysenko",
            department="Marketing",
            team="PPC",
            manager_id="PM1",
            first_working_day=date(2022, 5, 1),
        ),
        "NEW": Employee(
            employee_id="NEW",
            full_name="Sofiia Hnatiuk",
            department="Marketing",
            team="PPC",
            manager_id="PM1",
            first_working_day=date(2025, 1, 10),
        ),
        "NOFWD": Employee(
            employee_id="NOFWD",
            full_name="Petro Moroz",
            department="SMM",
            team="SMM specialist",
        ),
        "GONE": Employee(
            employee_id="GONE",
            full_name="Oksana Savchuk",
            department="Design",
            team="Motion Designer",
            first_working_day=date(2021, 3, 1),
            active=False,
        ),
        "PM1": Employee(
            employee_id="PM1",
            full_name="Iryna Bondar",
            department="Marketing",
            team="PPC",
            first_working_day=date(2021, 4, 12),
            role=Role.PM,
        ),
        "PM2": Employee(
            employee_id="PM2",
            full_name="Yurii Kravets",
            department="Marketing",
            team="Target",
            first_working_day=date(2021, 4, 12),
            role=Role.PM,
        ),
        "HR1": Employee(
            employee_id="HR1",
            full_name="Maria Tkachenko",
            department="HR",
            team="HR",
            first_working_day=date(2020, 1, 20),
            role=Role.HR,
        ),
        "CEO1": Employee(
            employee_id="CEO1",
            full_name="Taras Melnyk",
            department="CEO",
            team="CEO",
            first_working_day=date(2019, 6, 1),
            role=Role.CEO,
        ),
    }


@pytest.fixture
def directory(employees):
    return InMemoryEmployeeDirectory(list(employees.values()))


@pytest.fixture
def repository():
    return InMemoryRequestRepository()


@pytest.fixture
def coordinator(repository, directory):
    """Coordinator pinned to TODAY with increasing timestamps."""
    return RequestCoordinator(repository, directory, clock=lambda: TODAY, now=TickingClock())


@pytest.fixture
def seed_request(repository):
    """Store a request directly, bypassing validation (history fixtures)."""
    counter = itertools.count(1)

    def _seed(
        employee: Employee,
        start: date,
        end: date,
        state: RequestState = RequestState.APPROVED,
        kind: RequestKind = RequestKind.REGULAR,
    ) -> VacationRequest:
        n = next(counter)
        request = VacationRequest(
            request_id=f"SEED_{n}",
            employee_id=employee.employee_id,
            full_name=employee.full_name,
            department=employee.department,
            team=employee.team,
            manager_id=employee.manager_id,
            start_date=start,
            end_date=end,
            days=inclusive_days(start, end),
            kind=kind,
            state=state,
            created_at=NOW - timedelta(days=30) + timedelta(minutes=n),
        )
        repository.create(request)
        return request

    return _seed


@pytest.fixture
def test_client(coordinator):
    """Create FastAPI test client backed by the in-memory coordinator."""
    from src.main import app

    with patch("src.main.get_coordinator", return_value=coordinator):
        yield TestClient(app)
