"""
Tests for team absence conflict detection.
"""

from datetime import date

from src.conflicts import ConflictDetector
from src.models import RequestState


class TestConflictDetector:
    """Approved leave in the same department+team blocks overlapping dates."""

    def test_boundary_day_counts(self, repository, employees, seed_request):
        """Touching on a single shared day is a conflict."""
        existing = seed_request(employees["E3"], date(2025, 6, 4), date(2025, 6, 10))

        conflicts = ConflictDetector(repository).find_conflicts(
            "Marketing", "PPC", date(2025, 6, 1), date(2025, 6, 4)
        )

        assert [c.request_id for c in conflicts] == [existing.request_id]
        assert conflicts[0].employee_id == "E3"
        assert conflicts[0].state is RequestState.APPROVED

    def test_end_boundary_day_counts(self, repository, employees, seed_request):
        """The last day of the existing leave also counts."""
        seed_request(employees["E3"], date(2025, 6, 4), date(2025, 6, 10))

        conflicts = ConflictDetector(repository).find_conflicts(
            "Marketing", "PPC", date(2025, 6, 10), date(2025, 6, 12)
        )
        assert len(conflicts) == 1

    def test_adjacent_ranges_do_not_conflict(self, repository, employees, seed_request):
        """Starting the day after the other leave ends is fine."""
        seed_request(employees["E3"], date(2025, 6, 4), date(2025, 6, 10))
        detector = ConflictDetector(repository)

        assert detector.find_conflicts("Marketing", "PPC", date(2025, 6, 11), date(2025, 6, 13)) == []
        assert detector.find_conflicts("Marketing", "PPC", date(2025, 6, 1), date(2025, 6, 3)) == []

    def test_conflicts_are_symmetric(self, repository, employees, seed_request):
        """Two overlapping approved requests each report the other."""
        a = seed_request(employees["E1"], date(2025, 6, 1), date(2025, 6, 5))
        b = seed_request(employees["E3"], date(2025, 6, 5), date(2025, 6, 9))
        detector = ConflictDetector(repository)

        from_a = detector.find_conflicts(
            a.department, a.team, a.start_date, a.end_date, exclude_request_id=a.request_id
        )
        from_b = detector.find_conflicts(
            b.department, b.team, b.start_date, b.end_date, exclude_request_id=b.request_id
        )

        assert [c.request_id for c in from_a] == [b.request_id]
        assert [c.request_id for c in from_b] == [a.request_id]

    def test_sorted_by_start_date(self, repository, employees, seed_request):
        """Conflicts come back ordered by start date."""
        later = seed_request(employees["E3"], date(2025, 6, 8), date(2025, 6, 9))
        earlier = seed_request(employees["PM1"], date(2025, 6, 2), date(2025, 6, 6))

        conflicts = ConflictDetector(repository).find_conflicts(
            "Marketing", "PPC", date(2025, 6, 1), date(2025, 6, 30)
        )

        assert [c.request_id for c in conflicts] == [earlier.request_id, later.request_id]

    def test_pending_requests_do_not_block(self, repository, employees, seed_request):
        """Only approved leave is a conflict."""
        seed_request(employees["E3"], date(2025, 6, 4), date(2025, 6, 10), state=RequestState.PENDING_HR)
        seed_request(employees["PM1"], date(2025, 6, 4), date(2025, 6, 10), state=RequestState.PENDING_PM)

        assert (
            ConflictDetector(repository).find_conflicts(
                "Marketing", "PPC", date(2025, 6, 1), date(2025, 6, 30)
            )
            == []
        )

    def test_other_team_does_not_conflict(self, repository, employees, seed_request):
        """Same department but different team, or different department, is fine."""
        seed_request(employees["PM2"], date(2025, 6, 4), date(2025, 6, 10))
        seed_request(employees["E2"], date(2025, 6, 4), date(2025, 6, 10))

        assert (
            ConflictDetector(repository).find_conflicts(
                "Marketing", "PPC", date(2025, 6, 1), date(2025, 6, 30)
            )
            == []
        )

    def test_exclude_request_id(self, repository, employees, seed_request):
        """A request is never its own conflict."""
        own = seed_request(employees["E3"], date(2025, 6, 4), date(2025, 6, 10))

        conflicts = ConflictDetector(repository).find_conflicts(
            "Marketing", "PPC", own.start_date, own.end_date, exclude_request_id=own.request_id
        )
        assert conflicts == []

    def test_exclude_employee_id(self, repository, employees, seed_request):
        """The candidate's own approved leave is not a team conflict."""
        seed_request(employees["E1"], date(2025, 6, 4), date(2025, 6, 10))
        other = seed_request(employees["E3"], date(2025, 6, 9), date(2025, 6, 12))

        conflicts = ConflictDetector(repository).find_conflicts(
            "Marketing", "PPC", date(2025, 6, 1), date(2025, 6, 30), exclude_employee_id="E1"
        )
        assert [c.request_id for c in conflicts] == [other.request_id]
