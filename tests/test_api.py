"""
Tests for FastAPI endpoints.
"""

from datetime import date
from unittest.mock import Mock, patch

import pytest
from fastapi.testclient import TestClient

from src.errors import RepositoryError
from src.main import app


class TestAPIEndpoints:
    """Test FastAPI REST API endpoints."""

    @pytest.fixture
    def client(self, test_client):
        return test_client

    def submit(self, client, **overrides):
        body = {"employee_id": "E1", "start_date": "2025-06-02", "days": 5}
        body.update(overrides)
        return client.post("/requests", json=body)

    def test_root_endpoint(self, client):
        """Test root endpoint returns API info."""
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert "Vacation Request Engine API" in data["message"]
        assert "version" in data

    def test_health_endpoint(self, client):
        """Test health check endpoint."""
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "environment" in data
        assert data["storage_circuit_breaker"]["state"] == "closed"

    def test_metrics_counts_pending(self, client):
        """Metrics expose queue sizes per pending state."""
        self.submit(client)
        self.submit(client, employee_id="E2")

        data = client.get("/metrics").json()

        assert data["pending"] == {"pending_pm": 1, "pending_hr": 1}
        assert "storage_circuit_breaker" in data

    def test_submit_creates_request(self, client):
        """Test successful submission returns request and intents."""
        response = self.submit(client, idempotency_key="tg-1")

        assert response.status_code == 201
        data = response.json()
        assert data["request"]["state"] == "pending_pm"
        assert data["request"]["end_date"] == "2025-06-06"
        assert data["replayed"] is False
        assert [n["recipient"] for n in data["notifications"]] == ["employee", "pm", "hr"]

    def test_submit_replay(self, client):
        """Duplicate delivery returns the original without intents."""
        first = self.submit(client, idempotency_key="tg-2").json()
        second = self.submit(client, idempotency_key="tg-2").json()

        assert second["replayed"] is True
        assert second["notifications"] == []
        assert second["request"]["request_id"] == first["request"]["request_id"]

    def test_ineligible_is_422(self, client):
        response = self.submit(client, employee_id="NEW", start_date="2025-03-01", days=1)

        assert response.status_code == 422
        data = response.json()
        assert data["error"] == "IneligibleError"
        assert data["details"]["eligible_from"] == "2025-04-10"

    def test_insufficient_balance_carries_hr_intent(self, client, employees, seed_request):
        """Denied requests still return the HR notification."""
        seed_request(employees["E1"], date(2025, 3, 3), date(2025, 3, 24))

        response = self.submit(client)

        assert response.status_code == 422
        data = response.json()
        assert data["error"] == "InsufficientBalanceError"
        assert data["notifications"][0]["kind"] == "balance_denied"
        assert data["notifications"][0]["recipient"] == "hr"

    def test_range_violation_is_422(self, client):
        response = self.submit(client, days=9)

        assert response.status_code == 422
        assert response.json()["error"] == "RangeViolationError"

    def test_malformed_body_is_422(self, client):
        """Pydantic validation rejects unparseable dates."""
        response = self.submit(client, start_date="next tuesday")
        assert response.status_code == 422

    def test_decision_flow(self, client):
        """PM then HR approval through the API."""
        request_id = self.submit(client).json()["request"]["request_id"]

        pm = client.post(f"/requests/{request_id}/decision", json={"actor_id": "PM1", "decision": "approve"})
        hr = client.post(
            f"/requests/{request_id}/decision",
            json={"actor_id": "HR1", "decision": "approve", "comment": "ok"},
        )

        assert pm.status_code == 200
        assert pm.json()["request"]["state"] == "pending_hr"
        assert hr.json()["request"]["state"] == "approved"
        assert hr.json()["request"]["hr_decision"]["comment"] == "ok"

        balance = client.get("/employees/E1/balance", params={"as_of": "2025-06-02"}).json()
        assert balance["remaining"] == 19

    def test_decision_on_terminal_is_409(self, client):
        request_id = self.submit(client, employee_id="E2").json()["request"]["request_id"]
        client.post(f"/requests/{request_id}/decision", json={"actor_id": "HR1", "decision": "reject"})

        response = client.post(
            f"/requests/{request_id}/decision", json={"actor_id": "CEO1", "decision": "approve"}
        )

        assert response.status_code == 409
        assert response.json()["details"]["current_state"] == "rejected"

    def test_unauthorized_is_403(self, client):
        request_id = self.submit(client).json()["request"]["request_id"]

        response = client.post(f"/requests/{request_id}/decision", json={"actor_id": "E3", "decision": "approve"})
        assert response.status_code == 403

    def test_unknown_request_is_404(self, client):
        response = client.get("/requests/VAC_missing")

        assert response.status_code == 404
        assert response.json()["error"] == "NotFoundError"

    def test_cancel(self, client):
        request_id = self.submit(client).json()["request"]["request_id"]

        response = client.post(f"/requests/{request_id}/cancel", json={"actor_id": "E1"})

        assert response.status_code == 200
        assert response.json()["request"]["state"] == "cancelled"
        assert client.get(f"/requests/{request_id}").json()["state"] == "cancelled"

    def test_pending_queue(self, client):
        request_id = self.submit(client).json()["request"]["request_id"]

        data = client.get("/requests", params={"actor_id": "PM1"}).json()

        assert [r["request_id"] for r in data["requests"]] == [request_id]

    def test_employee_history_and_eligibility(self, client):
        self.submit(client)

        history = client.get("/employees/E1/requests").json()
        eligibility = client.get("/employees/NEW/eligibility").json()

        assert len(history["requests"]) == 1
        assert eligibility["eligible"] is False

    def test_conflicts_endpoint(self, client, employees, seed_request):
        existing = seed_request(employees["E3"], date(2025, 6, 4), date(2025, 6, 10))

        response = client.get(
            "/conflicts",
            params={
                "department": "Marketing",
                "team": "PPC",
                "start_date": "2025-06-01",
                "end_date": "2025-06-04",
            },
        )

        assert response.status_code == 200
        assert [c["request_id"] for c in response.json()["conflicts"]] == [existing.request_id]

    def test_storage_failure_is_503(self):
        """Repository errors map to Service Unavailable."""
        coordinator = Mock()
        coordinator.get_request.side_effect = RepositoryError("Spreadsheet get failed", operation="get")

        with patch("src.main.get_coordinator", return_value=coordinator):
            response = TestClient(app).get("/requests/VAC_1")

        assert response.status_code == 503
        assert response.json()["details"]["operation"] == "get"
