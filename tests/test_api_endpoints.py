"""Tests for the REST API endpoints."""

import pytest
from fastapi.testclient import TestClient

from recordflow.config import get_testing_config
from recordflow.main import app_state, create_app


@pytest.fixture
def client(session_factory, metadata_store, authorization, validator_registry):
    """Test client wired to the seeded temporary database."""
    app = create_app(get_testing_config(), session_factory=session_factory)
    with TestClient(app) as test_client:
        for name, description in validator_registry.list_validators().items():
            app_state.validator_registry.register(name, validator_registry.get(name), description)
        yield test_client


@pytest.fixture
def seeded_records(record_store):
    record_store.create_record("order", {"name": "Desk", "amount": 50}, record_id="order-1")
    record_store.create_record("order", {"name": "Lamp", "amount": 5}, record_id="order-2", state="APPROVED")
    record_store.create_record("order", {"name": "Pen", "amount": 5}, record_id="order-3", state="SUBMITTED")


class TestHealth:
    """Test cases for health endpoints."""

    def test_health(self, client):
        response = client.get("/api/v1/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert all(body["components"].values())

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert "X-Request-ID" in response.headers


class TestValidationEndpoints:
    """Test cases for validation endpoints."""

    def test_validate_record(self, client):
        response = client.post("/api/v1/entities/order/validate", json={"data": {"name": ""}})

        assert response.status_code == 200
        body = response.json()
        assert body["valid"] is False
        assert len(body["errors"]) == 1
        assert body["errors"][0]["property_name"] == "name"
        assert body["errors"][0]["level"] == "FIELD"

    def test_validate_valid_record(self, client):
        response = client.post(
            "/api/v1/entities/order/validate",
            json={"data": {"name": "x", "amount": 3}, "trigger_event": "UPDATE"}
        )

        assert response.status_code == 200
        assert response.json() == {"valid": True, "errors": []}

    def test_validate_unknown_entity(self, client):
        response = client.post("/api/v1/entities/missing/validate", json={"data": {}})

        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "NotFoundError"

    def test_validate_field(self, client):
        response = client.post(
            "/api/v1/entities/order/validate-field",
            json={"property_name": "name", "value": "x" * 30, "data": {}}
        )

        assert response.status_code == 200
        assert [error["message"] for error in response.json()["errors"]] == ["Name is too long"]

    def test_calculate(self, client):
        response = client.post("/api/v1/entities/order/calculate", json={"data": {"quantity": 2, "amount": 4}})

        assert response.status_code == 200
        assert response.json()["data"]["total"] == 8.0


class TestMeasureEndpoints:
    """Test cases for measure endpoints."""

    def test_evaluate_measure(self, client):
        response = client.post(
            "/api/v1/measures/discounted/evaluate?version=1",
            json={"parameters": {"amount": 10, "rate": 0.5}}
        )

        assert response.status_code == 200
        assert response.json() == {"identifier": "discounted", "version": 1, "result": 5.0}

    def test_missing_parameter_is_bad_request(self, client):
        response = client.post("/api/v1/measures/discounted/evaluate", json={"parameters": {}})

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "MissingParameterError"

    def test_unknown_measure(self, client):
        response = client.post("/api/v1/measures/missing/evaluate", json={"parameters": {}})
        assert response.status_code == 404

    def test_evaluation_failure(self, client):
        response = client.post(
            "/api/v1/measures/ratio/evaluate",
            json={"parameters": {"amount": 1, "divisor": 0}}
        )

        assert response.status_code == 422
        assert response.json()["detail"]["context"]["measure_identifier"] == "ratio"

    def test_evaluate_batch(self, client):
        response = client.post("/api/v1/measures/evaluate-batch", json={"requests": [
            {"identifier": "ratio", "parameters": {"amount": 9, "divisor": 3}},
            {"identifier": "ratio", "version": 1, "parameters": {"amount": 9, "divisor": 3}},
        ]})

        assert response.status_code == 200
        assert [item["result"] for item in response.json()] == [3.0, 3.0]


class TestWorkflowEndpoints:
    """Test cases for workflow endpoints."""

    def test_available_transitions(self, client, seeded_records):
        response = client.get("/api/v1/entities/order/records/order-1/transitions")

        assert response.status_code == 200
        assert [item["transition_id"] for item in response.json()] == ["submit"]

    def test_execute_transition_and_read_audit_log(self, client, seeded_records):
        response = client.post(
            "/api/v1/entities/order/records/order-1/transitions/submit",
            json={"comments": "ready"},
            headers={"X-Actor-Id": "bob"}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["from_state"] == "DRAFT"
        assert body["to_state"] == "SUBMITTED"
        assert body["performed_by"] == "bob"

        audit = client.get("/api/v1/entities/order/records/order-1/audit-log").json()
        assert len(audit) == 1
        assert audit[0]["comments"] == "ready"

    def test_illegal_state_is_conflict(self, client, seeded_records):
        response = client.post("/api/v1/entities/order/records/order-2/transitions/submit", json={})

        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "IllegalStateError"

    def test_forbidden(self, client, seeded_records):
        response = client.post(
            "/api/v1/entities/order/records/order-3/transitions/approve",
            headers={"X-Actor-Id": "bob"}
        )
        assert response.status_code == 403

    def test_transition_validation_failure(self, client, seeded_records):
        response = client.post(
            "/api/v1/entities/order/records/order-3/transitions/approve",
            headers={"X-Actor-Id": "alice"}
        )

        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail["error"] == "TransitionValidationError"
        assert detail["details"]["issues"][0]["message"] == "Amount too small to approve"

    def test_invalid_transition_is_bad_request(self, client, seeded_records):
        response = client.post("/api/v1/entities/order/records/order-1/transitions/archive", json={})
        assert response.status_code == 400
