"""
Error handling tests.

CRITICAL: These tests verify that:
1. All errors return consistent shapes ({"error", "code", "details"})
2. Entitlement failures are all 402
3. Stack traces are never returned to clients
4. Correlation IDs are included in responses
"""

import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient

from genbook.platform.errors import (
    AppError,
    FeatureNotEntitledError,
    NotFoundError,
    PlanRequiredError,
    UnauthenticatedError,
    UsageLimitExceededError,
    ValidationError,
    generate_correlation_id,
    register_error_handlers,
)


@pytest.fixture
def error_app():
    app = FastAPI()
    register_error_handlers(app)

    @app.get("/feature")
    def feature():
        raise FeatureNotEntitledError("voice_commands", "free")

    @app.get("/missing")
    def missing():
        raise NotFoundError("Appointment", "apt-1")

    @app.get("/http")
    def http():
        raise HTTPException(status_code=409, detail="Conflict")

    @app.get("/crash")
    def crash():
        raise RuntimeError("database password is hunter2")

    return app


@pytest.fixture
def error_client(error_app):
    return TestClient(error_app, raise_server_exceptions=False)


class TestErrorClasses:
    def test_app_error_to_dict(self):
        error = AppError(code="TEST_ERROR", message="Test message", details={"extra": "info"})

        assert error.to_dict() == {
            "error": "Test message",
            "code": "TEST_ERROR",
            "details": {"extra": "info"},
        }

    @pytest.mark.parametrize("error,code", [
        (UnauthenticatedError(), "UNAUTHENTICATED"),
        (PlanRequiredError(), "PLAN_REQUIRED"),
        (FeatureNotEntitledError("voice_commands", "free"), "FEATURE_NOT_ENTITLED"),
        (UsageLimitExceededError("appointments_per_month", "free", 50, 50), "USAGE_LIMIT_EXCEEDED"),
    ])
    def test_entitlement_errors_are_402(self, error, code):
        assert error.status_code == 402
        assert error.code == code
        assert isinstance(error.to_dict()["error"], str)

    def test_default_messages(self):
        assert UnauthenticatedError().message == "Missing tenant context"
        assert PlanRequiredError().message == "Subscription inactive"
        assert UsageLimitExceededError("team_members", "free", 1, 1).message == (
            "Usage limit reached for team_members"
        )

    def test_plan_required_details(self):
        error = PlanRequiredError(plan="free", status_value="past_due", allowed_plans=["enterprise"])
        assert error.details == {"plan": "free", "status": "past_due", "allowed_plans": ["enterprise"]}

    def test_validation_error_is_400(self):
        assert ValidationError("bad").status_code == 400

    def test_correlation_ids_are_unique(self):
        assert generate_correlation_id() != generate_correlation_id()


class TestErrorResponses:
    def test_app_error_rendered_with_shape(self, error_client):
        response = error_client.get("/feature")

        assert response.status_code == 402
        assert response.json() == {
            "error": "Feature not available on current plan",
            "code": "FEATURE_NOT_ENTITLED",
            "details": {"feature": "voice_commands", "plan": "free"},
        }
        assert response.headers["X-Correlation-ID"]

    def test_not_found(self, error_client):
        response = error_client.get("/missing")

        assert response.status_code == 404
        assert response.json()["error"] == "Appointment with id 'apt-1' not found"

    def test_http_exception_flattened(self, error_client):
        response = error_client.get("/http")

        assert response.status_code == 409
        assert response.json() == {"error": "Conflict", "code": "HTTP_ERROR", "details": {}}

    def test_unknown_route_uses_error_shape(self, error_client):
        response = error_client.get("/no-such-route")

        assert response.status_code == 404
        assert response.json() == {"error": "Not Found", "code": "HTTP_ERROR", "details": {}}
        assert response.headers["X-Correlation-ID"]

    def test_method_not_allowed_keeps_allow_header(self, error_client):
        response = error_client.post("/missing")

        assert response.status_code == 405
        assert response.json()["code"] == "HTTP_ERROR"
        assert "GET" in response.headers["allow"]

    def test_unhandled_exception_hides_internals(self, error_client):
        response = error_client.get("/crash")

        assert response.status_code == 500
        body = response.json()
        assert body["code"] == "INTERNAL_ERROR"
        assert "hunter2" not in response.text
        assert "Traceback" not in response.text

    def test_incoming_correlation_id_echoed(self, error_client):
        response = error_client.get("/missing", headers={"X-Correlation-ID": "corr-123"})

        assert response.headers["X-Correlation-ID"] == "corr-123"
