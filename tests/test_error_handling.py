"""Tests for the JSON error envelope and request correlation."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import BaseModel

from wessley.api.error_handling import register_exception_handlers
from wessley.service.errors import (
    AuthenticationError,
    ForbiddenError,
    NotFoundError,
    PayloadTooLargeError,
    PaymentRequiredError,
    RateLimitedError,
    ServerError,
    ServiceUnavailableError,
    UnsupportedMediaTypeError,
    UpstreamServiceError,
    ValidationError,
)
from wessley.storage.errors import ConstraintViolation


class _Body(BaseModel):
    name: str


def _app() -> FastAPI:
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/missing")
    async def missing():
        raise NotFoundError("Vehicle not found")

    @app.get("/paywall")
    async def paywall():
        raise PaymentRequiredError("Subscribe first", detail={"upgrade_url": "/pricing"})

    @app.get("/unavailable")
    async def unavailable():
        raise ServiceUnavailableError("Stripe is not configured")

    @app.get("/conflict")
    async def conflict():
        raise ConstraintViolation("email already registered", {"field": "email"})

    @app.get("/upstream")
    async def upstream():
        raise UpstreamServiceError("graph service timeout", 504, "graph", "timeout")

    @app.get("/leaky")
    async def leaky():
        raise UpstreamServiceError("password=hunter2 in /etc/app.conf", 502, "semantic")

    @app.post("/body")
    async def body(payload: _Body):
        return {"name": payload.name}

    @app.get("/boom")
    async def boom():
        raise RuntimeError("kaboom")

    return app


class TestServiceErrors:
    """Service-layer exceptions render with their pinned codes."""

    def test_not_found(self):
        response = TestClient(_app()).get("/missing")
        assert response.status_code == 404
        body = response.json()
        assert body["error"] == "not_found"
        assert body["message"] == "Vehicle not found"
        assert "details" not in body
        assert "request_id" in body

    def test_payment_required_details(self):
        response = TestClient(_app()).get("/paywall")
        assert response.status_code == 402
        assert response.json()["error"] == "subscription_required"
        assert response.json()["details"] == {"upgrade_url": "/pricing"}

    def test_service_unavailable(self):
        response = TestClient(_app()).get("/unavailable")
        assert response.status_code == 503
        assert response.json()["error"] == "service_unavailable"

    def test_constraint_violation_is_conflict(self):
        response = TestClient(_app()).get("/conflict")
        assert response.status_code == 409
        assert response.json()["error"] == "conflict"
        assert response.json()["details"] == {"field": "email"}

    def test_upstream_error_keeps_status_and_service(self):
        response = TestClient(_app()).get("/upstream")
        assert response.status_code == 504
        assert response.json()["error"] == "timeout"
        assert response.json()["service"] == "graph"

    def test_upstream_message_is_sanitized(self):
        response = TestClient(_app()).get("/leaky")
        assert response.status_code == 502
        assert response.json()["error"] == "service_error"
        assert response.json()["message"] == "[redacted] in [redacted]"


class TestFrameworkErrors:
    """Routing, validation and uncaught failures."""

    def test_validation_is_400(self):
        response = TestClient(_app()).post("/body", json={})
        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "invalid_input"
        assert body["message"] == "Invalid request body"
        assert body["details"][0]["loc"] == ["body", "name"]

    def test_unknown_route(self):
        response = TestClient(_app()).get("/nowhere")
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_wrong_method(self):
        response = TestClient(_app()).post("/missing")
        assert response.status_code == 405
        assert response.json()["error"] == "method_not_allowed"

    def test_uncaught_exception_is_generic_500(self):
        client = TestClient(_app(), raise_server_exceptions=False)
        response = client.get("/boom")
        assert response.status_code == 500
        assert response.json()["error"] == "internal_error"
        assert response.json()["message"] == "An unexpected error occurred"
        assert "kaboom" not in response.text


class TestCorrelation:
    """X-Request-ID handling on the real application."""

    def test_request_id_is_echoed(self, client):
        response = client.get("/api/does-not-exist", headers={"X-Request-ID": "req-123"})
        assert response.status_code == 404
        assert response.headers["X-Request-ID"] == "req-123"
        assert response.json()["request_id"] == "req-123"

    def test_request_id_is_generated(self, client):
        response = client.get("/api/stripe/pricing")
        assert len(response.headers["X-Request-ID"]) == 36

    def test_security_headers(self, client):
        response = client.get("/api/stripe/pricing")
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert "Strict-Transport-Security" not in response.headers


@pytest.mark.parametrize(
    "error_cls,status,code",
    [
        (ValidationError, 400, "invalid_input"),
        (AuthenticationError, 401, "unauthorized"),
        (PaymentRequiredError, 402, "subscription_required"),
        (ForbiddenError, 403, "forbidden"),
        (NotFoundError, 404, "not_found"),
        (PayloadTooLargeError, 413, "file_too_large"),
        (UnsupportedMediaTypeError, 415, "unsupported_type"),
        (RateLimitedError, 429, "rate_limited"),
        (ServerError, 500, "internal_error"),
        (ServiceUnavailableError, 503, "service_unavailable"),
    ],
)
def test_service_error_codes(error_cls, status, code):
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/fail")
    async def fail():
        raise error_cls("nope")

    response = TestClient(app).get("/fail")
    assert response.status_code == status
    assert response.json()["error"] == code
    assert response.json()["message"] == "nope"
