"""Tests for global exception handlers.

Validates that domain errors map to stable status codes and JSON shapes,
that rate limit denials render the 429 contract, and that unexpected errors
never leak internals.
"""

import asyncio
import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from devevents.core.errors import (
    AppError,
    BackendUnavailableError,
    RateLimitConfigError,
    RateLimitExceededError,
)
from devevents.core.exception_handlers import general_exception_handler, setup_exception_handlers
from devevents.core.rate_limit import Decision


@pytest.fixture
def app_with_handlers() -> FastAPI:
    """Create FastAPI app with exception handlers registered."""
    app = FastAPI()
    setup_exception_handlers(app)
    return app


@pytest.fixture
def client(app_with_handlers: FastAPI) -> TestClient:
    return TestClient(app_with_handlers, raise_server_exceptions=False)


class TestAppErrorHandler:
    def test_config_error_returns_400(self, client: TestClient, app_with_handlers: FastAPI):
        @app_with_handlers.get("/test-config")
        async def test_endpoint():
            raise RateLimitConfigError(
                code="rate_limit_invalid_limit",
                message="Rate limit rule 'x' needs an integer limit >= 1",
                details={"identifier": "x"},
            )

        response = client.get("/test-config")

        assert response.status_code == 400
        data = response.json()
        assert data["error"]["code"] == "rate_limit_invalid_limit"
        assert data["error"]["details"]["identifier"] == "x"
        assert "request_id" in data["error"]

    def test_backend_unavailable_returns_503(self, client: TestClient, app_with_handlers: FastAPI):
        @app_with_handlers.get("/test-backend")
        async def test_endpoint():
            raise BackendUnavailableError(code="rate_limit_store_unavailable", message="down")

        response = client.get("/test-backend")

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "rate_limit_store_unavailable"

    def test_generic_app_error_returns_500(self, client: TestClient, app_with_handlers: FastAPI):
        @app_with_handlers.get("/test-generic")
        async def test_endpoint():
            raise AppError(code="boom", message="something broke")

        response = client.get("/test-generic")

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "boom"


class TestRateLimitExceededHandler:
    def test_renders_429_contract(self, client: TestClient, app_with_handlers: FastAPI):
        decision = Decision(
            success=False,
            limit=5,
            remaining=0,
            reset_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
            retry_after_seconds=12,
            key="auth:ip:1.2.3.4",
        )

        @app_with_handlers.post("/signin")
        async def signin():
            raise RateLimitExceededError(decision)

        response = client.post("/signin")

        assert response.status_code == 429
        assert response.json() == {
            "error": "Too many requests",
            "message": "Rate limit exceeded. Please try again in 12 seconds.",
            "retryAfter": 12,
        }
        assert response.headers["Retry-After"] == "12"
        assert response.headers["X-RateLimit-Limit"] == "5"
        assert response.headers["X-RateLimit-Reset"] == "2026-01-01T00:00:00.000Z"


class TestGeneralExceptionHandler:
    def test_unexpected_exception_handler_registered(self, app_with_handlers: FastAPI):
        assert Exception in app_with_handlers.exception_handlers
        assert RateLimitExceededError in app_with_handlers.exception_handlers

    def test_general_exception_handler_never_leaks_details(self):
        request = AsyncMock()
        request.url.path = "/test"
        request.method = "GET"

        exc = RuntimeError("redis://:hunter2@cache:6379 refused")
        response = asyncio.run(general_exception_handler(request, exc))

        data = json.loads(bytes(response.body).decode())
        assert response.status_code == 500
        assert data["error"]["code"] == "internal_server_error"
        assert "hunter2" not in json.dumps(data)
        assert "RuntimeError" not in json.dumps(data)

    def test_unhandled_route_error_returns_500(self, client: TestClient, app_with_handlers: FastAPI):
        @app_with_handlers.get("/explode")
        async def explode():
            raise RuntimeError("kaboom")

        response = client.get("/explode")

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "internal_server_error"
