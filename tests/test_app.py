"""HTTP-level tests for the assembled application."""

from __future__ import annotations

from unittest.mock import Mock

from fastapi.testclient import TestClient

from devevents.adapters.rate_limit.in_memory import InMemoryFixedWindowBackend
from devevents.core.app_factory import create_app
from devevents.core.config import AppSettings, RateLimitSettings, RedisSettings, Settings
from devevents.core.presets import build_presets
from devevents.core.rate_limit import RateLimitService
from devevents.main import app


client = TestClient(app)


def test_preserves_incoming_request_id_header():
    incoming_id = "test-request-id-123"
    resp = client.get("/health", headers={"X-Request-ID": incoming_id})

    assert resp.status_code == 200
    assert resp.headers.get("X-Request-ID") == incoming_id


def test_generates_request_id_when_missing():
    resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.headers.get("X-Request-ID")
    assert resp.headers.get("X-Request-Duration-ms") is not None


def test_default_app_runs_in_fallback_mode():
    resp = client.get("/health/rate-limit", headers={"X-Real-IP": "10.1.1.1"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["mode"] == "fallback"
    assert body["fallback"]["entries"] >= 1
    assert resp.headers["X-RateLimit-Limit"] == "100"


def _isolated_app(public_api: int) -> tuple:
    clock = Mock(return_value=1_000.0)
    service = RateLimitService(
        fallback=InMemoryFixedWindowBackend(clock=clock),
        presets=build_presets(RateLimitSettings(public_api=public_api)),
        clock=clock,
    )
    return create_app(rate_limits=service), service


def test_rate_limit_status_endpoint_is_throttled():
    isolated, _ = _isolated_app(public_api=2)
    local = TestClient(isolated)
    headers = {"X-Forwarded-For": "1.2.3.4"}

    statuses = [local.get("/health/rate-limit", headers=headers).status_code for _ in range(3)]

    assert statuses == [200, 200, 429]
    denied = local.get("/health/rate-limit", headers=headers)
    assert denied.json()["error"] == "Too many requests"
    assert denied.headers.get("X-Request-ID")


def test_lifespan_starts_and_stops_sweeper():
    isolated, service = _isolated_app(public_api=10)

    with TestClient(isolated) as local:
        assert local.get("/health").status_code == 200
        assert service.fallback.sweeper_running is True

    assert service.fallback.sweeper_running is False


def test_injected_settings_can_disable_limiting():
    cfg = Settings(
        app=AppSettings(rate_limit_enabled=False),
        redis=RedisSettings(url=None),
        rate_limit=RateLimitSettings(public_api=1),
    )
    local = TestClient(create_app(app_settings=cfg))
    headers = {"X-Real-IP": "10.9.9.9"}

    statuses = [local.get("/health/rate-limit", headers=headers).status_code for _ in range(3)]

    assert statuses == [200, 200, 200]


def test_injected_settings_drive_limits():
    cfg = Settings(redis=RedisSettings(url=None), rate_limit=RateLimitSettings(public_api=1))
    local = TestClient(create_app(app_settings=cfg))
    headers = {"X-Real-IP": "10.9.9.10"}

    statuses = [local.get("/health/rate-limit", headers=headers).status_code for _ in range(3)]

    assert statuses[0] == 200
    assert 429 in statuses
