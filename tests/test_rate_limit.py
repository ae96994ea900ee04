"""
tests/test_rate_limit.py -- Per-IP limits on POST /auth/login and /auth/register.

conftest disables the shared limiter for every other suite. These tests turn
it back on with empty counters and restore the disabled state afterwards.
"""

from __future__ import annotations

import pytest
from conftest import register

from api.limiter import limiter
from core.config import get_settings


@pytest.fixture
def enforced_limits():
    limiter.reset()
    limiter.enabled = True
    try:
        yield
    finally:
        limiter.enabled = False
        limiter.reset()


def _allowed(limit: str) -> int:
    return int(limit.split("/")[0])


def _assert_rate_limited(resp) -> None:
    assert resp.status_code == 429
    body = resp.json()
    assert body["success"] is False
    assert body["data"]["code"] == "rate_limited"
    assert "timestamp" in body
    assert int(resp.headers["Retry-After"]) > 0


def test_login_limit_returns_429_envelope(api_client, enforced_limits):
    client, _, _ = api_client
    attempt = {"email": "admin@devhub.io", "password": "wrong-password"}

    for _ in range(_allowed(get_settings().login_rate_limit)):
        assert client.post("/api/v1/auth/login", json=attempt).status_code == 401

    _assert_rate_limited(client.post("/api/v1/auth/login", json=attempt))


def test_register_limit_returns_429_envelope(api_client, enforced_limits):
    client, _, _ = api_client

    for i in range(_allowed(get_settings().register_rate_limit)):
        register(client, f"limited{i}", f"limited{i}@devhub.io")

    resp = client.post(
        "/api/v1/auth/register",
        json={"username": "overflow", "email": "overflow@devhub.io", "password": "secret12"},
    )
    _assert_rate_limited(resp)


def test_unlimited_routes_unaffected(api_client, enforced_limits):
    client, _, _ = api_client
    for _ in range(_allowed(get_settings().login_rate_limit) + 2):
        assert client.get("/api/v1/health").status_code == 200
