"""Unit tests for core/config.py -- SECRET_KEY policy and derived settings.

Settings() is instantiated directly rather than through get_settings() so
the cached singleton the API fixtures rely on is left untouched.
"""

import pytest
from pydantic import ValidationError

from core.config import Settings


def test_debug_mode_generates_secret_key(monkeypatch):
    monkeypatch.delenv("SECRET_KEY", raising=False)
    settings = Settings(debug=True, secret_key="")
    assert len(settings.secret_key) >= 32


def test_production_mode_requires_secret_key(monkeypatch):
    monkeypatch.delenv("SECRET_KEY", raising=False)
    with pytest.raises(ValidationError, match="SECRET_KEY is required"):
        Settings(debug=False, secret_key="")


def test_short_secret_key_rejected():
    with pytest.raises(ValidationError, match="at least 32 characters"):
        Settings(debug=True, secret_key="too-short")


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "k" * 40)
    monkeypatch.setenv("ACCESS_TOKEN_EXPIRE_SECONDS", "120")
    monkeypatch.setenv("REFRESH_TOKEN_EXPIRE_DAYS", "2")
    monkeypatch.setenv("OPERATION_TIMEOUT_SECONDS", "1.5")
    settings = Settings()
    assert settings.secret_key == "k" * 40
    assert settings.access_token_expire_seconds == 120
    assert settings.refresh_token_expire_seconds == 2 * 24 * 60 * 60
    assert settings.operation_timeout_seconds == 1.5


def test_defaults():
    settings = Settings(debug=True, secret_key="s" * 32)
    assert settings.access_token_expire_seconds == 3600
    assert settings.refresh_token_expire_days == 7
    assert settings.login_rate_limit == "10/minute"
    assert settings.register_rate_limit == "5/minute"
    assert settings.database_url.startswith("sqlite:///")


def test_non_positive_lifetimes_rejected():
    with pytest.raises(ValidationError):
        Settings(debug=True, secret_key="s" * 32, access_token_expire_seconds=0)
