"""
tests/test_startup.py -- Fail-fast application startup.

The real lifespan must refuse to serve when the persistence backend cannot
be opened: the error is logged at CRITICAL and propagates out of startup.
"""

from __future__ import annotations

import logging

import pytest
from fastapi.testclient import TestClient

import api.main
from api.main import app, lifespan
from core.config import Settings


def test_unopenable_database_aborts_startup(tmp_path, monkeypatch, caplog):
    unreachable = tmp_path / "missing" / "deeper" / "devhub.db"
    settings = Settings(debug=True, secret_key="s" * 40, database_url=f"sqlite:///{unreachable}")
    monkeypatch.setattr(api.main, "get_settings", lambda: settings)
    monkeypatch.setattr(app.router, "lifespan_context", lifespan)

    with caplog.at_level(logging.INFO, logger="devhub.api"):
        with pytest.raises(Exception):
            with TestClient(app):
                pass

    critical = [r for r in caplog.records if r.name == "devhub.api" and r.levelno == logging.CRITICAL]
    assert critical
    assert "refusing to serve" in critical[0].getMessage()
