"""Tests for the application factory and its middleware."""

import logging

import pytest
from fastapi.testclient import TestClient

from psi_agenda.api.app import create_app
from psi_agenda.config import get_settings
from psi_agenda.core import database


def _clear_caches():
    get_settings.cache_clear()
    database._get_engine.cache_clear()
    database.get_session_factory.cache_clear()


@pytest.fixture
def configure(tmp_path, monkeypatch):
    def _configure(api_key: str = ""):
        monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'agenda.db'}")
        monkeypatch.setenv("API_KEY", api_key)
        _clear_caches()

    yield _configure
    _clear_caches()


def test_app_starts_and_serves(configure, caplog):
    caplog.set_level(logging.INFO, logger="psi_agenda.api.middleware")
    configure()
    with TestClient(create_app()) as client:
        assert client.get("/health/ready").json()["status"] == "ready"
        response = client.post("/api/v1/agenda/events", json={"month": "2024-03-01"})
        assert response.status_code == 200
        assert "X-Process-Time" in response.headers
        assert client.get("/api/v1/workspaces/ws1/state").status_code == 200

    assert "workspace=ws1" in caplog.text


def test_api_key_required_when_configured(configure):
    configure(api_key="secret")
    with TestClient(create_app()) as client:
        assert client.get("/health").status_code == 200

        unauthorized = client.post("/api/v1/agenda/events", json={"month": "2024-03-01"})
        assert unauthorized.status_code == 401

        with_header = client.post(
            "/api/v1/agenda/events",
            json={"month": "2024-03-01"},
            headers={"X-API-Key": "secret"},
        )
        assert with_header.status_code == 200

        bearer = client.post(
            "/api/v1/agenda/events",
            json={"month": "2024-03-01"},
            headers={"Authorization": "Bearer secret"},
        )
        assert bearer.status_code == 200

        wrong = client.post(
            "/api/v1/agenda/events",
            json={"month": "2024-03-01"},
            headers={"X-API-Key": "nope"},
        )
        assert wrong.status_code == 401


def test_sqlite_parent_directory_is_created(tmp_path, monkeypatch):
    target = tmp_path / "nested" / "data" / "agenda.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{target}")
    _clear_caches()
    try:
        with TestClient(create_app()) as client:
            assert client.get("/health/ready").json()["status"] == "ready"
        assert target.exists()
    finally:
        _clear_caches()
