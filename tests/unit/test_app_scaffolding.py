"""Smoke tests ensuring ``create_app`` wires every router and the shutdown hook."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Tuple

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.camrelay.config import (
    AppConfig,
    OAuthClientSettings,
    RelaySettings,
    ServingSettings,
    build_session_factory,
    load_config,
)
from src.camrelay.main import create_app
from src.camrelay.relay.slot_orchestrator import SlotOrchestrator

pytestmark = pytest.mark.unit


def _collect_route_signatures(app: FastAPI) -> set[Tuple[str, str]]:
    """Return a set of (path, method) tuples for registered routes."""

    signatures: set[Tuple[str, str]] = set()
    for route in app.routes:
        methods: Iterable[str] = getattr(route, "methods", []) or []
        for method in methods:
            signatures.add((route.path, method.upper()))
    return signatures


def _build_config(tmp_path: Path, *, refresh_token: str | None = None) -> AppConfig:
    tmp_path.mkdir(parents=True, exist_ok=True)
    database_url = f"sqlite:///{tmp_path / 'camrelay.db'}"
    engine, session_factory = build_session_factory(database_url)
    return AppConfig(
        oauth=OAuthClientSettings(
            client_id="client-id",
            client_secret="client-secret",
            project_id="project-1",
            redirect_uri="http://localhost:3000/oauth/callback",
            refresh_token=refresh_token,
        ),
        relay=RelaySettings(hls_root=tmp_path / "hls"),
        serving=ServingSettings(),
        database_url=database_url,
        engine=engine,
        session_factory=session_factory,
    )


class SpyOrchestrator:
    def __init__(self, wrapped: SlotOrchestrator) -> None:
        self.wrapped = wrapped
        self.stop_all_calls: list[bool] = []

    @property
    def table(self):
        return self.wrapped.table

    def list_slots(self):
        return self.wrapped.list_slots()

    async def stop_all(self, *, remove_directories: bool = False) -> int:
        self.stop_all_calls.append(remove_directories)
        return await self.wrapped.stop_all(remove_directories=remove_directories)


def test_create_app_exposes_expected_routes(tmp_path: Path) -> None:
    app = create_app(_build_config(tmp_path))

    signatures = _collect_route_signatures(app)

    expected = {
        ("/api/status", "GET"),
        ("/api/devices", "GET"),
        ("/api/stream", "POST"),
        ("/api/extend", "POST"),
        ("/api/stop", "POST"),
        ("/api/slots", "GET"),
        ("/hls/{slot_id}/{filename}", "GET"),
        ("/auth", "GET"),
        ("/oauth/callback", "GET"),
    }
    for signature in expected:
        assert signature in signatures


def test_status_reflects_configured_refresh_token(tmp_path: Path) -> None:
    unauthenticated = create_app(_build_config(tmp_path / "a"))
    authenticated = create_app(_build_config(tmp_path / "b", refresh_token="refresh-1"))

    with TestClient(unauthenticated) as client:
        assert client.get("/api/status").json() == {"authenticated": False}
    with TestClient(authenticated) as client:
        assert client.get("/api/status").json() == {"authenticated": True}


def test_device_calls_without_credentials_return_401(tmp_path: Path) -> None:
    app = create_app(_build_config(tmp_path))

    with TestClient(app) as client:
        response = client.post("/api/stream", json={"deviceId": "devices/cam-1", "slotId": "0"})

    assert response.status_code == 401
    assert response.json()["failure_reason"] == "not_authenticated"


def test_shutdown_stops_all_relays(tmp_path: Path) -> None:
    app = create_app(_build_config(tmp_path))
    spy = SpyOrchestrator(app.state.orchestrator)
    app.state.orchestrator = spy

    with TestClient(app) as client:
        assert client.get("/api/slots").json() == []

    assert spy.stop_all_calls == [True]


def test_load_config_reads_environment(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("HLS_ROOT", str(tmp_path / "segments"))
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'env.db'}")
    monkeypatch.setenv("REFRESH_TOKEN", "refresh-env")
    monkeypatch.setenv("HLS_SEGMENT_SECONDS", "4")
    monkeypatch.setenv("PORT", "8080")
    monkeypatch.setenv("GOOGLE_CLIENT_ID", "env-client")

    config = load_config()

    assert config.relay.hls_root == tmp_path / "segments"
    assert config.relay.hls_root.is_dir()
    assert config.relay.segment_seconds == 4
    assert config.oauth.refresh_token == "refresh-env"
    assert config.oauth.client_id == "env-client"
    assert config.port == 8080


def test_cross_origin_players_are_allowed(tmp_path: Path) -> None:
    app = create_app(_build_config(tmp_path))

    with TestClient(app) as client:
        simple = client.get("/api/status", headers={"Origin": "http://player.example"})
        preflight = client.options(
            "/api/stream",
            headers={
                "Origin": "http://player.example",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "Content-Type",
            },
        )

    assert simple.headers["access-control-allow-origin"] == "*"
    assert preflight.status_code == 200
    assert preflight.headers["access-control-allow-origin"] == "*"
    assert "content-type" in preflight.headers["access-control-allow-headers"].lower()
