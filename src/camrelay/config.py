"""Application configuration builder."""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .db.db_init import init_db

TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
CONSENT_ENDPOINT = "https://nestservices.google.com/partnerconnections/{project_id}/auth"
SDM_API_BASE = "https://smartdevicemanagement.googleapis.com/v1"
SDM_SCOPE = "https://www.googleapis.com/auth/sdm.service"


@dataclass(slots=True)
class OAuthClientSettings:
    client_id: str
    client_secret: str
    project_id: str
    redirect_uri: str
    refresh_token: str | None
    refresh_margin_seconds: int = 60
    token_endpoint: str = TOKEN_ENDPOINT
    consent_endpoint: str = CONSENT_ENDPOINT


@dataclass(slots=True)
class RelaySettings:
    hls_root: Path
    ffmpeg_path: str = "ffmpeg"
    segment_seconds: int = 2
    list_size: int = 5
    readiness_poll_seconds: float = 0.2


@dataclass(slots=True)
class ServingSettings:
    artifact_wait_timeout_seconds: float = 8.0
    artifact_poll_interval_seconds: float = 0.2


@dataclass(slots=True)
class AppConfig:
    oauth: OAuthClientSettings
    relay: RelaySettings
    serving: ServingSettings
    database_url: str
    engine: Engine
    session_factory: sessionmaker[Session]
    api_base_url: str = SDM_API_BASE
    upstream_timeout_seconds: float = 15.0
    host: str = "0.0.0.0"
    port: int = 3000


def build_session_factory(database_url: str) -> tuple[Engine, sessionmaker[Session]]:
    """Create the engine, ensure tables exist and return a session factory."""
    engine = create_engine(database_url, future=True)
    session_factory: sessionmaker[Session] = sessionmaker(bind=engine, expire_on_commit=False)
    init_db(engine)
    return engine, session_factory


def load_config() -> AppConfig:
    """Load configuration from environment (SQLite by default)."""
    oauth = OAuthClientSettings(
        client_id=os.getenv("GOOGLE_CLIENT_ID", ""),
        client_secret=os.getenv("GOOGLE_CLIENT_SECRET", ""),
        project_id=os.getenv("SDM_PROJECT_ID", ""),
        redirect_uri=os.getenv("REDIRECT_URI", ""),
        refresh_token=os.getenv("REFRESH_TOKEN") or None,
        refresh_margin_seconds=int(os.getenv("TOKEN_REFRESH_MARGIN_SECONDS", 60)),
    )

    relay = RelaySettings(
        hls_root=Path(os.getenv("HLS_ROOT", tempfile.gettempdir())),
        ffmpeg_path=os.getenv("FFMPEG_PATH", "ffmpeg"),
        segment_seconds=int(os.getenv("HLS_SEGMENT_SECONDS", 2)),
        list_size=int(os.getenv("HLS_LIST_SIZE", 5)),
        readiness_poll_seconds=float(os.getenv("READINESS_POLL_SECONDS", 0.2)),
    )
    relay.hls_root.mkdir(parents=True, exist_ok=True)

    serving = ServingSettings(
        artifact_wait_timeout_seconds=float(os.getenv("ARTIFACT_WAIT_TIMEOUT_SECONDS", 8.0)),
        artifact_poll_interval_seconds=float(os.getenv("ARTIFACT_POLL_INTERVAL_SECONDS", 0.2)),
    )

    database_url = os.getenv("DATABASE_URL", "sqlite:///camrelay.db")
    engine, session_factory = build_session_factory(database_url)

    return AppConfig(
        oauth=oauth,
        relay=relay,
        serving=serving,
        database_url=database_url,
        engine=engine,
        session_factory=session_factory,
        upstream_timeout_seconds=float(os.getenv("UPSTREAM_TIMEOUT_SECONDS", 15.0)),
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", 3000)),
    )
