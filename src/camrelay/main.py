"""FastAPI application entry point."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import AppConfig, load_config
from .dependencies import include_routers
from .logging import configure_logging

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Stop every relay before the server exits (SIGTERM/SIGINT included)."""
    config: AppConfig = app.state.config
    if not app.state.credential_store.authenticated:
        logger.info("app.not_authenticated", hint="visit /auth to connect the device account")
    logger.info("app.started", hls_root=str(config.relay.hls_root), port=config.port)
    yield
    stopped = await app.state.orchestrator.stop_all(remove_directories=True)
    logger.info("app.shutdown", stopped_slots=stopped)


def create_app(config: AppConfig | None = None) -> FastAPI:
    """Build FastAPI instance with configured dependencies."""
    configure_logging()
    cfg = config or load_config()
    app = FastAPI(title="camrelay", lifespan=lifespan)
    # Browser players on other origins fetch playlists and call the API.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["Content-Type"],
    )
    include_routers(app, cfg)
    return app


def run() -> None:
    """Serve the application with uvicorn on the configured host and port."""
    config = load_config()
    uvicorn.run(create_app(config), host=config.host, port=config.port)
