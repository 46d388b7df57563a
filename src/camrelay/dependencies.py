"""Dependency wiring helpers."""

from __future__ import annotations

from fastapi import FastAPI

from .auth.auth_api import router as auth_router
from .auth.credential_broker import CredentialBroker
from .auth.credential_store import CredentialRepository, CredentialStore
from .config import AppConfig
from .devices.device_client import DeviceApiClient
from .devices.devices_api import router as devices_router
from .exceptions import install_error_handlers
from .relay.relay_api import router as relay_router
from .relay.relay_command import FfmpegRelayCommand
from .relay.segment_store import SegmentStore
from .relay.slot_orchestrator import SlotOrchestrator
from .relay.stream_service import StreamService


def build_orchestrator(config: AppConfig) -> SlotOrchestrator:
    store = SegmentStore(root=config.relay.hls_root)
    command = FfmpegRelayCommand(
        ffmpeg_path=config.relay.ffmpeg_path,
        segment_seconds=config.relay.segment_seconds,
        list_size=config.relay.list_size,
    )
    return SlotOrchestrator(
        store=store,
        command=command,
        readiness_poll_seconds=config.relay.readiness_poll_seconds,
    )


def include_routers(
    app: FastAPI,
    config: AppConfig,
    *,
    orchestrator: SlotOrchestrator | None = None,
) -> None:
    """Build owned state objects, attach them to ``app.state`` and mount routers."""
    credential_store = CredentialStore.bootstrap(
        refresh_token=config.oauth.refresh_token,
        repository=CredentialRepository(config.session_factory),
    )
    broker = CredentialBroker(
        store=credential_store,
        settings=config.oauth,
        timeout_seconds=config.upstream_timeout_seconds,
    )
    device_client = DeviceApiClient(
        tokens=broker,
        project_id=config.oauth.project_id,
        api_base_url=config.api_base_url,
        timeout_seconds=config.upstream_timeout_seconds,
    )
    orchestrator = orchestrator or build_orchestrator(config)
    stream_service = StreamService(grants=device_client, orchestrator=orchestrator)

    app.state.config = config
    app.state.credential_store = credential_store
    app.state.credential_broker = broker
    app.state.device_client = device_client
    app.state.orchestrator = orchestrator
    app.state.segment_store = orchestrator.store
    app.state.stream_service = stream_service

    install_error_handlers(app)
    app.include_router(auth_router)
    app.include_router(devices_router)
    app.include_router(relay_router)
