"""Relay routes: start/extend/stop streams and serve HLS artifacts."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response, status

from ..config import ServingSettings
from ..exceptions import NotFoundError
from .relay_schemas import (
    ExtendStreamRequest,
    ExtendStreamResponse,
    SlotSummaryResponse,
    StartStreamRequest,
    StartStreamResponse,
    StopStreamRequest,
    StopStreamResponse,
)
from .segment_store import SegmentStore, media_type_for
from .slot_orchestrator import SlotOrchestrator
from .stream_service import StreamService, hls_url_for

router = APIRouter(tags=["relay"])

_NO_CACHE = {"Cache-Control": "no-cache, no-store"}


def get_stream_service(request: Request) -> StreamService:
    try:
        return request.app.state.stream_service  # type: ignore[attr-defined]
    except AttributeError as exc:  # pragma: no cover - defensive path
        raise RuntimeError("StreamService is not configured") from exc


def get_orchestrator(request: Request) -> SlotOrchestrator:
    try:
        return request.app.state.orchestrator  # type: ignore[attr-defined]
    except AttributeError as exc:  # pragma: no cover - defensive path
        raise RuntimeError("SlotOrchestrator is not configured") from exc


def get_segment_store(request: Request) -> SegmentStore:
    try:
        return request.app.state.segment_store  # type: ignore[attr-defined]
    except AttributeError as exc:  # pragma: no cover - defensive path
        raise RuntimeError("SegmentStore is not configured") from exc


def get_serving_settings(request: Request) -> ServingSettings:
    try:
        return request.app.state.config.serving  # type: ignore[attr-defined]
    except AttributeError:
        return ServingSettings()


@router.post("/api/stream", response_model=StartStreamResponse, response_model_by_alias=True)
async def start_stream(
    payload: StartStreamRequest,
    service: StreamService = Depends(get_stream_service),
) -> StartStreamResponse:
    session = await service.start_stream(payload.device_id, payload.slot_id)
    return StartStreamResponse(
        hls_url=session.hls_url,
        stream_extension_token=session.extension_token,
        expires_at=session.expires_at,
    )


@router.post("/api/extend", response_model=ExtendStreamResponse, response_model_by_alias=True)
async def extend_stream(
    payload: ExtendStreamRequest,
    service: StreamService = Depends(get_stream_service),
) -> ExtendStreamResponse:
    extension = await service.extend_stream(payload.device_id, payload.stream_extension_token)
    return ExtendStreamResponse(
        stream_extension_token=extension.extension_token,
        expires_at=extension.expires_at,
    )


@router.post("/api/stop", response_model=StopStreamResponse, response_model_by_alias=True)
async def stop_stream(
    payload: StopStreamRequest,
    service: StreamService = Depends(get_stream_service),
) -> StopStreamResponse:
    was_running = await service.stop_stream(payload.slot_id)
    return StopStreamResponse(stopped=True, was_running=was_running)


@router.get("/api/slots", response_model=list[SlotSummaryResponse], response_model_by_alias=True)
def list_slots(
    orchestrator: SlotOrchestrator = Depends(get_orchestrator),
) -> list[SlotSummaryResponse]:
    return [
        SlotSummaryResponse(
            slot_id=slot.id,
            state=slot.state.value,
            generation=slot.generation,
            pid=slot.pid,
            started_at=slot.started_at,
            ready=slot.ready.is_set(),
            hls_url=hls_url_for(slot.id, slot.manifest_path.name),
        )
        for slot in orchestrator.list_slots()
    ]


@router.get("/hls/{slot_id}/{filename}")
async def serve_artifact(
    slot_id: str,
    filename: str,
    orchestrator: SlotOrchestrator = Depends(get_orchestrator),
    store: SegmentStore = Depends(get_segment_store),
    serving: ServingSettings = Depends(get_serving_settings),
) -> Response:
    try:
        path = store.artifact_path(slot_id, filename)
    except NotFoundError:
        return Response("Not found", status_code=status.HTTP_404_NOT_FOUND)

    timeout = serving.artifact_wait_timeout_seconds
    if filename == store.manifest_name and slot_id in orchestrator.table:
        ready = await orchestrator.wait_until_ready(slot_id, timeout)
        found = path if ready and path.exists() else None
    else:
        found = await store.wait_for_artifact(
            slot_id,
            filename,
            timeout_seconds=timeout,
            poll_interval_seconds=serving.artifact_poll_interval_seconds,
        )

    if found is None:
        return Response("Not ready", status_code=status.HTTP_404_NOT_FOUND)
    try:
        content = found.read_bytes()
    except FileNotFoundError:
        # Rotated out by the relay between lookup and read.
        return Response("Not ready", status_code=status.HTTP_404_NOT_FOUND)
    return Response(content, media_type=media_type_for(filename), headers=_NO_CACHE)
