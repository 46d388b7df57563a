"""Device listing route."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field

from .device_client import DeviceApiClient

router = APIRouter(prefix="/api", tags=["devices"])


class DevicePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    display_name: str = Field(..., alias="displayName")
    type: str


class DeviceListResponse(BaseModel):
    devices: list[DevicePayload]


def get_device_client(request: Request) -> DeviceApiClient:
    try:
        return request.app.state.device_client  # type: ignore[attr-defined]
    except AttributeError as exc:  # pragma: no cover - defensive path
        raise RuntimeError("DeviceApiClient is not configured") from exc


@router.get("/devices", response_model=DeviceListResponse, response_model_by_alias=True)
async def list_devices(client: DeviceApiClient = Depends(get_device_client)) -> DeviceListResponse:
    devices = await client.list_devices()
    return DeviceListResponse(
        devices=[
            DevicePayload(id=device.id, display_name=device.display_name, type=device.type)
            for device in devices
        ]
    )
