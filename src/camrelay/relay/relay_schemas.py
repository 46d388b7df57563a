"""Pydantic schemas for the relay API."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

SLOT_ID_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9_-]*$"


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class StartStreamRequest(_CamelModel):
    device_id: str = Field(..., alias="deviceId", min_length=1)
    slot_id: str = Field(..., alias="slotId", min_length=1, max_length=64, pattern=SLOT_ID_PATTERN)


class StartStreamResponse(_CamelModel):
    hls_url: str = Field(..., alias="hlsUrl")
    stream_extension_token: str = Field(..., alias="streamExtensionToken")
    expires_at: datetime = Field(..., alias="expiresAt")


class ExtendStreamRequest(_CamelModel):
    device_id: str = Field(..., alias="deviceId", min_length=1)
    stream_extension_token: str = Field(..., alias="streamExtensionToken", min_length=1)


class ExtendStreamResponse(_CamelModel):
    stream_extension_token: str = Field(..., alias="streamExtensionToken")
    expires_at: datetime = Field(..., alias="expiresAt")


class StopStreamRequest(_CamelModel):
    slot_id: str = Field(..., alias="slotId", min_length=1, max_length=64, pattern=SLOT_ID_PATTERN)


class StopStreamResponse(_CamelModel):
    stopped: bool = True
    was_running: bool = Field(False, alias="wasRunning")


class SlotSummaryResponse(_CamelModel):
    slot_id: str = Field(..., alias="slotId")
    state: str
    generation: int
    pid: int | None
    started_at: datetime = Field(..., alias="startedAt")
    ready: bool
    hls_url: str = Field(..., alias="hlsUrl")
