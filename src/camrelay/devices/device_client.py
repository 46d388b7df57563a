"""Smart Device Management client: device listing and stream grants."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

import httpx

from ..config import SDM_API_BASE
from ..exceptions import MissingUrlError, UpstreamError
from .devices_models import Device, GrantExtension, StreamGrant

logger = logging.getLogger(__name__)

GENERATE_COMMAND = "sdm.devices.commands.CameraLiveStream.GenerateRtspStream"
EXTEND_COMMAND = "sdm.devices.commands.CameraLiveStream.ExtendRtspStream"
CAMERA_TYPES = ("sdm.devices.types.CAMERA", "sdm.devices.types.DOORBELL")
INFO_TRAIT = "sdm.devices.traits.Info"


class AccessTokenSource(Protocol):
    async def get_valid_access_token(self) -> str: ...


def parse_timestamp(value: Any) -> datetime:
    """Parse an RFC 3339 timestamp into an aware datetime."""
    if not isinstance(value, str) or not value:
        raise UpstreamError("Stream grant response is missing expiresAt")
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise UpstreamError(f"Stream grant expiresAt is not a timestamp: {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(slots=True)
class DeviceApiClient:
    """Bearer-authenticated calls against the device API.

    The client keeps no grant state; each call fetches a token from the
    broker and returns plain domain objects.
    """

    tokens: AccessTokenSource
    project_id: str
    api_base_url: str = SDM_API_BASE
    timeout_seconds: float = 15.0
    log: logging.Logger = field(default_factory=lambda: logger)

    async def list_devices(self) -> list[Device]:
        body = await self._request("GET", f"/enterprises/{self.project_id}/devices")
        devices: list[Device] = []
        for entry in body.get("devices") or []:
            device_type = entry.get("type")
            if device_type not in CAMERA_TYPES:
                continue
            traits = entry.get("traits") or {}
            display_name = (traits.get(INFO_TRAIT) or {}).get("customName") or "Unnamed camera"
            devices.append(Device(id=entry.get("name", ""), display_name=display_name, type=device_type))
        return devices

    async def request_grant(self, device_id: str) -> StreamGrant:
        results = await self._execute(device_id, GENERATE_COMMAND, {})
        feed_url = (results.get("streamUrls") or {}).get("rtspUrl")
        if not feed_url:
            raise MissingUrlError(f"No RTSP URL returned for device {device_id}")
        extension_token = results.get("streamExtensionToken")
        if not extension_token:
            raise UpstreamError("Stream grant response is missing streamExtensionToken")
        grant = StreamGrant(
            device_id=device_id,
            feed_url=str(feed_url),
            extension_token=str(extension_token),
            expires_at=parse_timestamp(results.get("expiresAt")),
        )
        self.log.info(
            "grant.requested",
            extra={"device_id": device_id, "expires_at": grant.expires_at.isoformat()},
        )
        return grant

    async def extend_grant(self, device_id: str, extension_token: str) -> GrantExtension:
        results = await self._execute(
            device_id, EXTEND_COMMAND, {"streamExtensionToken": extension_token}
        )
        renewed_token = results.get("streamExtensionToken")
        if not renewed_token:
            raise UpstreamError("Stream extension response is missing streamExtensionToken")
        if results.get("streamUrls"):
            self.log.warning("grant.extend.url_ignored", extra={"device_id": device_id})
        extension = GrantExtension(
            device_id=device_id,
            extension_token=str(renewed_token),
            expires_at=parse_timestamp(results.get("expiresAt")),
        )
        self.log.info(
            "grant.extended",
            extra={"device_id": device_id, "expires_at": extension.expires_at.isoformat()},
        )
        return extension

    async def _execute(self, device_id: str, command: str, params: dict[str, Any]) -> dict[str, Any]:
        body = await self._request(
            "POST",
            f"/{device_id}:executeCommand",
            json={"command": command, "params": params},
        )
        results = body.get("results")
        if not isinstance(results, dict):
            raise UpstreamError(f"Device API returned no results for {command.rsplit('.', 1)[-1]}")
        return results

    async def _request(self, method: str, path: str, *, json: dict[str, Any] | None = None) -> dict[str, Any]:
        token = await self.tokens.get_valid_access_token()
        headers = {"Authorization": f"Bearer {token}"}
        url = f"{self.api_base_url}{path}"
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            try:
                if method == "GET":
                    response = await client.get(url, headers=headers)
                else:
                    response = await client.post(url, headers=headers, json=json)
            except httpx.HTTPError as exc:
                raise UpstreamError(f"Device API request failed: {exc}") from exc
        if response.status_code != 200:
            self.log.warning(
                "device_api.rejected",
                extra={"path": path, "status_code": response.status_code},
            )
            raise UpstreamError(f"Device API call failed with status {response.status_code}")
        try:
            body = response.json()
        except ValueError as exc:
            raise UpstreamError("Device API returned a non-JSON body") from exc
        if not isinstance(body, dict):
            raise UpstreamError("Device API returned an unexpected body")
        return body
