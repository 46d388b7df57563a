"""Grant-to-slot coordination used by the HTTP surface."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from ..auth.credential_store import utcnow
from ..devices.devices_models import GrantExtension, StreamGrant
from ..exceptions import GrantExpiredError
from .slot_orchestrator import Slot, SlotOrchestrator

logger = logging.getLogger(__name__)


class GrantClient(Protocol):
    async def request_grant(self, device_id: str) -> StreamGrant: ...

    async def extend_grant(self, device_id: str, extension_token: str) -> GrantExtension: ...


@dataclass(frozen=True, slots=True)
class StreamSession:
    slot_id: str
    hls_url: str
    extension_token: str
    expires_at: datetime


def hls_url_for(slot_id: str, manifest_name: str = "index.m3u8") -> str:
    return f"/hls/{slot_id}/{manifest_name}"


@dataclass(slots=True)
class StreamService:
    """Obtain a grant, then hand its feed URL to the orchestrator.

    The grant is requested before any slot state changes, so a failing
    device API leaves the slot table untouched. Known grants are kept per
    slot so that extending an already expired grant fails locally.
    """

    grants: GrantClient
    orchestrator: SlotOrchestrator
    clock: Callable[[], datetime] = utcnow
    log: logging.Logger = field(default_factory=lambda: logger)
    _slot_grants: dict[str, StreamGrant] = field(default_factory=dict)

    async def start_stream(self, device_id: str, slot_id: str) -> StreamSession:
        grant = await self.grants.request_grant(device_id)
        # start() kills any previous relay first, even when the new spawn fails.
        self._slot_grants.pop(slot_id, None)
        slot: Slot = await self.orchestrator.start(slot_id, grant.feed_url)
        self._slot_grants[slot_id] = grant
        self.log.info(
            "stream.started",
            extra={"slot_id": slot_id, "device_id": device_id, "generation": slot.generation},
        )
        return StreamSession(
            slot_id=slot_id,
            hls_url=hls_url_for(slot_id, slot.manifest_path.name),
            extension_token=grant.extension_token,
            expires_at=grant.expires_at,
        )

    async def extend_stream(self, device_id: str, extension_token: str) -> GrantExtension:
        slot_id, known = self._find_grant(device_id, extension_token)
        if known is not None and known.is_expired(self.clock()):
            raise GrantExpiredError(
                f"Stream grant for device {device_id} expired at {known.expires_at.isoformat()}"
            )
        extension = await self.grants.extend_grant(device_id, extension_token)
        if slot_id is not None and known is not None:
            self._slot_grants[slot_id] = StreamGrant(
                device_id=known.device_id,
                feed_url=known.feed_url,
                extension_token=extension.extension_token,
                expires_at=extension.expires_at,
            )
        return extension

    async def stop_stream(self, slot_id: str) -> bool:
        self._slot_grants.pop(slot_id, None)
        return await self.orchestrator.stop(slot_id)

    def grant_for(self, slot_id: str) -> StreamGrant | None:
        if slot_id not in self.orchestrator.table:
            # Relay exited on its own.
            self._slot_grants.pop(slot_id, None)
            return None
        return self._slot_grants.get(slot_id)

    def _find_grant(
        self, device_id: str, extension_token: str
    ) -> tuple[str | None, StreamGrant | None]:
        for slot_id, grant in self._slot_grants.items():
            if grant.device_id == device_id and grant.extension_token == extension_token:
                return slot_id, grant
        return None, None
