"""Device API domain objects."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True, slots=True)
class Device:
    id: str
    display_name: str
    type: str


@dataclass(frozen=True, slots=True)
class StreamGrant:
    """Time-limited authorization to read one camera's live feed."""

    device_id: str
    feed_url: str
    extension_token: str
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True, slots=True)
class GrantExtension:
    """Renewed extension token and expiry; the feed URL stays the same."""

    device_id: str
    extension_token: str
    expires_at: datetime
