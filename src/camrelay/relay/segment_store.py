"""Per-slot staging directories holding the HLS manifest and segments."""

from __future__ import annotations

import asyncio
import logging
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from ..exceptions import NotFoundError

MANIFEST_NAME = "index.m3u8"
SEGMENT_PATTERN = "seg%03d.ts"

_SAFE_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")
_MEDIA_TYPES = {
    ".m3u8": "application/vnd.apple.mpegurl",
    ".ts": "video/mp2t",
}


def is_safe_name(value: str) -> bool:
    """Return True when ``value`` is a single, non-hidden path component."""
    return bool(_SAFE_NAME.match(value)) and ".." not in value


def media_type_for(filename: str) -> str:
    return _MEDIA_TYPES.get(Path(filename).suffix, "video/mp2t")


@dataclass(slots=True)
class SegmentStore:
    """Directory policy for relay output.

    The relay process owns the files inside a slot directory while it runs;
    this store only creates, clears and removes whole directories and
    resolves artifact paths for readers.
    """

    root: Path
    manifest_name: str = MANIFEST_NAME
    segment_pattern: str = SEGMENT_PATTERN
    log: logging.Logger = field(default_factory=lambda: logging.getLogger(__name__))

    def slot_dir(self, slot_id: str) -> Path:
        if not is_safe_name(slot_id):
            raise ValueError(f"Invalid slot id {slot_id!r}")
        return self.root / f"hls_{slot_id}"

    def manifest_path(self, slot_id: str) -> Path:
        return self.slot_dir(slot_id) / self.manifest_name

    def segment_template(self, slot_id: str) -> Path:
        return self.slot_dir(slot_id) / self.segment_pattern

    def prepare(self, slot_id: str) -> Path:
        """Create the slot directory and delete leftovers from a previous run."""
        directory = self.slot_dir(slot_id)
        directory.mkdir(parents=True, exist_ok=True)
        removed = 0
        for entry in directory.iterdir():
            if entry.is_dir() and not entry.is_symlink():
                shutil.rmtree(entry)
            else:
                entry.unlink(missing_ok=True)
            removed += 1
        if removed:
            self.log.info("segments.cleared", extra={"slot_id": slot_id, "removed": removed})
        return directory

    def remove(self, slot_id: str) -> None:
        directory = self.slot_dir(slot_id)
        if directory.exists():
            shutil.rmtree(directory, ignore_errors=True)

    def artifact_path(self, slot_id: str, filename: str) -> Path:
        if not is_safe_name(slot_id) or not is_safe_name(filename):
            raise NotFoundError(f"Artifact '{slot_id}/{filename}' not found")
        return self.slot_dir(slot_id) / filename

    async def wait_for_artifact(
        self,
        slot_id: str,
        filename: str,
        *,
        timeout_seconds: float,
        poll_interval_seconds: float,
    ) -> Path | None:
        """Poll until the artifact exists or the timeout elapses."""
        path = self.artifact_path(slot_id, filename)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(timeout_seconds, 0.0)
        interval = max(poll_interval_seconds, 0.01)
        while not path.exists():
            remaining = deadline - loop.time()
            if remaining <= 0:
                return None
            await asyncio.sleep(min(interval, remaining))
        return path
