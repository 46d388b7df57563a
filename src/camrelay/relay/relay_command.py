"""Command line for the external relay program."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol


class RelayCommand(Protocol):
    def build(self, feed_url: str, manifest_path: Path, segment_template: Path) -> list[str]: ...


@dataclass(frozen=True, slots=True)
class FfmpegRelayCommand:
    """Remux an RTSP feed into a sliding HLS window without re-encoding."""

    ffmpeg_path: str = "ffmpeg"
    segment_seconds: int = 2
    list_size: int = 5

    def build(self, feed_url: str, manifest_path: Path, segment_template: Path) -> list[str]:
        return [
            self.ffmpeg_path,
            "-hide_banner",
            "-rtsp_transport", "tcp",
            "-i", feed_url,
            "-c:v", "copy",
            "-an",
            "-f", "hls",
            "-hls_time", str(self.segment_seconds),
            "-hls_list_size", str(self.list_size),
            "-hls_flags", "delete_segments+append_list",
            "-hls_segment_filename", str(segment_template),
            str(manifest_path),
        ]
