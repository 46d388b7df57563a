"""Relay slots: orchestration of ffmpeg processes and their HLS output."""

from .segment_store import SegmentStore
from .slot_orchestrator import Slot, SlotOrchestrator, SlotState, SlotTable

__all__ = ["SegmentStore", "Slot", "SlotOrchestrator", "SlotState", "SlotTable"]
