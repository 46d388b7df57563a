from __future__ import annotations

import asyncio
import signal
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio

from src.camrelay.exceptions import NotFoundError, ProcessSpawnError
from src.camrelay.relay import slot_orchestrator as orchestrator_module
from src.camrelay.relay.segment_store import SegmentStore
from src.camrelay.relay.slot_orchestrator import SlotOrchestrator, SlotState, SlotTable
from tests.helpers.async_wait import finished, wait_until
from tests.mocks.relay import MissingProgramCommand, PythonRelayCommand


class RecordingLogger:
    def __init__(self) -> None:
        self.events: list[tuple[str, str, dict[str, Any]]] = []

    def _record(self, level: str, event: str, **kwargs: Any) -> None:
        self.events.append((level, event, kwargs))

    def debug(self, event: str, **kwargs: Any) -> None:
        self._record("debug", event, **kwargs)

    def info(self, event: str, **kwargs: Any) -> None:
        self._record("info", event, **kwargs)

    def warning(self, event: str, **kwargs: Any) -> None:
        self._record("warning", event, **kwargs)

    def error(self, event: str, **kwargs: Any) -> None:
        self._record("error", event, **kwargs)

    def named(self, event: str) -> list[dict[str, Any]]:
        return [kwargs for _, name, kwargs in self.events if name == event]


@pytest.fixture
def store(tmp_path: Path) -> SegmentStore:
    return SegmentStore(root=tmp_path / "hls")


@pytest_asyncio.fixture
async def orchestrator(store: SegmentStore):
    orch = SlotOrchestrator(
        store=store,
        command=PythonRelayCommand(),
        readiness_poll_seconds=0.02,
    )
    yield orch
    await orch.stop_all()


@pytest.mark.asyncio
async def test_start_produces_manifest_and_stop_terminates(orchestrator: SlotOrchestrator, store: SegmentStore):
    slot = await orchestrator.start("0", "rtsp://cam/live")

    assert slot.state is SlotState.RUNNING
    assert slot.alive
    assert await orchestrator.wait_until_ready("0", 5.0)
    manifest = store.manifest_path("0").read_text()
    assert "seg000.ts" in manifest
    assert (store.slot_dir("0") / "seg000.ts").exists()

    assert await orchestrator.stop("0") is True
    assert not slot.alive
    assert slot.process.returncode == -signal.SIGKILL
    assert slot.state is SlotState.STOPPED
    assert "0" not in orchestrator.table

    assert await orchestrator.stop("0") is False
    assert not slot.alive


@pytest.mark.asyncio
async def test_ready_waiter_follows_replacement(orchestrator: SlotOrchestrator, store: SegmentStore):
    await orchestrator.start("A", "rtsp://cam/idle")
    waiter = asyncio.create_task(orchestrator.wait_until_ready("A", 5.0))
    await asyncio.sleep(0.1)
    assert not waiter.done()

    replacement = await orchestrator.start("A", "rtsp://cam/live")

    assert await finished(waiter) is True
    assert replacement.ready.is_set()
    assert store.manifest_path("A").exists()


@pytest.mark.asyncio
async def test_ready_waiter_times_out_without_manifest(orchestrator: SlotOrchestrator):
    await orchestrator.start("A", "rtsp://cam/idle")

    assert await orchestrator.wait_until_ready("A", 0.1) is False


@pytest.mark.asyncio
async def test_stop_unknown_slot_is_noop(orchestrator: SlotOrchestrator):
    assert await orchestrator.stop("missing") is False
    assert await orchestrator.stop("missing") is False
    assert len(orchestrator.table) == 0


@pytest.mark.asyncio
async def test_start_replaces_existing_process(orchestrator: SlotOrchestrator, store: SegmentStore):
    first = await orchestrator.start("A", "rtsp://cam/one")
    second = await orchestrator.start("A", "rtsp://cam/two")

    await finished(first.process.wait())
    assert first.process.returncode == -signal.SIGKILL
    assert first.state is SlotState.STOPPED

    assert orchestrator.get("A") is second
    assert second.alive
    assert second.feed_url == "rtsp://cam/two"
    assert second.generation == first.generation + 1
    assert len(orchestrator.table) == 1

    feed_file = store.slot_dir("A") / "feed.txt"
    assert await wait_until(lambda: feed_file.exists() and feed_file.read_text() == "rtsp://cam/two")


@pytest.mark.asyncio
async def test_exit_of_replaced_process_keeps_new_slot(orchestrator: SlotOrchestrator):
    first = await orchestrator.start("A", "rtsp://cam/one")
    second = await orchestrator.start("A", "rtsp://cam/two")

    await finished(first.exit_observer)

    assert orchestrator.get("A") is second
    assert second.state is SlotState.RUNNING


@pytest.mark.asyncio
async def test_start_clears_leftover_files(orchestrator: SlotOrchestrator, store: SegmentStore):
    directory = store.slot_dir("A")
    directory.mkdir(parents=True)
    (directory / "seg917.ts").write_bytes(b"stale")
    (directory / "index.m3u8").write_text("#EXTM3U\nseg917.ts\n")
    (directory / "leftover").mkdir()

    await orchestrator.start("A", "rtsp://cam/live")

    assert not (directory / "seg917.ts").exists()
    assert not (directory / "leftover").exists()
    assert await orchestrator.wait_until_ready("A", 5.0)
    assert "seg917.ts" not in store.manifest_path("A").read_text()


@pytest.mark.asyncio
async def test_spawn_failure_leaves_no_slot(store: SegmentStore):
    orch = SlotOrchestrator(store=store, command=MissingProgramCommand())

    with pytest.raises(ProcessSpawnError):
        await orch.start("A", "rtsp://cam/live")

    assert "A" not in orch.table
    with pytest.raises(NotFoundError):
        orch.get("A")


@pytest.mark.asyncio
async def test_spawn_failure_after_running_slot_removes_previous(store: SegmentStore):
    orch = SlotOrchestrator(store=store, command=PythonRelayCommand())
    first = await orch.start("A", "rtsp://cam/live")
    orch.command = MissingProgramCommand()

    with pytest.raises(ProcessSpawnError):
        await orch.start("A", "rtsp://cam/live")

    await finished(first.process.wait())
    assert len(orch.table) == 0


@pytest.mark.asyncio
async def test_spontaneous_exit_removes_slot(orchestrator: SlotOrchestrator, monkeypatch):
    recorder = RecordingLogger()
    monkeypatch.setattr(orchestrator_module, "logger", recorder)

    slot = await orchestrator.start("A", "rtsp://cam/exit")
    await finished(slot.exit_observer)

    assert "A" not in orchestrator.table
    assert slot.state is SlotState.STOPPED
    exits = recorder.named("slot.exited")
    assert exits == [
        {"slot_id": "A", "generation": slot.generation, "exit_code": 3, "unexpected": True}
    ]


@pytest.mark.asyncio
async def test_failure_markers_are_logged_without_state_change(orchestrator: SlotOrchestrator, monkeypatch):
    recorder = RecordingLogger()
    monkeypatch.setattr(orchestrator_module, "logger", recorder)

    slot = await orchestrator.start("B", "rtsp://cam/fail")
    await finished(slot.stderr_reader)

    diagnostics = recorder.named("slot.relay.diagnostic")
    assert diagnostics
    assert "Error opening input" in diagnostics[0]["message"]
    assert diagnostics[0]["slot_id"] == "B"


@pytest.mark.asyncio
async def test_stop_all_reaps_processes_and_removes_directories(orchestrator: SlotOrchestrator, store: SegmentStore):
    first = await orchestrator.start("A", "rtsp://cam/one")
    second = await orchestrator.start("B", "rtsp://cam/two")

    count = await orchestrator.stop_all(remove_directories=True)

    assert count == 2
    assert len(orchestrator.table) == 0
    assert first.process.returncode is not None
    assert second.process.returncode is not None
    assert not store.slot_dir("A").exists()
    assert not store.slot_dir("B").exists()


@pytest.mark.asyncio
async def test_wait_until_ready_unknown_slot(orchestrator: SlotOrchestrator):
    with pytest.raises(NotFoundError):
        await orchestrator.wait_until_ready("nope", 0.1)


@pytest.mark.asyncio
async def test_feed_url_credentials_are_not_logged(orchestrator: SlotOrchestrator, monkeypatch):
    recorder = RecordingLogger()
    monkeypatch.setattr(orchestrator_module, "logger", recorder)

    await orchestrator.start("A", "rtsps://cam.example:443/live?auth=secret-token")

    started = recorder.named("slot.started")
    assert started[0]["feed"] == "rtsps://cam.example"


def test_slot_table_generations_are_per_slot() -> None:
    table = SlotTable()

    assert table.next_generation("A") == 1
    assert table.next_generation("A") == 2
    assert table.next_generation("B") == 1
    assert table.remove_if_current("A", 2) is None
