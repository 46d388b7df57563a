"""Slot lifecycle: at most one relay process per slot id.

A slot moves ``STARTING -> RUNNING -> STOPPED``. ``STOPPED`` is terminal and
the entry leaves the :class:`SlotTable` at the same moment. Mutations of a
slot id (``start``, ``stop`` and exit-observer removal) are serialized: the
first two hold the per-slot lock, the observer removes synchronously and
only when its generation is still the registered one.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from urllib.parse import urlsplit

import structlog

from ..auth.credential_store import utcnow
from ..exceptions import NotFoundError, ProcessSpawnError
from .relay_command import RelayCommand
from .segment_store import SegmentStore

logger = structlog.get_logger(__name__)

FAILURE_MARKERS = ("Error", "error", "Failed")
_STDERR_CHUNK = 4096


class SlotState(str, Enum):
    STARTING = "starting"
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass(slots=True, eq=False)
class Slot:
    id: str
    generation: int
    staging_dir: Path
    manifest_path: Path
    feed_url: str
    started_at: datetime
    state: SlotState = SlotState.STARTING
    process: asyncio.subprocess.Process | None = None
    ready: asyncio.Event = field(default_factory=asyncio.Event)
    exit_observer: asyncio.Task[None] | None = None
    stderr_reader: asyncio.Task[None] | None = None
    readiness_watcher: asyncio.Task[None] | None = None

    @property
    def pid(self) -> int | None:
        return self.process.pid if self.process is not None else None

    @property
    def alive(self) -> bool:
        return self.process is not None and self.process.returncode is None


class SlotTable:
    """Single source of truth mapping slot ids to their live slot."""

    def __init__(self) -> None:
        self._slots: dict[str, Slot] = {}
        self._generations: dict[str, int] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def __contains__(self, slot_id: object) -> bool:
        return slot_id in self._slots

    def __len__(self) -> int:
        return len(self._slots)

    def lock(self, slot_id: str) -> asyncio.Lock:
        lock = self._locks.get(slot_id)
        if lock is None:
            lock = self._locks[slot_id] = asyncio.Lock()
        return lock

    def next_generation(self, slot_id: str) -> int:
        generation = self._generations.get(slot_id, 0) + 1
        self._generations[slot_id] = generation
        return generation

    def get(self, slot_id: str) -> Slot | None:
        return self._slots.get(slot_id)

    def register(self, slot: Slot) -> None:
        if slot.id in self._slots:
            raise RuntimeError(f"slot '{slot.id}' is already registered")
        self._slots[slot.id] = slot

    def remove(self, slot_id: str) -> Slot | None:
        return self._slots.pop(slot_id, None)

    def remove_if_current(self, slot_id: str, generation: int) -> Slot | None:
        slot = self._slots.get(slot_id)
        if slot is None or slot.generation != generation:
            return None
        return self._slots.pop(slot_id)

    def ids(self) -> list[str]:
        return list(self._slots)

    def snapshot(self) -> list[Slot]:
        return list(self._slots.values())


def redact_url(url: str) -> str:
    """Keep scheme and host only; feed URLs carry credentials."""
    parts = urlsplit(url)
    host = parts.hostname or ""
    return f"{parts.scheme}://{host}" if parts.scheme else "<redacted>"


@dataclass(slots=True)
class SlotOrchestrator:
    """Spawn, replace and supervise relay processes per slot."""

    store: SegmentStore
    command: RelayCommand
    table: SlotTable = field(default_factory=SlotTable)
    readiness_poll_seconds: float = 0.2
    shutdown_grace_seconds: float = 5.0
    clock: Callable[[], datetime] = utcnow

    async def start(self, slot_id: str, feed_url: str) -> Slot:
        """Start (or replace) the relay for ``slot_id`` reading ``feed_url``."""
        async with self.table.lock(slot_id):
            self._terminate(slot_id, reason="replaced")
            staging_dir = await asyncio.to_thread(self.store.prepare, slot_id)
            slot = Slot(
                id=slot_id,
                generation=self.table.next_generation(slot_id),
                staging_dir=staging_dir,
                manifest_path=self.store.manifest_path(slot_id),
                feed_url=feed_url,
                started_at=self.clock(),
            )
            argv = self.command.build(
                feed_url, slot.manifest_path, self.store.segment_template(slot_id)
            )
            try:
                process = await asyncio.create_subprocess_exec(
                    *argv,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.DEVNULL,
                    stderr=asyncio.subprocess.PIPE,
                )
            except OSError as exc:
                slot.state = SlotState.STOPPED
                logger.error("slot.spawn_failed", slot_id=slot_id, program=argv[0], error=str(exc))
                raise ProcessSpawnError(f"Relay program '{argv[0]}' could not be launched: {exc}") from exc

            slot.process = process
            slot.state = SlotState.RUNNING
            self.table.register(slot)
            slot.exit_observer = asyncio.create_task(
                self._observe_exit(slot), name=f"slot-{slot_id}-exit"
            )
            slot.stderr_reader = asyncio.create_task(
                self._watch_diagnostics(slot), name=f"slot-{slot_id}-stderr"
            )
            slot.readiness_watcher = asyncio.create_task(
                self._watch_readiness(slot), name=f"slot-{slot_id}-ready"
            )
            logger.info(
                "slot.started",
                slot_id=slot_id,
                generation=slot.generation,
                pid=process.pid,
                feed=redact_url(feed_url),
            )
            return slot

    async def stop(self, slot_id: str) -> bool:
        """Kill and forget the slot. Returns False when nothing was running.

        The kill is confirmed by waiting for the process to be reaped, so a
        returned slot never reports itself alive.
        """
        async with self.table.lock(slot_id):
            slot = self._terminate(slot_id, reason="stopped")
        if slot is None:
            return False
        await self._reap([slot])
        return True

    async def stop_all(self, *, remove_directories: bool = False) -> int:
        """Stop every registered slot and wait for the processes to be reaped."""
        stopped: list[Slot] = []
        for slot_id in self.table.ids():
            async with self.table.lock(slot_id):
                slot = self._terminate(slot_id, reason="shutdown")
            if slot is not None:
                stopped.append(slot)

        await self._reap(stopped)
        if remove_directories:
            for slot in stopped:
                await asyncio.to_thread(self.store.remove, slot.id)
        logger.info("slots.stopped_all", count=len(stopped))
        return len(stopped)

    def get(self, slot_id: str) -> Slot:
        slot = self.table.get(slot_id)
        if slot is None:
            raise NotFoundError(f"slot '{slot_id}' not found")
        return slot

    def list_slots(self) -> list[Slot]:
        return self.table.snapshot()

    async def wait_until_ready(self, slot_id: str, timeout_seconds: float) -> bool:
        """Wait for the first manifest of the slot registered under ``slot_id``.

        When the slot is replaced during the wait, the waiter follows the
        newest generation until the deadline.
        """
        slot = self.get(slot_id)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(timeout_seconds, 0.0)
        interval = max(self.readiness_poll_seconds, 0.01)
        while not slot.ready.is_set():
            remaining = deadline - loop.time()
            if remaining <= 0:
                return False
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(slot.ready.wait(), timeout=min(interval, remaining))
            slot = self.table.get(slot_id) or slot
        return True

    def _terminate(self, slot_id: str, *, reason: str) -> Slot | None:
        slot = self.table.remove(slot_id)
        if slot is None:
            return None
        slot.state = SlotState.STOPPED
        if slot.process is not None and slot.process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                slot.process.kill()
        if slot.readiness_watcher is not None:
            slot.readiness_watcher.cancel()
        logger.info("slot.terminated", slot_id=slot_id, generation=slot.generation, reason=reason)
        return slot

    async def _reap(self, slots: list[Slot]) -> None:
        observers = {
            slot.exit_observer: slot.id for slot in slots if slot.exit_observer is not None
        }
        if not observers:
            return
        _, pending = await asyncio.wait(observers, timeout=self.shutdown_grace_seconds)
        for task in pending:
            logger.error("slot.kill_ignored", slot_id=observers[task])

    async def _observe_exit(self, slot: Slot) -> None:
        assert slot.process is not None
        exit_code = await slot.process.wait()
        removed = self.table.remove_if_current(slot.id, slot.generation)
        if removed is not None:
            removed.state = SlotState.STOPPED
            if removed.readiness_watcher is not None:
                removed.readiness_watcher.cancel()
        logger.info(
            "slot.exited",
            slot_id=slot.id,
            generation=slot.generation,
            exit_code=exit_code,
            unexpected=removed is not None,
        )

    async def _watch_diagnostics(self, slot: Slot) -> None:
        assert slot.process is not None
        stream = slot.process.stderr
        if stream is None:
            return
        while True:
            chunk = await stream.read(_STDERR_CHUNK)
            if not chunk:
                return
            text = chunk.decode("utf-8", errors="replace")
            if any(marker in text for marker in FAILURE_MARKERS):
                logger.warning("slot.relay.diagnostic", slot_id=slot.id, message=text.strip())

    async def _watch_readiness(self, slot: Slot) -> None:
        interval = max(self.readiness_poll_seconds, 0.01)
        while slot.alive:
            if slot.manifest_path.exists():
                slot.ready.set()
                logger.info("slot.ready", slot_id=slot.id, generation=slot.generation)
                return
            await asyncio.sleep(interval)
