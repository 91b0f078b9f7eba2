from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from typing import Literal

from anyio import to_thread

from app.services.conflict_resolution import ConflictCounts

logger = logging.getLogger(__name__)

CONFLICTS_TABLE = "conflicts"


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    op: Literal["insert", "update", "delete"]


@dataclass(frozen=True)
class ConflictCountSnapshot:
    pending: int
    queued: int
    observed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def total(self) -> int:
        return self.pending + self.queued

    def to_payload(self) -> dict:
        return {
            "event": "conflicts.count",
            "pending": self.pending,
            "queued": self.queued,
            "observed_at": self.observed_at.isoformat(),
        }


Subscriber = Callable[[ConflictCountSnapshot], Awaitable[None]]


class ConflictWatcher:
    """Keeps subscribers informed of how many edit conflicts await a supervisor.

    Counts are re-read every `interval_seconds` and immediately after a change
    event for the conflicts table. Subscribers are only called when the counts
    move (and once after start).
    """

    def __init__(
        self,
        count_reader: Callable[[], ConflictCounts],
        *,
        interval_seconds: float,
    ) -> None:
        self._count_reader = count_reader
        self._interval = interval_seconds
        self._subscribers: list[Subscriber] = []
        self._latest: ConflictCountSnapshot | None = None
        self._task: asyncio.Task | None = None
        self._wake: asyncio.Event | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def latest(self) -> ConflictCountSnapshot | None:
        return self._latest

    def subscribe(self, subscriber: Subscriber) -> None:
        if subscriber not in self._subscribers:
            self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    async def start(self) -> None:
        if self.running:
            return
        self._loop = asyncio.get_running_loop()
        self._wake = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name="conflict-watcher")
        logger.info("Conflict watcher started (interval %.1fs)", self._interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self._loop = None
        logger.info("Conflict watcher stopped")

    def handle_event(self, event: ChangeEvent) -> None:
        if event.table != CONFLICTS_TABLE or self._wake is None:
            return
        self._wake.set()

    def publish(self, event: ChangeEvent) -> None:
        """Thread-safe entry point for the write path; sync routes run in worker threads."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self.handle_event, event)

    async def refresh(self) -> ConflictCountSnapshot:
        counts = await to_thread.run_sync(self._count_reader)
        snapshot = ConflictCountSnapshot(pending=counts.pending, queued=counts.queued)
        previous, self._latest = self._latest, snapshot
        if previous is None or (previous.pending, previous.queued) != (snapshot.pending, snapshot.queued):
            await self._notify(snapshot)
        return snapshot

    async def _notify(self, snapshot: ConflictCountSnapshot) -> None:
        for subscriber in list(self._subscribers):
            try:
                await subscriber(snapshot)
            except Exception:
                logger.warning("Conflict count subscriber %r failed", subscriber, exc_info=True)

    async def _run(self) -> None:
        while True:
            try:
                await self.refresh()
            except Exception:
                logger.warning("Conflict count refresh failed; retrying in %.1fs", self._interval, exc_info=True)
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass
            self._wake.clear()
