"""
Background fetching: one asyncio loop on a daemon thread, and the
fetch-then-publish pattern every view uses to get fresh data without blocking
the keyboard.

Superseded fetches are never cancelled. Each publish is stamped with the time
its refresh was *requested*, so a slow older fetch landing after a newer one is
rejected by the slot instead of overwriting fresher data.
"""

from __future__ import annotations

import asyncio
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Coroutine, Generic, Optional, Protocol, TypeVar

import structlog

from labdash.errors import FetchError
from labdash.snapshot import SnapshotCursor, VersionedSlot

logger = structlog.get_logger(__name__)

T = TypeVar("T")

STALE_AFTER = 30.0
LOG_POLL_INTERVAL = 10.0


def local_now() -> datetime:
    return datetime.now().astimezone()


class Runner(Protocol):
    def submit(self, coro: Coroutine[Any, Any, Any]) -> Any: ...


class BackgroundLoop:
    """An asyncio event loop running forever on a daemon thread."""

    def __init__(self):
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run, name="labdash-fetch", daemon=True)

    def _run(self) -> None:
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def start(self) -> BackgroundLoop:
        self._thread.start()
        return self

    def submit(self, coro: Coroutine[Any, Any, T]) -> Future[T]:
        return asyncio.run_coroutine_threadsafe(coro, self.loop)

    def run(self, coro: Coroutine[Any, Any, T], timeout: float | None = None) -> T:
        """Run ``coro`` on the loop and wait for its result."""
        return self.submit(coro).result(timeout)

    def stop(self) -> None:
        if self.loop.is_running():
            self.loop.call_soon_threadsafe(self.loop.stop)
            self._thread.join(timeout=2.0)


@dataclass
class RefreshSchedule:
    """Decides when a view should trigger a refresh: stale, or asked for."""

    interval: float = STALE_AFTER
    requested: bool = True
    last_refresh: Optional[float] = None

    def request(self) -> None:
        self.requested = True

    def due(self, now: float) -> bool:
        if self.requested or self.last_refresh is None:
            return True
        return now - self.last_refresh > self.interval

    def mark(self, now: float) -> None:
        self.requested = False
        self.last_refresh = now


class RefreshPublisher(Generic[T]):
    """Spawn a fetch on the background loop; publish ``(stamp, result)`` on success."""

    def __init__(
        self,
        runner: Runner,
        fetch: Callable[[], Awaitable[T]],
        kind: str,
        clock: Callable[[], datetime] = local_now,
    ):
        self.runner = runner
        self.fetch = fetch
        self.kind = kind
        self.clock = clock
        self.slot: VersionedSlot[T] = VersionedSlot()
        self.cursor: SnapshotCursor[T] = SnapshotCursor(self.slot)
        self._last_stamp: Optional[datetime] = None

    def _next_stamp(self) -> datetime:
        stamp = self.clock()
        if self._last_stamp is not None and stamp <= self._last_stamp:
            stamp = self._last_stamp + timedelta(microseconds=1)
        self._last_stamp = stamp
        return stamp

    def trigger_refresh(self) -> None:
        stamp = self._next_stamp()
        logger.debug("refresh_triggered", kind=self.kind, stamp=stamp.isoformat())
        future = self.runner.submit(self._fetch_and_publish(stamp))
        if isinstance(future, Future):
            future.add_done_callback(self._report_crash)

    async def _fetch_and_publish(self, stamp: datetime) -> None:
        try:
            data = await self.fetch()
        except FetchError as exc:
            logger.error("refresh_failed", kind=self.kind, error=str(exc))
            return
        if not self.slot.publish(stamp, data):
            logger.info("refresh_superseded", kind=self.kind, stamp=stamp.isoformat())

    def _report_crash(self, future: Future[Any]) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("refresh_crashed", kind=self.kind, error=repr(exc), exc_info=exc)

    def poll(self) -> Optional[tuple[datetime, T]]:
        """Non-blocking: the newest snapshot if it has not been handed out yet."""
        return self.cursor.take_new()
