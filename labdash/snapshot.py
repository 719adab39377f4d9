"""
Versioned single-slot snapshot shared by one background producer and one view.

Only the newest ``(stamp, data)`` pair is readable. Reading twice without a new
publish yields the same pair, which is how a view tells "no update yet".
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class VersionedSlot(Generic[T]):
    def __init__(self):
        self._lock = threading.Lock()
        self._value: Optional[tuple[datetime, T]] = None

    def publish(self, stamp: datetime, data: T) -> bool:
        """Store ``(stamp, data)`` unless the slot already holds an equal or newer stamp."""
        with self._lock:
            if self._value is not None and stamp <= self._value[0]:
                return False
            self._value = (stamp, data)
            return True

    def peek(self) -> Optional[tuple[datetime, T]]:
        with self._lock:
            return self._value


class SnapshotCursor(Generic[T]):
    """Consumer side: hands out each published snapshot exactly once, never an older one."""

    def __init__(self, slot: VersionedSlot[T]):
        self.slot = slot
        self.last_seen: Optional[datetime] = None

    def take_new(self) -> Optional[tuple[datetime, T]]:
        value = self.slot.peek()
        if value is None:
            return None
        stamp, _ = value
        if self.last_seen is not None and stamp <= self.last_seen:
            return None
        self.last_seen = stamp
        return value
