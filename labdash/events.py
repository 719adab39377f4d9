"""
Input multiplexer -- keyboard and timer ticks merged into one event stream.

A reader thread races the raw keyboard against a fixed interval: a ready key is
emitted immediately as ``Key``, otherwise one ``Tick`` goes out per interval.
The stream ends (``next_event`` returns None) only when the input source fails.
"""

from __future__ import annotations

import os
import queue
import select
import sys
import termios
import threading
import time
import tty
from dataclasses import dataclass
from typing import Any, Optional, Protocol, Union

import structlog

from labdash.errors import InputSourceError

logger = structlog.get_logger(__name__)

DEFAULT_TICK_INTERVAL = 0.2

# Key codes for non-printable keys. Printable keys are the character itself.
UP = "UP"
DOWN = "DOWN"
LEFT = "LEFT"
RIGHT = "RIGHT"
PAGE_UP = "PAGE_UP"
PAGE_DOWN = "PAGE_DOWN"
HOME = "HOME"
END = "END"
ENTER = "ENTER"
ESC = "ESC"
TAB = "TAB"

_CSI_FINAL = {
    b"A": UP,
    b"B": DOWN,
    b"C": RIGHT,
    b"D": LEFT,
    b"H": HOME,
    b"F": END,
}

_CSI_TILDE = {
    b"1": HOME,
    b"4": END,
    b"5": PAGE_UP,
    b"6": PAGE_DOWN,
}


@dataclass(frozen=True)
class Tick:
    pass


@dataclass(frozen=True)
class Key:
    code: str


Event = Union[Tick, Key]


def decode_escape(seq: bytes) -> str:
    """Map the bytes following ESC to a key code. An empty sequence is a bare Esc."""
    if seq.startswith((b"[", b"O")) and len(seq) >= 2:
        body = seq[1:]
        if body.endswith(b"~"):
            return _CSI_TILDE.get(body[:-1].split(b";")[0], ESC)
        return _CSI_FINAL.get(body[-1:], ESC)
    return ESC


def decode_key(raw: bytes) -> str:
    if raw in (b"\r", b"\n"):
        return ENTER
    if raw == b"\t":
        return TAB
    return raw.decode("utf-8", errors="ignore")


class KeySource(Protocol):
    def wait(self, timeout: float) -> str: ...


class KeyPoller:
    """Raw cbreak-mode stdin reader. Use as a context manager."""

    def __init__(self, enabled: bool = True):
        self.enabled = enabled and os.name == "posix" and sys.stdin.isatty()
        self.fd: int | None = None
        self._old: Any = None

    def __enter__(self):
        if self.enabled:
            self.fd = sys.stdin.fileno()
            self._old = termios.tcgetattr(self.fd)
            tty.setcbreak(self.fd)
        return self

    def __exit__(self, exc_type, exc, tb):
        if self.enabled and self.fd is not None and self._old is not None:
            termios.tcsetattr(self.fd, termios.TCSADRAIN, self._old)

    def _read_byte(self) -> bytes:
        assert self.fd is not None
        raw = os.read(self.fd, 1)
        if not raw:
            raise InputSourceError("stdin closed")
        return raw

    def wait(self, timeout: float) -> str:
        """Block up to ``timeout`` seconds for one key; "" when none arrived."""
        if not self.enabled or self.fd is None:
            time.sleep(timeout)
            return ""
        ready, _, _ = select.select([self.fd], [], [], timeout)
        if not ready:
            return ""
        raw = self._read_byte()
        if raw == b"\x1b":
            seq = b""
            deadline = time.time() + 0.05
            while time.time() < deadline:
                rdy, _, _ = select.select([self.fd], [], [], 0.005)
                if not rdy:
                    break
                seq += self._read_byte()
                if len(seq) >= 2 and (seq[-1:].isalpha() or seq.endswith(b"~")):
                    break
            return decode_escape(seq)
        if raw[0] >= 0xC0:
            # utf-8 lead byte: pull the continuation bytes
            extra = 1 if raw[0] < 0xE0 else 2 if raw[0] < 0xF0 else 3
            for _ in range(extra):
                raw += self._read_byte()
        return decode_key(raw)


class InputMultiplexer:
    """Single consumer event stream fed by a daemon reader thread."""

    def __init__(self, source: KeySource, tick_interval: float = DEFAULT_TICK_INTERVAL):
        self.source = source
        self.tick_interval = tick_interval
        self._q: queue.Queue[Optional[Event]] = queue.Queue()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self.closed = False

    def start(self) -> InputMultiplexer:
        self._thread = threading.Thread(target=self._run, name="labdash-input", daemon=True)
        self._thread.start()
        return self

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=1.0)

    def _run(self) -> None:
        next_tick = time.monotonic() + self.tick_interval
        try:
            while not self._stop.is_set():
                key = self.source.wait(max(0.0, next_tick - time.monotonic()))
                if key:
                    self._q.put(Key(key))
                    continue
                now = time.monotonic()
                if now >= next_tick:
                    self._q.put(Tick())
                    next_tick = now + self.tick_interval
        except (InputSourceError, OSError) as exc:
            logger.error("input_source_failed", error=str(exc))
        finally:
            self._q.put(None)

    def next_event(self, timeout: float | None = None) -> Optional[Event]:
        """Next event in arrival order. None means the stream is closed."""
        if self.closed:
            return None
        try:
            event = self._q.get(timeout=timeout)
        except queue.Empty:
            return Tick()
        if event is None:
            self.closed = True
        return event
