"""
Log viewer -- polls one job's trace and tails it.

Two modes: FOLLOW keeps the newest lines on screen as the log grows, MANUAL
leaves the window where the user scrolled it. Scrolling past the last line
switches back to FOLLOW.

The log is re-fetched in full every ``LOG_POLL_INTERVAL`` seconds and re-wrapped
to ``terminal_width - 1`` columns, also whenever the terminal width changes.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from rich.console import Group, RenderableType
from rich.text import Text

from labdash.events import DOWN, END, ESC, HOME, PAGE_DOWN, PAGE_UP, UP, Event, Key
from labdash.models import JOB_STATUS_STYLE, JobRecord, format_time
from labdash.refresh import LOG_POLL_INTERVAL, RefreshPublisher, RefreshSchedule
from labdash.views.base import Outcome, Transition, View

if TYPE_CHECKING:
    from labdash.app import AppContext

# lines of overlap kept on PageUp/PageDown
JUMP_MARGIN = 3

_ANSI_RE = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)|\x1b[@-Z\\-_]")


def cut_line(text: str, width: int) -> list[str]:
    """Split ``text`` into chunks of at most ``width`` characters.

    Every character is kept, so ``"".join(cut_line(t, w)) == t``. An empty
    string yields no chunks.

    >>> cut_line("abcdefghijklmnop", 5)
    ['abcde', 'fghij', 'klmno', 'p']
    """
    if width < 1:
        raise ValueError("width must be >= 1")
    return [text[i:i + width] for i in range(0, len(text), width)]


def wrap_lines(text: str, width: int) -> list[str]:
    """Wrap on existing line breaks first, then cut long lines. Blank lines survive."""
    if not text:
        return []
    res: list[str] = []
    for line in text.split("\n"):
        res.extend(cut_line(line, width) or [""])
    if text.endswith("\n"):
        res.pop()
    return res


def clean_trace(text: str) -> str:
    """Strip ANSI escapes and carriage-return overwrites from a CI job trace."""
    out = []
    for line in _ANSI_RE.sub("", text).split("\n"):
        line = line.removesuffix("\r")
        out.append(line.rsplit("\r", 1)[-1].expandtabs(8))
    return "\n".join(out)


@dataclass
class LogViewerState:
    raw: str = ""
    lines: list[str] = field(default_factory=list)
    width: int = 0
    cursor: int = 0
    following: bool = True
    dirty: bool = True

    # visible_height is the terminal height; one row is kept for the status line

    @staticmethod
    def rows(visible_height: int) -> int:
        return max(1, visible_height - 1)

    def bottom(self, visible_height: int) -> int:
        return max(0, len(self.lines) - self.rows(visible_height))

    def set_text(self, raw: str, width: int) -> None:
        self.raw = raw
        self.width = max(1, width)
        self.lines = wrap_lines(clean_trace(raw), self.width)
        self.dirty = True

    def rewrap(self, width: int) -> None:
        if max(1, width) != self.width:
            self.set_text(self.raw, width)

    # -- transitions --------------------------------------------------------

    def up(self) -> None:
        self.cursor -= min(1, self.cursor)
        self.following = False
        self.dirty = True

    def page_up(self, visible_height: int) -> None:
        self.cursor -= min(max(1, visible_height - JUMP_MARGIN), self.cursor)
        self.following = False
        self.dirty = True

    def down(self) -> None:
        self._forward(1)

    def page_down(self, visible_height: int) -> None:
        self._forward(max(1, visible_height - JUMP_MARGIN))

    def _forward(self, step: int) -> None:
        self.cursor += step
        self.following = self.cursor >= len(self.lines)
        self.dirty = True

    def top(self) -> None:
        self.cursor = 0
        self.following = False
        self.dirty = True

    def jump_bottom(self, visible_height: int) -> None:
        self.cursor = self.bottom(visible_height)
        self.following = True
        self.dirty = True

    # -- drawing ------------------------------------------------------------

    def window(self, visible_height: int) -> tuple[int, list[str]]:
        """First line index and the lines to draw; pins the cursor when following."""
        if self.following:
            self.cursor = self.bottom(visible_height)
        else:
            self.cursor = max(0, min(self.cursor, max(0, len(self.lines) - 1)))
        self.dirty = False
        return self.cursor, self.lines[self.cursor:self.cursor + self.rows(visible_height)]


class LogViewerView(View):
    def __init__(self, ctx: AppContext, job: JobRecord):
        super().__init__(ctx)
        self.job = job
        self.publisher = RefreshPublisher(
            ctx.runner,
            lambda: ctx.client.get_job_log(job.project_id, job.job_id),
            kind="log",
        )
        self.schedule = RefreshSchedule(interval=LOG_POLL_INTERVAL)
        self.state = LogViewerState()
        self.last_fetch: Optional[datetime] = None

    def handle(self, event: Event) -> Outcome:
        if not isinstance(event, Key):
            return Transition.STAY
        height = self.ctx.screen.size[1]
        code = event.code
        if code == ESC:
            self.ctx.screen.clear()
            return Transition.POP
        if code == UP:
            self.state.up()
        elif code == PAGE_UP:
            self.state.page_up(height)
        elif code == DOWN:
            self.state.down()
        elif code == PAGE_DOWN:
            self.state.page_down(height)
        elif code in ("g", HOME):
            self.state.top()
        elif code in ("G", END):
            self.state.jump_bottom(height)
        elif code == "R":
            self.schedule.request()
        return Transition.STAY

    def update(self, now: float) -> None:
        if self.schedule.due(now):
            self.schedule.mark(now)
            self.publisher.trigger_refresh()
        width = self.ctx.screen.size[0] - 1
        snapshot = self.publisher.poll()
        if snapshot is not None:
            self.last_fetch, raw = snapshot
            self.state.set_text(raw, width)
        else:
            self.state.rewrap(width)

    def needs_redraw(self) -> bool:
        return self.state.dirty

    def status_line(self, start: int, shown: int) -> Text:
        total = len(self.state.lines)
        mode = "FOLLOW" if self.state.following else "MANUAL"
        line = Text(no_wrap=True, overflow="crop", style="reverse")
        line.append(f" {self.job.name} ")
        line.append(self.job.status, style=JOB_STATUS_STYLE.get(self.job.status, ""))
        line.append(
            f"  lines {min(start + 1, total)}-{start + shown} of {total}  {mode}"
            f"  fetched {format_time(self.last_fetch)}  (Esc back, g/G top/bottom)"
        )
        return line

    def render(self, width: int, height: int) -> RenderableType:
        self.state.rewrap(width - 1)
        start, lines = self.state.window(height)
        padded = lines + [""] * (self.state.rows(height) - len(lines))
        body = Text("\n".join(padded), no_wrap=True, overflow="crop")
        return Group(body, self.status_line(start, len(lines)))
