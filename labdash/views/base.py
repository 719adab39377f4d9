"""
View plumbing shared by the three screens.

A view never blocks: ``handle`` applies one event and says where to navigate
next, ``update`` triggers background refreshes and merges whatever has been
published, ``render`` builds a Rich renderable for the current state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from typing import TYPE_CHECKING, Any, Generic, Optional, TypeVar, Union

from rich.console import RenderableType
from rich.table import Table

from labdash.events import DOWN, ENTER, ESC, PAGE_DOWN, PAGE_UP, UP, Event, Key
from labdash.models import format_time
from labdash.refresh import STALE_AFTER, RefreshPublisher, RefreshSchedule
from labdash.screen import HELP_PERCENT, with_help_pane

if TYPE_CHECKING:
    from labdash.app import AppContext

T = TypeVar("T")

# title + header rows drawn above the table body
TABLE_CHROME = 2


class Transition(Enum):
    STAY = auto()
    POP = auto()


@dataclass(frozen=True)
class Push:
    view: View


Outcome = Union[Transition, Push]


class View:
    """One full-screen modal screen."""

    def __init__(self, ctx: AppContext):
        self.ctx = ctx

    def handle(self, event: Event) -> Outcome:
        return Transition.STAY

    def update(self, now: float) -> None:
        pass

    def needs_redraw(self) -> bool:
        return True

    def render(self, width: int, height: int) -> RenderableType:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# List state
# ---------------------------------------------------------------------------

@dataclass
class ListState(Generic[T]):
    rows: list[T] = field(default_factory=list)
    selected: Optional[int] = 0
    offset: int = 0
    last_update: Optional[datetime] = None
    help_percent: int = 0

    @property
    def current(self) -> Optional[T]:
        if self.selected is None or not self.rows:
            return None
        return self.rows[self.selected]

    def clamp(self) -> None:
        if not self.rows:
            self.selected = None
            self.offset = 0
            return
        self.selected = min(max(self.selected or 0, 0), len(self.rows) - 1)

    def move(self, delta: int) -> None:
        if not self.rows:
            return
        self.selected = (self.selected or 0) + delta
        self.clamp()

    def toggle_help(self) -> None:
        self.help_percent = 0 if self.help_percent else HELP_PERCENT

    def merge(self, snapshot: tuple[datetime, list[T]]) -> bool:
        """Adopt a published snapshot if it is newer than the current one."""
        stamp, data = snapshot
        if self.last_update is not None and stamp <= self.last_update:
            return False
        self.rows = list(data)
        self.last_update = stamp
        self.clamp()
        return True

    def window(self, visible_rows: int) -> tuple[int, list[T]]:
        """Slice of rows to draw, scrolled so the selection stays visible."""
        visible_rows = max(1, visible_rows)
        if self.selected is not None:
            if self.selected < self.offset:
                self.offset = self.selected
            elif self.selected >= self.offset + visible_rows:
                self.offset = self.selected - visible_rows + 1
        self.offset = max(0, min(self.offset, max(0, len(self.rows) - visible_rows)))
        return self.offset, self.rows[self.offset:self.offset + visible_rows]


# ---------------------------------------------------------------------------
# Table view
# ---------------------------------------------------------------------------

class TableView(View, Generic[T]):
    """Selectable, auto-refreshing table with a toggleable help pane."""

    HELP_TEXT = ""
    HIGHLIGHT_STYLE = "bold"
    PAGE_KEYS = False

    def __init__(self, ctx: AppContext, publisher: RefreshPublisher[list[T]]):
        super().__init__(ctx)
        self.publisher = publisher
        self.schedule = RefreshSchedule(interval=STALE_AFTER)
        self.state: ListState[T] = ListState()

    # -- hooks --------------------------------------------------------------

    def open(self, row: T) -> Optional[View]:
        return None

    def on_merge(self) -> None:
        pass

    def title(self) -> str:
        raise NotImplementedError

    def columns(self) -> list[tuple[str, int]]:
        raise NotImplementedError

    def cells(self, row: T) -> list[Any]:
        raise NotImplementedError

    # -- transitions --------------------------------------------------------

    def handle(self, event: Event) -> Outcome:
        if not isinstance(event, Key):
            return Transition.STAY
        code = event.code
        if code == ESC:
            return Transition.POP
        if code == UP:
            self.state.move(-1)
        elif code == DOWN:
            self.state.move(1)
        elif code in (PAGE_UP, PAGE_DOWN) and self.PAGE_KEYS:
            half = max(1, self.ctx.screen.size[1] // 2)
            self.state.move(-half if code == PAGE_UP else half)
        elif code == "h":
            self.state.toggle_help()
        elif code == "R":
            self.schedule.request()
        elif code == ENTER:
            row = self.state.current
            if row is not None:
                child = self.open(row)
                if child is not None:
                    return Push(child)
        return Transition.STAY

    def update(self, now: float) -> None:
        if self.schedule.due(now):
            self.schedule.mark(now)
            self.publisher.trigger_refresh()
        snapshot = self.publisher.poll()
        if snapshot is not None and self.state.merge(snapshot):
            self.on_merge()
        self.state.clamp()

    # -- drawing ------------------------------------------------------------

    def last_updated(self) -> str:
        return f"Last updated: {format_time(self.state.last_update)}"

    def render(self, width: int, height: int) -> RenderableType:
        main_height = height * (100 - self.state.help_percent) // 100
        offset, rows = self.state.window(main_height - TABLE_CHROME)

        table = Table(
            title=self.title(),
            title_justify="left",
            box=None,
            expand=True,
            show_edge=False,
            padding=(0, 1),
        )
        for name, ratio in self.columns():
            table.add_column(name, ratio=ratio, no_wrap=True, overflow="ellipsis")
        for i, row in enumerate(rows, start=offset):
            style = self.HIGHLIGHT_STYLE if i == self.state.selected else None
            table.add_row(*self.cells(row), style=style)

        return with_help_pane(table, self.HELP_TEXT, self.state.help_percent)
