"""
Main loop -- an explicit stack of views driven by one event stream.

The view on top of the stack owns the input. Each iteration takes exactly one
event, lets the top view handle it, applies the navigation outcome, then gives
the (possibly new) top view a chance to refresh and redraw. A popped child's
parent resumes from the state it kept while the child was active.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol

import structlog
from rich.console import RenderableType

from labdash.config import ProjectConfig
from labdash.events import Event
from labdash.refresh import Runner
from labdash.views.base import Push, Transition, View

logger = structlog.get_logger(__name__)

# pipelines -> jobs -> log; anything deeper is a bug
MAX_DEPTH = 3


class EventSource(Protocol):
    def next_event(self, timeout: float | None = None) -> Optional[Event]: ...


class Display(Protocol):
    @property
    def size(self) -> tuple[int, int]: ...

    def draw(self, renderable: RenderableType) -> None: ...

    def clear(self) -> None: ...


@dataclass
class AppContext:
    """Everything a view may touch, passed down explicitly."""

    client: Any
    runner: Runner
    screen: Display
    events: EventSource
    projects: list[ProjectConfig] = field(default_factory=list)
    clock: Callable[[], float] = time.monotonic


class ViewStack:
    def __init__(self, ctx: AppContext, root: View):
        self.ctx = ctx
        self.views: list[View] = [root]

    @property
    def top(self) -> Optional[View]:
        return self.views[-1] if self.views else None

    def apply(self, outcome: Any) -> None:
        if isinstance(outcome, Push):
            if len(self.views) >= MAX_DEPTH:
                raise RuntimeError(f"view stack deeper than {MAX_DEPTH}")
            logger.info("view_push", view=type(outcome.view).__name__, depth=len(self.views) + 1)
            self.views.append(outcome.view)
        elif outcome is Transition.POP:
            popped = self.views.pop()
            logger.info("view_pop", view=type(popped).__name__, depth=len(self.views))

    def refresh_top(self, force_draw: bool = False) -> None:
        view = self.top
        if view is None:
            return
        view.update(self.ctx.clock())
        if force_draw or view.needs_redraw():
            width, height = self.ctx.screen.size
            self.ctx.screen.draw(view.render(width, height))

    def step(self, event: Event) -> None:
        view = self.top
        if view is None:
            return
        before = view
        self.apply(view.handle(event))
        # a parent resuming after its child popped redraws in full
        self.refresh_top(force_draw=self.top is not before)

    def run(self) -> None:
        """Dispatch events until the root view pops or the input stream closes."""
        self.refresh_top(force_draw=True)
        while self.views:
            event = self.ctx.events.next_event()
            if event is None:
                logger.info("input_closed", depth=len(self.views))
                self.views.clear()
                return
            self.step(event)
