"""
Screen -- the only code that touches the terminal.

Views build Rich renderables; ``Screen.draw`` pushes one to a full-screen
``Live`` display. Write failures surface as ``RenderError``.
"""

from __future__ import annotations

from typing import Optional

from rich.console import Console, RenderableType
from rich.layout import Layout
from rich.live import Live
from rich.text import Text

from labdash.errors import RenderError

HELP_PERCENT = 50


class Screen:
    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()
        self._live: Optional[Live] = None

    def __enter__(self):
        self._live = Live(
            Text(""),
            console=self.console,
            screen=True,
            auto_refresh=False,
            transient=True,
        )
        try:
            self._live.start()
        except OSError as exc:
            raise RenderError(f"cannot start full-screen display: {exc}") from exc
        return self

    def __exit__(self, exc_type, exc, tb):
        if self._live is not None:
            self._live.stop()
            self._live = None

    @property
    def size(self) -> tuple[int, int]:
        """(width, height) of the terminal."""
        w, h = self.console.size
        return w, h

    def draw(self, renderable: RenderableType) -> None:
        try:
            if self._live is not None:
                self._live.update(renderable, refresh=True)
            else:
                self.console.print(renderable)
        except OSError as exc:
            raise RenderError(f"terminal write failed: {exc}") from exc

    def clear(self) -> None:
        self.draw(Text(""))


def with_help_pane(main: RenderableType, help_text: str, help_percent: int) -> Layout:
    """Split vertically: ``main`` on top, help text taking ``help_percent`` of the height."""
    root = Layout(name="root")
    root.split_column(
        Layout(main, name="main", ratio=max(1, 100 - help_percent)),
        Layout(Text(help_text.strip("\n")), name="help", ratio=max(1, help_percent)),
    )
    root["help"].visible = help_percent > 0
    return root
