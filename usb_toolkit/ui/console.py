"""Terminal output.

A single :class:`Theme` is built at startup from terminal capability
detection and handed to the rendering code; there is no module-level colour
state to toggle afterwards.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from typing import Optional, TextIO

from rich.console import Console
from rich.markup import escape


@dataclass(frozen=True)
class Theme:
    color: bool = True
    error: str = "bold red"
    warning: str = "yellow"
    success: str = "green"
    info: str = "cyan"
    heading: str = "bold"
    dim: str = "dim"

    @classmethod
    def detect(cls, stream: Optional[TextIO] = None) -> Theme:
        """Colour only on a TTY and only when ``NO_COLOR`` is unset."""
        stream = stream or sys.stdout
        isatty = getattr(stream, "isatty", None)
        color = bool(isatty and isatty()) and "NO_COLOR" not in os.environ
        return cls(color=color)


class UI:
    """Console wrapper that styles messages from the theme."""

    def __init__(self, theme: Theme | None = None, console: Console | None = None):
        self.theme = theme or Theme.detect()
        self.console = console or Console(
            no_color=not self.theme.color,
            highlight=False,
            soft_wrap=True,
        )

    def _styled(self, style: str, prefix: str, message: str) -> None:
        if self.theme.color:
            self.console.print(f"[{style}]{escape(prefix)}[/] {escape(message)}")
        else:
            self.console.print(f"{prefix} {message}", markup=False)

    def error(self, message: str) -> None:
        self._styled(self.theme.error, "[ERROR]", message)

    def warning(self, message: str) -> None:
        self._styled(self.theme.warning, "[WARN]", message)

    def success(self, message: str) -> None:
        self._styled(self.theme.success, "[OK]", message)

    def info(self, message: str) -> None:
        self._styled(self.theme.info, "[INFO]", message)

    def heading(self, title: str) -> None:
        self.console.print()
        self.console.rule(title, style=self.theme.heading if self.theme.color else "")

    def print(self, *objects, **kwargs) -> None:
        self.console.print(*objects, **kwargs)

    def plain(self, text: str) -> None:
        self.console.print(text, markup=False, highlight=False)


_ui: UI | None = None


def configure_ui(theme: Theme | None = None) -> UI:
    global _ui
    _ui = UI(theme)
    return _ui


def get_ui() -> UI:
    global _ui
    if _ui is None:
        _ui = UI()
    return _ui
