"""Output rendering abstraction for the smarthub CLI.

File: src/smarttesthub/ui/render.py
Last updated: 2026-10-19

Purpose
- Provide a thin rendering layer for CLI output on top of a ``rich`` console.
- Respect NO_COLOR environment variable and --no-color CLI flag.

What should be included in this file
- CLIRenderer class with methods for common output patterns.
- Factory function to create a renderer with appropriate settings.

Functional requirements
- Output stays readable when stdout is not a terminal (rich falls back to plain text).
- User-supplied text is never interpreted as rich markup.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

from rich.console import Console
from rich.table import Table

if TYPE_CHECKING:
    from collections.abc import Sequence


def _color_allowed(no_color_flag: bool) -> bool:
    """Check whether color output should be attempted."""

    if no_color_flag:
        return False
    return not os.environ.get("NO_COLOR", "")


class CLIRenderer:
    """Thin CLI output renderer.

    Produces clean, deterministic output through one ``rich`` console.
    Respects ``NO_COLOR`` env var and ``--no-color`` flag.
    """

    def __init__(
        self,
        *,
        no_color: bool = False,
        verbose: bool = False,
        console: Console | None = None,
    ) -> None:
        self.verbose = verbose
        self._color = _color_allowed(no_color)
        self._console = (
            console
            if console is not None
            else Console(no_color=not self._color, highlight=False, soft_wrap=True)
        )

    @property
    def console(self) -> Console:
        return self._console

    def heading(self, text: str) -> None:
        """Print a heading line."""

        self._console.print(text, style="bold", markup=False)

    def kv(self, key: str, value: object) -> None:
        """Print a key: value pair."""

        self._console.print(f"{key}: {value}", markup=False)

    def text(self, line: str) -> None:
        """Print a plain text line."""

        self._console.print(line, markup=False)

    def blank(self) -> None:
        """Print a blank line."""

        self._console.print()

    def section(self, title: str) -> None:
        """Print a section header with a preceding blank line."""

        self._console.print()
        self._console.print(title, style="bold", markup=False)

    def warning(self, text: str) -> None:
        """Print a warning message."""

        self._console.print(f"  Warning: {text}", style="yellow", markup=False)

    def items(self, entries: Sequence[str], *, prefix: str = "- ") -> None:
        """Print a bulleted list."""

        for entry in entries:
            self._console.print(f"  {prefix}{entry}", markup=False)

    def table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[str]],
        *,
        title: str | None = None,
    ) -> None:
        """Print a table; nothing is printed for an empty row set."""

        if not rows:
            return
        table = Table(title=title, show_edge=False, header_style="bold")
        for header in headers:
            table.add_column(header)
        for row in rows:
            table.add_row(*(str(cell) for cell in row))
        self._console.print(table)

    def ok(self, label: str) -> None:
        """Print a passing diagnostic check."""

        self._console.print(f"  OK  {label}", style="green", markup=False)

    def fail(self, label: str) -> None:
        """Print a failing diagnostic check."""

        self._console.print(f"  FAIL  {label}", style="red", markup=False)


def create_renderer(*, no_color: bool = False, verbose: bool = False) -> CLIRenderer:
    """Create a renderer with appropriate color and verbosity settings."""

    return CLIRenderer(no_color=no_color, verbose=verbose)


__all__ = ["CLIRenderer", "create_renderer"]
