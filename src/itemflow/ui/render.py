"""Plain-text output rendering for the itemflow CLI.

File: src/itemflow/ui/render.py

Purpose
- Provide a thin rendering layer so command handlers never format output inline.
- Respect the NO_COLOR environment variable and the --no-color CLI flag.

Non-functional requirements
- No dependencies beyond the standard library.
- Output is deterministic so it can be asserted in tests.
"""

from __future__ import annotations

import os
import sys
from typing import TYPE_CHECKING, TextIO

if TYPE_CHECKING:
    from collections.abc import Sequence


def _color_allowed(no_color_flag: bool, stream: TextIO) -> bool:
    if no_color_flag:
        return False
    if os.environ.get("NO_COLOR", ""):
        return False
    return hasattr(stream, "isatty") and stream.isatty()


class CLIRenderer:
    """Thin CLI output renderer writing to ``stream`` (stdout by default)."""

    def __init__(
        self, *, no_color: bool = False, verbose: bool = False, stream: TextIO | None = None
    ) -> None:
        self.verbose = verbose
        self._stream = stream if stream is not None else sys.stdout
        self._color = _color_allowed(no_color, self._stream)

    def _write(self, line: str = "") -> None:
        print(line, file=self._stream)

    def heading(self, text: str) -> None:
        if self._color:
            self._write(f"\033[1m{text}\033[0m")
        else:
            self._write(text)

    def kv(self, key: str, value: object) -> None:
        self._write(f"{key}: {value}")

    def text(self, line: str) -> None:
        self._write(line)

    def section(self, title: str) -> None:
        self._write(f"\n{title}")

    def warning(self, text: str) -> None:
        self._write(f"  Warning: {text}")

    def items(self, entries: Sequence[str], *, prefix: str = "- ") -> None:
        for entry in entries:
            self._write(f"  {prefix}{entry}")

    def table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[str]],
        *,
        title: str | None = None,
    ) -> None:
        """Print an aligned ASCII table; prints nothing for an empty row set."""

        if not rows:
            return

        col_count = len(headers)
        widths = [len(h) for h in headers]
        for row in rows:
            for i in range(min(len(row), col_count)):
                widths[i] = max(widths[i], len(str(row[i])))

        def _pad(cells: Sequence[str]) -> str:
            parts = [
                (str(cells[i]) if i < len(cells) else "").ljust(widths[i])
                for i in range(col_count)
            ]
            return "  ".join(parts).rstrip()

        if title:
            self.section(title)
        self._write(f"  {_pad(list(headers))}")
        self._write(f"  {'  '.join('-' * w for w in widths)}")
        for row in rows:
            self._write(f"  {_pad(list(row))}")


def create_renderer(
    *, no_color: bool = False, verbose: bool = False, stream: TextIO | None = None
) -> CLIRenderer:
    return CLIRenderer(no_color=no_color, verbose=verbose, stream=stream)


__all__ = ["CLIRenderer", "create_renderer"]
