"""
Harald Console Interface
=========================

Rich console wrapper shared by every Harald command. It owns the Harald
palette (message levels plus one style per :class:`Severity`), the
banner, section rules, the discovery progress bar, table and panel
factories and the status spinner. Quiet mode silences all of it, which
is how library callers and the tests use it.

References:
    - Rich library: https://github.com/Textualize/rich
"""

from __future__ import annotations

import datetime as _dt
from contextlib import contextmanager
from typing import Any, Iterator, Sequence

from rich.align import Align
from rich.console import Console, RenderableType
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

from shared.models import Severity

_ACCENT = "bright_blue"

_HARALD_THEME = Theme(
    {
        "harald.section": "bold bright_magenta",
        "harald.success": "bold green",
        "harald.warning": "bold yellow",
        "harald.error": "bold red",
        "harald.info": f"bold {_ACCENT}",
        "harald.dim": "dim white",
        # one entry per Severity.style
        "harald.critical": "bold white on red",
        "harald.high": "bold red",
        "harald.medium": "bold yellow",
        "harald.low": "bold bright_cyan",
        "harald.none": "dim",
    }
)

# (style, icon, label) per message level
_LEVELS: dict[str, tuple[str, str, str]] = {
    "success": ("harald.success", "✔", "SUCCESS"),
    "warning": ("harald.warning", "⚠", "WARNING"),
    "error": ("harald.error", "✘", "ERROR"),
    "info": ("harald.info", "ℹ", "INFO"),
}

_BANNER_ART = r"""
  ██╗  ██╗ █████╗ ██████╗  █████╗ ██╗     ██████╗
  ██║  ██║██╔══██╗██╔══██╗██╔══██╗██║     ██╔══██╗
  ███████║███████║██████╔╝███████║██║     ██║  ██║
  ██╔══██║██╔══██║██╔══██╗██╔══██║██║     ██║  ██║
  ██║  ██║██║  ██║██║  ██║██║  ██║███████╗██████╔╝
  ╚═╝  ╚═╝╚═╝  ╚═╝╚═╝  ╚═╝╚═╝  ╚═╝╚══════╝╚═════╝"""

_TAGLINE = "Bluetooth Discovery & Vulnerability Assessment"


class HaraldConsole:
    """Console used by the CLI, the engine and the result renderers.

    Usage::

        con = HaraldConsole()
        con.banner("1.0.0")
        con.section("Discovered Devices")
        con.success(f"{count} devices found")

    Args:
        quiet: Suppress all output.
    """

    def __init__(self, *, quiet: bool = False) -> None:
        self._console = Console(theme=_HARALD_THEME, quiet=quiet, highlight=False)

    # ------------------------------------------------------------------ #
    #  Framing
    # ------------------------------------------------------------------ #

    def banner(self, version: str) -> None:
        stamp = _dt.datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        art = Text(_BANNER_ART, style=_ACCENT)
        art.append(f"\n\n{_TAGLINE}\n", style="bright_magenta")
        art.append(f"v{version}  |  {stamp}", style="harald.dim")
        self.panel(Align.center(art))

    def section(self, title: str) -> None:
        self._console.rule(f"  {title}  ", style="harald.section", characters="─")
        self._console.print()

    def blank(self) -> None:
        self._console.print()

    def print(self, *args: Any, **kwargs: Any) -> None:
        self._console.print(*args, **kwargs)

    # ------------------------------------------------------------------ #
    #  Messages
    # ------------------------------------------------------------------ #

    def _message(self, level: str, text: str) -> None:
        style, icon, label = _LEVELS[level]
        self._console.print(f"[{style}][{icon}] {label}:[/{style}] {text}")

    def success(self, text: str) -> None:
        self._message("success", text)

    def warning(self, text: str) -> None:
        self._message("warning", text)

    def error(self, text: str) -> None:
        self._message("error", text)

    def info(self, text: str) -> None:
        self._message("info", text)

    @staticmethod
    def severity(severity: Severity) -> str:
        """Markup rendering *severity* in its theme colour."""
        return f"[{severity.style}]{severity.value}[/{severity.style}]"

    # ------------------------------------------------------------------ #
    #  Renderables
    # ------------------------------------------------------------------ #

    @staticmethod
    def new_table(title: str) -> Table:
        """Empty table in the Harald style; the caller adds columns."""
        return Table(
            title=title,
            border_style=_ACCENT,
            header_style="bold bright_magenta",
            show_lines=True,
            padding=(0, 1),
        )

    def table(
        self,
        title: str,
        columns: Sequence[str],
        rows: Sequence[Sequence[Any]],
        *,
        styles: Sequence[str] = (),
    ) -> None:
        """Print a table of stringified *rows* under *columns*."""
        tbl = self.new_table(title)
        for idx, name in enumerate(columns):
            tbl.add_column(name, style=styles[idx] if idx < len(styles) else "")
        for row in rows:
            tbl.add_row(*(str(cell) for cell in row))
        self._console.print(tbl)
        self.blank()

    def panel(self, body: RenderableType, title: str | None = None) -> None:
        self._console.print(Panel(body, title=title, border_style=_ACCENT, padding=(0, 2)))

    # ------------------------------------------------------------------ #
    #  Long-running work
    # ------------------------------------------------------------------ #

    def progress_task(self, description: str) -> tuple[Progress, TaskID]:
        """Start a progress bar over a ``[0, 1]`` fraction.

        The caller owns the bar and must call ``progress.stop()``.
        """
        bar = Progress(
            SpinnerColumn("dots", style=_ACCENT),
            TextColumn("[harald.info]{task.description}"),
            BarColumn(bar_width=40, style=_ACCENT, complete_style="bright_green"),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            console=self._console,
        )
        task_id = bar.add_task(description, total=1.0)
        bar.start()
        return bar, task_id

    @contextmanager
    def status(self, message: str) -> Iterator[Any]:
        with self._console.status(
            f"[harald.info]{message}[/harald.info]", spinner="dots", spinner_style=_ACCENT
        ) as spinner:
            yield spinner
