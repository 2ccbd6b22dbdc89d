"""Terminal output for the ``loopauth`` commands.

Two streams, two jobs. Whatever a wrapper script wants to capture (the
access token from ``auth token``, the ``auth status`` record) goes to
stdout. Everything addressed to the person at the keyboard goes to stderr:
the authorization URL, login progress, warnings and errors. That way
``TOKEN=$(loopauth auth token)`` never picks up a stray prompt.

Rich styling is used only when stdout is a terminal and colour has not been
turned off with ``--no-color``, ``NO_COLOR`` or ``TERM=dumb``.

:func:`~loopauth.app.main_callback` builds one :class:`OutputManager` from
the global flags and installs it with :func:`set_output`. Commands and the
login core then call the module-level helpers (:func:`info`,
:func:`show_url`, ...) rather than threading the manager through.
"""

from __future__ import annotations

import json
import os
import sys
from enum import Enum
from typing import Any, Optional

from rich.console import Console
from rich.table import Table


class OutputFormat(str, Enum):
    """How ``auth status`` renders its record; ``AUTO`` picks rich or plain."""

    AUTO = "auto"
    JSON = "json"
    PLAIN = "plain"
    RICH = "rich"


class OutputManager:
    """Routes command output to stdout or stderr in the chosen format.

    Args:
        format: Record format. ``AUTO`` becomes ``RICH`` on an interactive
            terminal with colour enabled, ``PLAIN`` otherwise.
        no_color: Print diagnostics as bare text without Rich markup.
        quiet: Drop progress and hint messages. Warnings, errors and the
            authorization URL are still printed.
    """

    def __init__(
        self,
        format: OutputFormat = OutputFormat.AUTO,
        no_color: bool = False,
        quiet: bool = False,
    ) -> None:
        self._no_color = no_color or _should_disable_color()
        self._quiet = quiet

        if format == OutputFormat.AUTO:
            interactive = _is_tty() and not self._no_color
            format = OutputFormat.RICH if interactive else OutputFormat.PLAIN
        self._format = format

        self._stdout = Console(
            file=sys.stdout,
            no_color=self._no_color,
            force_terminal=(format == OutputFormat.RICH),
        )
        self._stderr = Console(file=sys.stderr, no_color=self._no_color, stderr=True)

    @property
    def format(self) -> OutputFormat:
        """The format after ``AUTO`` has been resolved."""
        return self._format

    # --- stdout ---

    def print_data(self, text: str) -> None:
        """Write *text* verbatim to stdout, e.g. a bare access token."""
        print(text, file=sys.stdout, flush=True)

    def print_record(self, record: dict[str, Any], title: Optional[str] = None) -> None:
        """Render a flat status record.

        JSON prints one object, plain prints ``key<TAB>value`` lines with
        ``None`` as an empty value, and rich draws a two-column table
        captioned with *title*.
        """
        if self._format == OutputFormat.JSON:
            self.print_data(json.dumps(record, indent=2, ensure_ascii=False, default=str))
            return
        if self._format == OutputFormat.PLAIN:
            for key, value in record.items():
                self.print_data(f"{key}\t{'' if value is None else value}")
            return

        table = Table(title=title, show_header=True, header_style="bold cyan")
        table.add_column("Field")
        table.add_column("Value")
        for key, value in record.items():
            table.add_row(key, "-" if value is None else str(value))
        self._stdout.print(table)

    # --- stderr ---

    def _emit(self, text: str, styled: str) -> None:
        if self._no_color:
            print(text, file=sys.stderr, flush=True)
        else:
            self._stderr.print(styled)

    def info(self, message: str) -> None:
        if not self._quiet:
            self._emit(message, message)

    def success(self, message: str) -> None:
        if not self._quiet:
            self._emit(message, f"[green]{message}[/green]")

    def warning(self, message: str) -> None:
        self._emit(f"Warning: {message}", f"[yellow]Warning:[/yellow] {message}")

    def error(self, message: str) -> None:
        self._emit(f"Error: {message}", f"[bold red]Error:[/bold red] {message}")

    def suggest(self, message: str) -> None:
        """Print a follow-up hint such as ``Run 'loopauth auth login'``."""
        if not self._quiet:
            self._emit(f"→ {message}", f"[dim]→ {message}[/dim]")

    def url(self, message: str, url: str) -> None:
        """Print *message* and then *url* indented on a line of its own.

        Ignores ``--quiet``: with no browser this URL is the only way to
        finish the login. The URL is printed without markup so brackets in
        the query string survive.
        """
        if self._no_color:
            print(f"{message}\n\n    {url}\n", file=sys.stderr, flush=True)
            return
        self._stderr.print(message)
        self._stderr.print(f"\n    {url}\n", markup=False, soft_wrap=True)


def _is_tty() -> bool:
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def _should_disable_color() -> bool:
    """``NO_COLOR`` (any value, see no-color.org) or ``TERM=dumb``."""
    return os.environ.get("NO_COLOR") is not None or os.environ.get("TERM") == "dumb"


# --- process-wide manager ---

_output: Optional[OutputManager] = None


def get_output() -> OutputManager:
    """The installed manager, or a default one on first use outside the CLI."""
    global _output
    if _output is None:
        _output = OutputManager()
    return _output


def set_output(output: OutputManager) -> None:
    global _output
    _output = output


def reset_output() -> None:
    """Forget the installed manager so the next call builds a fresh one.

    Tests call this because a manager keeps the ``sys.stdout`` it was built
    with, which ``CliRunner`` swaps out per invocation.
    """
    global _output
    _output = None


def info(message: str) -> None:
    get_output().info(message)


def success(message: str) -> None:
    get_output().success(message)


def warning(message: str) -> None:
    get_output().warning(message)


def error(message: str) -> None:
    get_output().error(message)


def suggest(message: str) -> None:
    get_output().suggest(message)


def show_url(message: str, url: str) -> None:
    """Show the authorization URL the operator must open to log in."""
    get_output().url(message, url)
