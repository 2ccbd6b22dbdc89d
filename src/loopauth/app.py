"""Typer application and CLI entry point for loopauth.

This module wires together the top-level Typer application and registers the
built-in ``auth`` sub-command group.

The :func:`main` function is the console-script entry point declared in
``pyproject.toml``. Typed :class:`~loopauth.exceptions.LoopauthError`
failures exit with their own code; unhandled exceptions are written to a
crash log under the data directory instead of being shown as a traceback.

See Also:
    :mod:`loopauth.config`: Configuration resolution.
    :mod:`loopauth.output`: Output formatting initialised in :func:`main_callback`.
"""

from __future__ import annotations

import logging
import sys
import traceback
from datetime import datetime

import typer

from loopauth import __version__
from loopauth.commands.auth import auth_app
from loopauth.exit_codes import EXIT_CANCELLED, EXIT_GENERIC_FAILURE

app = typer.Typer(
    name="loopauth",
    help="Browser login for command-line tools.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)
app.add_typer(auth_app, name="auth", help="Authentication management.")


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"loopauth {__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    """Send ``loopauth`` log records to stderr; DEBUG with ``--verbose``."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    logging.getLogger("loopauth").setLevel(level)


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output format."),
    plain_output: bool = typer.Option(False, "--plain", help="Plain text output."),
    no_color: bool = typer.Option(False, "--no-color", help="Disable color output."),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress non-essential output."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug output."),
) -> None:
    """Root callback executed before every sub-command.

    Initialises the global :class:`~loopauth.output.OutputManager` and
    logging from CLI flags.
    """
    from loopauth.output import OutputFormat, OutputManager, set_output

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    set_output(OutputManager(format=fmt, no_color=no_color, quiet=quiet))
    _configure_logging(verbose)

    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


def _write_crash_log() -> str:
    """Write the current traceback to disk and return the log file path."""
    from loopauth.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


def main() -> None:
    """CLI entry point invoked by the ``loopauth`` console script.

    Unhandled :class:`~loopauth.exceptions.LoopauthError` instances cause a
    clean exit with the error's ``exit_code``. ``KeyboardInterrupt`` exits
    with 130. All other exceptions produce a crash log and a generic
    failure exit.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_CANCELLED)
    except Exception as exc:
        from loopauth.exceptions import LoopauthError
        from loopauth.output import error

        if isinstance(exc, LoopauthError):
            error(str(exc))
            sys.exit(exc.exit_code)
        log_path = _write_crash_log()
        error(f"Unexpected error. Debug log: {log_path}")
        sys.exit(EXIT_GENERIC_FAILURE)
