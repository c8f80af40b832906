"""Typer application and CLI entry point for xurl.

The :func:`main` function is the console-script entry point declared in
``pyproject.toml``. It installs a SIGINT handler, mounts the ``auth``
sub-commands and runs the Typer app. :class:`~xurl.exceptions.XurlError`
exits with its ``exit_code``; any other exception is written to a crash
log under the data directory.

See Also:
    :mod:`xurl.output`: Output formatting initialised in :func:`main_callback`.
"""

from __future__ import annotations

import logging
import signal
import sys
import traceback
from datetime import datetime
from typing import Any

import typer

from xurl import __version__
from xurl.exit_codes import EXIT_GENERIC_FAILURE


app = typer.Typer(
    name="xurl",
    help="Authenticated requests to the X API: OAuth2, OAuth1 and app-only auth.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"xurl {__version__}")
        raise typer.Exit()


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
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress non-essential output."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug output."),
) -> None:
    """Root callback executed before every sub-command.

    Installs the global :class:`~xurl.output.OutputManager` and, with
    ``--verbose``, routes ``xurl`` library logging to stderr at DEBUG.
    """
    from xurl.output import OutputFormat, OutputManager, set_output

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    set_output(OutputManager(format=fmt, no_color=no_color, quiet=quiet, verbose=verbose))
    _configure_logging(verbose)

    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


def _configure_logging(verbose: bool) -> None:
    """Route the ``xurl`` logger to the current stderr."""
    logger = logging.getLogger("xurl")
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    for handler in [h for h in logger.handlers if getattr(h, "_xurl_cli", False)]:
        logger.removeHandler(handler)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    handler._xurl_cli = True  # type: ignore[attr-defined]
    logger.addHandler(handler)


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log(exc: Exception) -> str:
    """Write the current traceback under the data directory and return its path."""
    from xurl.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


def _register_commands() -> None:
    from xurl.commands.auth import auth_app

    app.add_typer(auth_app, name="auth", help="Authentication management.")


_register_commands()


def main() -> None:
    """CLI entry point invoked by the ``xurl`` console script.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)
    except Exception as exc:
        from xurl.exceptions import XurlError
        from xurl.output import error

        if isinstance(exc, XurlError):
            error(str(exc))
            sys.exit(exc.exit_code)
        log_path = _write_crash_log(exc)
        error(f"Unexpected error. Debug log: {log_path}")
        sys.exit(EXIT_GENERIC_FAILURE)
