"""``hawkcli`` console script.

The root Typer app owns the global output flags and mounts the ``cache``
group. :func:`main` is the entry point named in ``pyproject.toml``; it turns
a :class:`~hawkcli.exceptions.HawkError` into that error's exit code and
leaves a traceback under ``<data dir>/logs/`` for anything else.
"""

from __future__ import annotations

import signal
import sys
import traceback
from datetime import datetime
from pathlib import Path
from typing import Any

import typer

from hawkcli import __version__
from hawkcli.commands.cache import cache_app
from hawkcli.exit_codes import EXIT_GENERIC_FAILURE
from hawkcli.output import OutputFormat, OutputManager, set_output

EXIT_INTERRUPTED = 130

app = typer.Typer(
    name="hawkcli",
    help="StackHawk from the terminal, with a local response cache.",
    no_args_is_help=True,
    add_completion=False,
)
app.add_typer(cache_app, name="cache", help="Inspect and clear the local response cache.")


def _print_version(value: bool) -> None:
    if value:
        typer.echo(f"hawkcli {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False, "--version", callback=_print_version, is_eager=True, help="Show version and exit."
    ),
    json_output: bool = typer.Option(False, "--json", help="Emit JSON on stdout."),
    plain_output: bool = typer.Option(False, "--plain", help="Emit tab-separated text on stdout."),
    no_color: bool = typer.Option(False, "--no-color", help="Disable colour."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only print warnings and errors."),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Trace requests, cache hits and throttling on stderr."
    ),
) -> None:
    """Install the output manager described by the global flags."""
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN
    else:
        fmt = OutputFormat.AUTO
    set_output(OutputManager(format=fmt, no_color=no_color, quiet=quiet, verbose=verbose))


def _setup_signal_handlers() -> None:
    """Exit quietly on Ctrl-C and when stdout is closed by a pager."""

    def _on_interrupt(signum: int, frame: Any) -> None:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_INTERRUPTED)

    signal.signal(signal.SIGINT, _on_interrupt)
    if hasattr(signal, "SIGPIPE"):
        signal.signal(signal.SIGPIPE, signal.SIG_DFL)


def _write_crash_log(exc: BaseException) -> Path:
    from hawkcli.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_path = logs_dir / f"crash-{datetime.now():%Y%m%d-%H%M%S}.log"
    log_path.write_text("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    return log_path


def main() -> None:
    """Run the CLI and translate uncaught errors into exit codes."""
    from hawkcli.exceptions import HawkError
    from hawkcli.output import error

    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_INTERRUPTED)
    except HawkError as exc:
        error(str(exc))
        sys.exit(exc.exit_code)
    except Exception as exc:
        log_path = _write_crash_log(exc)
        error(f"Unexpected error. Debug log: {log_path}")
        sys.exit(EXIT_GENERIC_FAILURE)
