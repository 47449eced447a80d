"""Terminal output for hawkcli.

Data and diagnostics never share a stream: tables and JSON documents go to
stdout so they can be piped, while status lines, warnings, errors and the
``--verbose`` trace of the HTTP pipeline and response cache go to stderr.

Commands render through the process-wide :class:`OutputManager` installed
by :func:`~hawkcli.app.main_callback`. Library code that has no access to
the CLI context (rate limiter, cache store, facade) calls the module-level
:func:`debug`, :func:`warning` and :func:`error` helpers, which fall back
to a default manager when none has been installed.

Colour is off when ``--no-color`` is given, ``NO_COLOR`` is set to any
value, or ``TERM=dumb``.
"""

from __future__ import annotations

import json
import os
import sys
from enum import Enum
from typing import Any, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table


class OutputFormat(str, Enum):
    """How data written to stdout is rendered.

    ``AUTO`` becomes ``RICH`` on a colour-capable terminal and ``PLAIN``
    everywhere else.
    """

    AUTO = "auto"
    JSON = "json"
    PLAIN = "plain"
    RICH = "rich"


class OutputManager:
    """Routes data to stdout and diagnostics to stderr.

    Args:
        format: Rendering for data; ``AUTO`` is resolved at construction.
        no_color: Emit no ANSI styling at all.
        quiet: Drop ``info`` and ``success`` messages.
        verbose: Emit ``debug`` messages.
    """

    def __init__(
        self,
        format: OutputFormat = OutputFormat.AUTO,
        no_color: bool = False,
        quiet: bool = False,
        verbose: bool = False,
    ) -> None:
        self._no_color = no_color or _color_disabled_by_env()
        self._quiet = quiet
        self._verbose = verbose

        if format == OutputFormat.AUTO:
            rich_ok = _is_tty() and not self._no_color
            format = OutputFormat.RICH if rich_ok else OutputFormat.PLAIN
        self._format = format

        self._stdout = Console(
            file=sys.stdout,
            no_color=self._no_color,
            force_terminal=format == OutputFormat.RICH,
        )
        self._stderr = Console(file=sys.stderr, no_color=self._no_color, stderr=True)

    @property
    def format(self) -> OutputFormat:
        return self._format

    # ------------------------------------------------------------------ #
    # stdout
    # ------------------------------------------------------------------ #

    def print_data(self, text: str) -> None:
        """Write one line of raw text to stdout."""
        print(text, file=sys.stdout, flush=True)

    def format_response(self, data: Any) -> None:
        """Render a dict or list in the active format.

        JSON mode dumps the value. Plain mode writes ``key<TAB>value`` lines
        for a dict and one line per item for a list. Rich mode shows a dict
        as a two-column table.
        """
        if self._format == OutputFormat.JSON:
            self.print_data(json.dumps(data, indent=2, ensure_ascii=False, default=str))
            return

        if isinstance(data, dict):
            rows = [[str(key), _cell(value)] for key, value in data.items()]
            if self._format == OutputFormat.PLAIN:
                for row in rows:
                    self.print_data("\t".join(row))
            else:
                self.print_table(["Key", "Value"], rows)
        elif isinstance(data, list):
            for item in data:
                if isinstance(item, dict):
                    self.print_data("\t".join(_cell(v) for v in item.values()))
                else:
                    self.print_data(_cell(item))
        else:
            self.print_data(str(data))

    def print_table(
        self,
        headers: list[str],
        rows: list[list[str]],
        title: Optional[str] = None,
    ) -> None:
        """Write rows as a rich table, tab-separated text, or a JSON array.

        In JSON mode every row becomes an object keyed by *headers*. *title*
        is only shown by the rich renderer.
        """
        if self._format == OutputFormat.JSON:
            records = [dict(zip(headers, row)) for row in rows]
            self.print_data(json.dumps(records, indent=2, ensure_ascii=False))
            return

        if self._format == OutputFormat.PLAIN:
            for line in [headers, *rows]:
                self.print_data("\t".join(line))
            return

        table = Table(title=title, header_style="bold cyan")
        for header in headers:
            table.add_column(header)
        for row in rows:
            table.add_row(*(escape(cell) for cell in row))
        self._stdout.print(table)

    # ------------------------------------------------------------------ #
    # stderr
    # ------------------------------------------------------------------ #

    def info(self, message: str) -> None:
        if not self._quiet:
            self._diagnostic("", "", message)

    def success(self, message: str) -> None:
        if not self._quiet:
            self._diagnostic("", "green", message)

    def warning(self, message: str) -> None:
        """Shown even in quiet mode."""
        self._diagnostic("Warning: ", "yellow", message)

    def error(self, message: str) -> None:
        """Shown even in quiet mode."""
        self._diagnostic("Error: ", "bold red", message)

    def debug(self, message: str) -> None:
        """Trace line for ``--verbose``; the text is never parsed as markup."""
        if self._verbose:
            self._diagnostic("[debug] ", "dim", message, whole_line=True)

    def _diagnostic(
        self, prefix: str, style: str, message: str, whole_line: bool = False
    ) -> None:
        if self._no_color:
            print(f"{prefix}{message}", file=sys.stderr, flush=True)
            return
        # messages carry server text and paths; never parse them as markup
        text = escape(message)
        if not style:
            self._stderr.print(text)
        elif whole_line:
            self._stderr.print(f"[{style}]{escape(prefix)}{text}[/{style}]")
        elif prefix:
            self._stderr.print(f"[{style}]{prefix.rstrip()}[/{style}] {text}")
        else:
            self._stderr.print(f"[{style}]{text}[/{style}]")


def _cell(value: Any) -> str:
    return "-" if value is None else str(value)


def _is_tty() -> bool:
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def _color_disabled_by_env() -> bool:
    return os.environ.get("NO_COLOR") is not None or os.environ.get("TERM") == "dumb"


# ------------------------------------------------------------------ #
# Process-wide instance
# ------------------------------------------------------------------ #

_output: Optional[OutputManager] = None


def get_output() -> OutputManager:
    """Return the installed manager, creating an ``AUTO`` one on first use."""
    global _output
    if _output is None:
        _output = OutputManager()
    return _output


def set_output(output: OutputManager) -> None:
    global _output
    _output = output


def reset_output() -> None:
    """Forget the installed manager (used between tests)."""
    global _output
    _output = None


def format_response(data: Any) -> None:
    get_output().format_response(data)


def print_data(text: str) -> None:
    get_output().print_data(text)


def print_table(headers: list[str], rows: list[list[str]], title: Optional[str] = None) -> None:
    get_output().print_table(headers, rows, title)


def warning(message: str) -> None:
    get_output().warning(message)


def error(message: str) -> None:
    get_output().error(message)


def debug(message: str) -> None:
    get_output().debug(message)
