"""Cache commands -- inspect and clear the local response cache.

Provides the ``hawkcli cache`` sub-command group. The cache lives in the
hawkcli cache directory (see :func:`~hawkcli.config.get_cache_dir`) and
holds serialized API responses that listing commands reuse until their
TTL expires.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

import typer

from hawkcli.output import OutputFormat, error, format_response, get_output, print_data, print_table


cache_app = typer.Typer(no_args_is_help=True)


def format_size(size: int) -> str:
    """Render a byte count as ``B``, ``KB``, ``MB`` or ``GB`` (base 1024)."""
    if size < 1024:
        return f"{size} B"
    value = size / 1024
    for unit in ("KB", "MB"):
        if value < 1024:
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"


def _format_timestamp(timestamp: Optional[int]) -> str:
    if timestamp is None:
        return "-"
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M:%S")


def _open_store():
    """Open the cache store or exit with the cache error's exit code."""
    from hawkcli.cache.store import CacheStore
    from hawkcli.config import get_cache_dir
    from hawkcli.exceptions import CacheError

    try:
        return CacheStore.open(get_cache_dir())
    except CacheError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None


@cache_app.command("status")
def cache_status() -> None:
    """Show cache statistics.

    Reports valid and expired entry counts, the total payload size and the
    age range of valid entries.

    Example::

        hawkcli cache status
        hawkcli --json cache status
    """
    with _open_store() as store:
        stats = store.stats()
        path = str(store.directory)

    if get_output().format == OutputFormat.JSON:
        format_response(
            {
                "total_entries": stats.total_entries,
                "valid_entries": stats.valid_entries,
                "expired_entries": stats.expired_entries,
                "total_size_bytes": stats.total_size_bytes,
                "total_size_human": format_size(stats.total_size_bytes),
                "oldest_entry_timestamp": stats.oldest_entry,
                "newest_entry_timestamp": stats.newest_entry,
                "path": path,
            }
        )
        return

    rows = [
        ["Valid entries", str(stats.valid_entries)],
        ["Expired entries", str(stats.expired_entries)],
        ["Total entries", str(stats.total_entries)],
        ["Total size", format_size(stats.total_size_bytes)],
        ["Oldest entry", _format_timestamp(stats.oldest_entry)],
        ["Newest entry", _format_timestamp(stats.newest_entry)],
        ["Path", path],
    ]
    print_table(["Property", "Value"], rows, title="Response cache")


@cache_app.command("clear")
def cache_clear() -> None:
    """Remove every cached response.

    Example::

        hawkcli cache clear
    """
    with _open_store() as store:
        removed = store.clear_all().entries_removed

    if get_output().format == OutputFormat.JSON:
        format_response({"entries_removed": removed, "success": True})
    elif removed:
        print_data(f"Cleared {removed} cache entries")
    else:
        print_data("Cache was already empty")


@cache_app.command("path")
def cache_path() -> None:
    """Print the cache directory."""
    from hawkcli.config import get_cache_dir

    print_data(str(get_cache_dir()))
