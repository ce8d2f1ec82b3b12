"""Output format selection and TTY auto-detection."""

from __future__ import annotations

import sys
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pg_edit.core.models import QueryResult
    from pg_edit.formatters.base import Formatter


class OutputFormat(StrEnum):
    TABLE = "table"
    JSON = "json"
    CSV = "csv"


def detect_tty() -> bool:
    return sys.stdout.isatty()


def resolve_format(format_flag: str | None, default: str | None = None) -> str:
    """Determine the output format.

    Explicit --format wins, then the configured default; otherwise table for
    a TTY and csv for pipes.
    """
    if format_flag is not None:
        return format_flag
    if default is not None:
        return default
    return "table" if detect_tty() else "csv"


def get_formatter(
    format_flag: str | None = None,
    *,
    default: str | None = None,
    compact: bool = False,
    width: int = 40,
    no_header: bool = False,
    title: str | None = None,
) -> Formatter:
    """Build and return the appropriate formatter instance."""
    # Importing the package populates the registry.
    import pg_edit.formatters  # noqa: F401
    from pg_edit.formatters.base import registry

    fmt_name = resolve_format(format_flag, default)

    kwargs: dict[str, object] = {}
    if fmt_name == "table":
        kwargs["width"] = width
        kwargs["title"] = title
    elif fmt_name == "json":
        kwargs["compact"] = compact
    elif fmt_name == "csv":
        kwargs["no_header"] = no_header

    return registry.get(fmt_name, **kwargs)


def write_output(formatter: Formatter, result: QueryResult) -> None:
    """Write formatted output to stdout."""
    for line in formatter.format(result):
        sys.stdout.write(line + "\n")
