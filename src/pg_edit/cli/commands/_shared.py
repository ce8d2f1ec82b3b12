"""Shared CLI plumbing for command modules.

Configuration and client creation, table-name parsing and output helpers.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pg_edit.cli.output import get_formatter, write_output
from pg_edit.core.client import PgClient
from pg_edit.core.config import load_config, resolve_config
from pg_edit.core.exceptions import InputError

if TYPE_CHECKING:
    import typer

    from pg_edit.core.config import ResolvedConfig
    from pg_edit.core.models import QueryResult


def get_config(ctx: typer.Context) -> ResolvedConfig:
    obj = ctx.ensure_object(dict)
    config = load_config(obj.get("config_file"))

    cli_overrides: dict[str, Any] = {}
    for key in ("host", "port", "database", "user", "password", "schema", "timeout"):
        val = obj.get(key)
        if val is not None:
            cli_overrides[key] = val

    resolved = resolve_config(
        config,
        profile_name=obj.get("profile"),
        dsn=obj.get("dsn"),
        **cli_overrides,
    )
    if resolved.sources.get("default_format") == "config":
        obj["default_format"] = resolved.default_format
    return resolved


def get_client(ctx: typer.Context, config: ResolvedConfig | None = None) -> PgClient:
    return PgClient(config or get_config(ctx))


def format_options(ctx: typer.Context) -> dict[str, Any]:
    obj = ctx.ensure_object(dict)
    return {
        "format_flag": obj.get("format"),
        "default": obj.get("default_format"),
        "compact": obj.get("compact", False),
        "width": obj.get("width", 40),
        "no_header": obj.get("no_header", False),
    }


def output_result(ctx: typer.Context, result: QueryResult, title: str | None = None) -> None:
    formatter = get_formatter(**format_options(ctx), title=title)
    write_output(formatter, result)


def parse_table_arg(table_arg: str, default_schema: str | None = None) -> tuple[str, str]:
    """Split ``schema.table``; a bare name uses the default schema or public."""
    if "." in table_arg:
        schema, table = table_arg.split(".", 1)
    else:
        schema, table = default_schema or "public", table_arg
    if not schema or not table:
        raise InputError(f"Invalid table name: {table_arg!r}")
    return schema, table


def split_columns(value: str | None) -> list[str] | None:
    """Comma-separated column list from an option, None when not given."""
    if value is None:
        return None
    return [name.strip() for name in value.split(",") if name.strip()]
