"""Configuration inspection commands."""

from __future__ import annotations

from typing import TYPE_CHECKING

import typer

from pg_edit.cli.commands._shared import get_config
from pg_edit.core.config import DEFAULT_CONFIG_PATH, load_config

if TYPE_CHECKING:
    from pathlib import Path

config_app = typer.Typer(help="Configuration management commands")


@config_app.callback(invoke_without_command=True)
def config_callback(ctx: typer.Context) -> None:
    if not ctx.invoked_subcommand:
        typer.echo(ctx.get_help())
        raise typer.Exit()


def _mask_password(value: str | None) -> str:
    return "not set" if value is None else "***"


@config_app.command("show")
def config_show(ctx: typer.Context) -> None:
    """Display resolved configuration with the source of each value."""
    resolved = get_config(ctx)
    sources = resolved.sources
    config_path: Path | None = ctx.obj.get("config_file")

    typer.echo("Connection Settings (resolved):")
    connection_fields = [
        ("host", "host", resolved.host),
        ("port", "port", str(resolved.port)),
        ("database", "dbname", resolved.dbname),
        ("user", "user", resolved.user or "not set"),
        ("password", "password", _mask_password(resolved.password)),
        ("sslmode", "sslmode", resolved.sslmode),
        ("schema", "default_schema", resolved.default_schema or "public"),
    ]
    for label, source_key, value in connection_fields:
        typer.echo(f"  {label}: {value} ({sources.get(source_key, 'default')})")

    typer.echo("")
    typer.echo("General:")
    typer.echo(
        f"  timeout: {resolved.default_timeout}s "
        f"({sources.get('default_timeout', 'default')})"
    )
    typer.echo(
        f"  format: {resolved.default_format} ({sources.get('default_format', 'default')})"
    )

    editor = resolved.editor
    editor_source = sources.get("editor", "default")
    typer.echo("")
    typer.echo(f"Editor ({editor_source}):")
    typer.echo(f"  page_size: {editor.page_size}")
    typer.echo(f"  bypass_validation: {str(editor.bypass_validation).lower()}")
    typer.echo(f"  transactional: {str(editor.transactional).lower()}")
    typer.echo(f"  allow_primary_key_edits: {str(editor.allow_primary_key_edits).lower()}")

    typer.echo("")
    typer.echo(f"Active Profile: {resolved.active_profile or 'none'}")
    typer.echo(f"Config File: {config_path or DEFAULT_CONFIG_PATH}")


@config_app.command("profiles")
def config_profiles(ctx: typer.Context) -> None:
    """List available connection profiles."""
    config_path: Path | None = ctx.obj.get("config_file")
    app_config = load_config(config_path)
    active_profile = ctx.obj.get("profile") or app_config.default_profile

    if not app_config.profiles:
        typer.echo("No profiles configured.")
        typer.echo(f"Add profiles to: {config_path or DEFAULT_CONFIG_PATH}")
        return

    typer.echo("Available Profiles:")
    typer.echo("")
    for name, profile in sorted(app_config.profiles.items()):
        is_active = name == active_profile
        marker = "* " if is_active else "  "
        typer.echo(f"{marker}{name}{' (active)' if is_active else ''}")
        typer.echo(f"      {profile.user or ''}@{profile.host}:{profile.port}/{profile.dbname}")
        if profile.default_schema:
            typer.echo(f"      schema: {profile.default_schema}")
        typer.echo("")
