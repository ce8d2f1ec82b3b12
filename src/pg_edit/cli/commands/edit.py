"""Table editing commands: columns, preview, apply."""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

import typer

from pg_edit.cli.commands._shared import (
    get_client,
    get_config,
    output_result,
    parse_table_arg,
    split_columns,
)
from pg_edit.core.commands import ValidationFailedResponse
from pg_edit.core.edit_source import document_columns, load_edit_document
from pg_edit.core.exceptions import ExecutionError, InputError, ValidationFailed
from pg_edit.core.models import ColumnMeta, QueryResult
from pg_edit.core.session import EditSession
from pg_edit.core.sqlgen import render_preview, synthesize_batch
from pg_edit.core.tracker import RowEditTracker

if TYPE_CHECKING:
    from pg_edit.core.models import ExecutionResult, TableMetadata, ValidationError

_TYPES = {"text": 25, "bool": 16, "int4": 23}


def _meta(name: str, type_name: str = "text") -> ColumnMeta:
    return ColumnMeta(name=name, type_oid=_TYPES[type_name], type_name=type_name)


def columns_result(metadata: TableMetadata) -> QueryResult:
    """Column descriptors of a table as a printable result."""
    columns = [
        _meta("column"),
        _meta("type"),
        _meta("nullable", "bool"),
        _meta("primary_key", "bool"),
        _meta("enum_labels"),
        _meta("references"),
        _meta("unique", "bool"),
        _meta("indexed", "bool"),
    ]
    rows = []
    for col in metadata.columns:
        fk = col.foreign_key
        rows.append(
            (
                col.name,
                col.declared_type,
                col.nullable,
                col.name in metadata.primary_key,
                ", ".join(col.enum_labels) if col.enum_labels else None,
                f"{fk.referenced_schema}.{fk.referenced_table}.{fk.referenced_column}"
                if fk
                else None,
                col.is_unique,
                col.is_indexed,
            )
        )
    return QueryResult(columns=columns, rows=rows, row_count=len(rows), status_message="")


def validation_result(errors: list[ValidationError]) -> QueryResult:
    columns = [
        _meta("change", "int4"),
        _meta("column"),
        _meta("kind"),
        _meta("element", "int4"),
        _meta("message"),
    ]
    rows = [
        (e.row_index, e.column_name, e.kind.value, e.element_index, e.message)
        for e in errors
    ]
    return QueryResult(columns=columns, rows=rows, row_count=len(rows), status_message="")


def _report_failure(result: ExecutionResult) -> None:
    where = f"change {result.failed_index}" if result.failed_index is not None else "commit"
    if result.atomic:
        typer.echo(f"Batch failed at {where}; all statements rolled back.", err=True)
    else:
        typer.echo(
            f"Batch stopped at {where}; {result.committed} statement(s) already committed.",
            err=True,
        )


def _metadata(session: EditSession) -> TableMetadata:
    metadata = session.metadata
    if not metadata.columns:
        raise InputError(f"Table not found: {session.schema}.{session.table}")
    return metadata


def columns_command(
    ctx: typer.Context,
    table: Annotated[str, typer.Argument(help="Table name (schema.table or table)")],
) -> None:
    """Show the columns of a table as the editor sees them."""
    config = get_config(ctx)
    schema, table_name = parse_table_arg(table, config.default_schema)
    with get_client(ctx, config) as client:
        metadata = _metadata(EditSession(client, schema, table_name))
    output_result(ctx, columns_result(metadata), title=f"{schema}.{table_name}")


def preview_command(
    ctx: typer.Context,
    table: Annotated[str, typer.Argument(help="Table name (schema.table or table)")],
    edits: Annotated[
        str | None,
        typer.Argument(help="Edits JSON file (reads stdin when omitted or '-')"),
    ] = None,
    pk: Annotated[
        str | None,
        typer.Option("--pk", help="Comma-separated primary key columns"),
    ] = None,
) -> None:
    """Print the SQL an edits document would run, without connecting."""
    schema, table_name = parse_table_arg(table, ctx.ensure_object(dict).get("schema"))
    document = load_edit_document(edits)

    primary_key = split_columns(pk)
    if primary_key is None:
        primary_key = document.primary_key or []
    columns = document_columns(document)
    columns.extend(c for c in primary_key if c not in columns)

    tracker = RowEditTracker(columns, primary_key)
    tracker.load_edits(document.rows)
    statements = synthesize_batch(schema, table_name, tracker.compute_changes())
    typer.echo(render_preview(statements))


def apply_command(
    ctx: typer.Context,
    table: Annotated[str, typer.Argument(help="Table name (schema.table or table)")],
    edits: Annotated[
        str | None,
        typer.Argument(help="Edits JSON file (reads stdin when omitted or '-')"),
    ] = None,
    no_validate: Annotated[
        bool,
        typer.Option("--no-validate", help="Skip schema validation"),
    ] = False,
    immediate: Annotated[
        bool,
        typer.Option(
            "--immediate",
            help="Commit each statement on its own instead of one transaction",
        ),
    ] = False,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Validate and print the SQL without executing"),
    ] = False,
) -> None:
    """Validate an edits document against the live table and execute it."""
    config = get_config(ctx)
    settings = config.editor
    schema, table_name = parse_table_arg(table, config.default_schema)
    document = load_edit_document(edits)
    bypass = no_validate or settings.bypass_validation
    transactional = settings.transactional and not immediate

    with get_client(ctx, config) as client:
        session = EditSession(client, schema, table_name, settings=settings)
        metadata = _metadata(session)
        unknown = [c for c in document_columns(document) if metadata.column(c) is None]
        if unknown:
            raise InputError(
                f"Unknown column(s) in {schema}.{table_name}: {', '.join(unknown)}"
            )
        session.load_edits(document.rows)

        if dry_run:
            if not session.tracker.compute_changes():
                typer.echo("No pending changes to execute.")
                return
            errors = [] if bypass else session.validate()
            if errors:
                output_result(ctx, validation_result(errors), title="Validation errors")
                raise ValidationFailed(errors)
            typer.echo(session.preview().payload)
            return

        response = session.execute(bypass_validation=bypass, transactional=transactional)

    if isinstance(response, ValidationFailedResponse):
        output_result(ctx, validation_result(response.errors), title="Validation errors")
        raise ValidationFailed(response.errors)
    if response.message:
        typer.echo(response.message)
        return

    result = response.result
    if not result.success:
        if result.executed or result.failed_index is not None:
            _report_failure(result)
        raise ExecutionError(result.error or "Batch failed", change_index=result.failed_index)

    mode = "transaction" if result.atomic else "immediate"
    typer.echo(
        f"Applied {result.committed} statement(s) to {schema}.{table_name} ({mode})."
    )
