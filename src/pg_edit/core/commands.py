"""Typed commands accepted by an editing session, and its responses.

Each command is a pydantic model tagged by its ``command`` name; untyped
payloads coming from a front end are turned into commands by
``parse_command``.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from pg_edit.core.exceptions import InputError
from pg_edit.core.models import (
    ColumnDescriptor,
    ExecutionResult,
    RowState,
    SortDescriptor,
    ValidationError,
    ViewState,
)


class LoadPageCommand(BaseModel):
    command: Literal["load_page"] = "load_page"
    page: int = Field(default=0, ge=0)


class RefreshCommand(BaseModel):
    command: Literal["refresh"] = "refresh"


class RefreshSchemaCommand(BaseModel):
    command: Literal["refresh_schema"] = "refresh_schema"


class ApplySortCommand(BaseModel):
    command: Literal["apply_sort"] = "apply_sort"
    sort: SortDescriptor | None = None


class ApplyFiltersCommand(BaseModel):
    command: Literal["apply_filters"] = "apply_filters"
    filters: dict[str, str] = {}


class SearchCommand(BaseModel):
    command: Literal["search"] = "search"
    term: str = ""


class AddRowCommand(BaseModel):
    command: Literal["add_row"] = "add_row"


class EditCellCommand(BaseModel):
    command: Literal["edit_cell"] = "edit_cell"
    row_id: int
    column: str
    value: Any = None


class DeleteRowsCommand(BaseModel):
    command: Literal["delete_rows"] = "delete_rows"
    row_ids: list[int]


class RestoreRowCommand(BaseModel):
    command: Literal["restore_row"] = "restore_row"
    row_id: int


class DiscardChangesCommand(BaseModel):
    command: Literal["discard_changes"] = "discard_changes"


class PreviewChangesCommand(BaseModel):
    command: Literal["preview_changes"] = "preview_changes"


class ExecuteChangesCommand(BaseModel):
    """Validate and run pending changes.

    Unset options fall back to the session's editor settings.
    """

    command: Literal["execute_changes"] = "execute_changes"
    bypass_validation: bool | None = None
    transactional: bool | None = None


Command = Annotated[
    LoadPageCommand
    | RefreshCommand
    | RefreshSchemaCommand
    | ApplySortCommand
    | ApplyFiltersCommand
    | SearchCommand
    | AddRowCommand
    | EditCellCommand
    | DeleteRowsCommand
    | RestoreRowCommand
    | DiscardChangesCommand
    | PreviewChangesCommand
    | ExecuteChangesCommand,
    Field(discriminator="command"),
]

_command_adapter: TypeAdapter[Command] = TypeAdapter(Command)


def parse_command(payload: Any) -> Command:
    """Validate an untyped message into a Command.

    Raises InputError for unknown command names or malformed payloads.
    """
    try:
        return _command_adapter.validate_python(payload)
    except PydanticValidationError as e:
        raise InputError(f"Invalid command: {e}") from e


class TableStateResponse(BaseModel):
    response: Literal["table_state"] = "table_state"
    schema_name: str
    table_name: str
    columns: list[ColumnDescriptor]
    primary_key: list[str]
    rows: list[RowState]
    view: ViewState
    total_rows: int
    page_size: int
    has_pending_changes: bool = False


class SqlPreviewResponse(BaseModel):
    response: Literal["sql_preview"] = "sql_preview"
    payload: str


class ValidationFailedResponse(BaseModel):
    response: Literal["validation_failed"] = "validation_failed"
    errors: list[ValidationError]


class ExecutionCompleteResponse(BaseModel):
    response: Literal["execution_complete"] = "execution_complete"
    result: ExecutionResult
    message: str | None = None
    state: TableStateResponse | None = None


Response = (
    TableStateResponse
    | SqlPreviewResponse
    | ValidationFailedResponse
    | ExecutionCompleteResponse
)
