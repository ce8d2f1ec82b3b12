"""Data models for pg-edit.

Pydantic models shared by the tracker, synthesizer, validator and executor,
plus the tabular result models returned by PgClient.execute_query().
"""

from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

RowRecord = dict[str, Any]


class ColumnMeta(BaseModel):
    """Metadata for a single result column."""

    name: str
    type_oid: int
    type_name: str


class QueryResult(BaseModel):
    """Result of a SQL query execution."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    columns: list[ColumnMeta]
    rows: list[tuple[Any, ...]]
    row_count: int
    status_message: str


# ---------------------------------------------------------------------------
# Schema metadata
# ---------------------------------------------------------------------------


class ForeignKeyRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    referenced_schema: str
    referenced_table: str
    referenced_column: str


class ColumnDescriptor(BaseModel):
    """One table column as seen by the editor. Immutable once loaded."""

    model_config = ConfigDict(frozen=True)

    name: str
    declared_type: str
    nullable: bool = True
    enum_labels: tuple[str, ...] | None = None
    foreign_key: ForeignKeyRef | None = None
    type_oid: int = 0
    element_oid: int = 0
    is_unique: bool = False
    is_indexed: bool = False

    @property
    def is_array(self) -> bool:
        return self.declared_type.endswith("[]")


class TableMetadata(BaseModel):
    """Cached column descriptors and primary key of one table."""

    model_config = ConfigDict(frozen=True)

    columns: tuple[ColumnDescriptor, ...]
    primary_key: tuple[str, ...] = ()

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]

    def column(self, name: str) -> ColumnDescriptor | None:
        for col in self.columns:
            if col.name == name:
                return col
        return None


class SortDescriptor(BaseModel):
    column: str
    direction: Literal["asc", "desc"] = "asc"


class ViewState(BaseModel):
    """Paging, sorting and filtering applied to the loaded page."""

    page: int = Field(default=0, ge=0)
    sort: SortDescriptor | None = None
    filters: dict[str, str] = {}
    search_term: str = ""


class PageData(BaseModel):
    rows: list[RowRecord]
    total_rows: int


# ---------------------------------------------------------------------------
# Row state and changes
# ---------------------------------------------------------------------------


class RowState(BaseModel):
    """Working copy of one table row plus its last-known server snapshot."""

    id: int
    original: RowRecord
    current: RowRecord
    is_new: bool = False
    deleted: bool = False
    selected: bool = False


class RowEdit(BaseModel):
    """Minimal inbound row shape accepted from a UI collaborator."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    original: RowRecord = {}
    current: RowRecord = {}
    is_new: bool = False
    deleted: bool = False


class EditDocument(BaseModel):
    """A serialized set of row edits, as written by a grid front end."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    primary_key: list[str] | None = None
    rows: list[RowEdit] = []


class InsertChange(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["insert"] = "insert"
    data: RowRecord


class UpdateChange(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["update"] = "update"
    data: RowRecord
    where: RowRecord


class DeleteChange(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["delete"] = "delete"
    where: RowRecord


ChangeDescriptor = Annotated[
    InsertChange | UpdateChange | DeleteChange, Field(discriminator="type")
]


class DraftUpdate(BaseModel):
    current: RowRecord
    deleted: bool = False


class DraftSnapshot(BaseModel):
    """Unpersisted edits captured before a reload.

    ``updates`` is keyed by the identity key of the row's original values.
    """

    updates: dict[str, DraftUpdate] = {}
    inserts: list[RowState] = []

    @property
    def is_empty(self) -> bool:
        return not self.updates and not self.inserts


# ---------------------------------------------------------------------------
# Validation and execution results
# ---------------------------------------------------------------------------


class ValidationKind(StrEnum):
    TYPE_MISMATCH = "type-mismatch"
    ENUM_INVALID = "enum-invalid"
    NULL_VIOLATION = "null-violation"
    FORMAT_INVALID = "format-invalid"


class ValidationError(BaseModel):
    """One value that does not fit its column.

    ``row_index`` is the position of the offending change in the batch.
    """

    row_index: int
    column_name: str
    kind: ValidationKind
    message: str
    element_index: int | None = None


class SynthesizedStatement(BaseModel):
    """A parameterized statement with ``$n`` placeholders."""

    statement: str
    values: list[Any]
    change_index: int = 0


class ExecutionResult(BaseModel):
    """Outcome of one batch execution.

    ``error`` is the database's own message, unmodified.
    ``atomic`` is False for immediate mode, where ``committed`` statements
    stay applied even though the batch failed.
    """

    success: bool
    atomic: bool
    executed: int = 0
    committed: int = 0
    failed_index: int | None = None
    error: str | None = None
