"""Tests for pydantic models."""

import pytest
from pydantic import TypeAdapter, ValidationError

from pg_edit.core.models import (
    ChangeDescriptor,
    ColumnDescriptor,
    ColumnMeta,
    DeleteChange,
    DraftSnapshot,
    EditDocument,
    InsertChange,
    QueryResult,
    TableMetadata,
    UpdateChange,
)


@pytest.mark.unit
def test_query_result_with_rows():
    columns = [
        ColumnMeta(name="id", type_oid=23, type_name="int4"),
        ColumnMeta(name="name", type_oid=25, type_name="text"),
    ]
    result = QueryResult(
        columns=columns, rows=[(1, "alice"), (2, "bob")], row_count=2, status_message="SELECT 2"
    )
    assert result.rows[0] == (1, "alice")
    assert result.columns[1].name == "name"


@pytest.mark.unit
class TestColumnDescriptor:
    def test_is_array(self):
        assert ColumnDescriptor(name="tags", declared_type="text[]").is_array
        assert not ColumnDescriptor(name="tag", declared_type="text").is_array

    def test_frozen(self):
        col = ColumnDescriptor(name="id", declared_type="integer")
        with pytest.raises(ValidationError):
            col.name = "other"


@pytest.mark.unit
class TestTableMetadata:
    def test_lookup(self):
        metadata = TableMetadata(
            columns=(
                ColumnDescriptor(name="id", declared_type="integer", nullable=False),
                ColumnDescriptor(name="name", declared_type="text"),
            ),
            primary_key=("id",),
        )
        assert metadata.column_names == ["id", "name"]
        assert metadata.column("name").declared_type == "text"
        assert metadata.column("missing") is None


@pytest.mark.unit
class TestChangeDescriptor:
    def test_parse_by_type(self):
        adapter = TypeAdapter(list[ChangeDescriptor])
        changes = adapter.validate_python(
            [
                {"type": "insert", "data": {"name": "a"}},
                {"type": "update", "data": {"name": "b"}, "where": {"id": 1}},
                {"type": "delete", "where": {"id": 2}},
            ]
        )
        assert isinstance(changes[0], InsertChange)
        assert isinstance(changes[1], UpdateChange)
        assert isinstance(changes[2], DeleteChange)

    def test_unknown_type_rejected(self):
        adapter = TypeAdapter(ChangeDescriptor)
        with pytest.raises(ValidationError):
            adapter.validate_python({"type": "upsert", "data": {}})


@pytest.mark.unit
class TestEditDocument:
    def test_camel_case_aliases(self):
        doc = EditDocument.model_validate(
            {
                "primaryKey": ["id"],
                "rows": [{"original": {"id": 1}, "current": {"id": 1}, "isNew": False}],
            }
        )
        assert doc.primary_key == ["id"]
        assert doc.rows[0].is_new is False

    def test_snake_case_accepted(self):
        doc = EditDocument.model_validate({"rows": [{"current": {"a": 1}, "is_new": True}]})
        assert doc.rows[0].is_new is True
        assert doc.primary_key is None


@pytest.mark.unit
def test_empty_draft_snapshot():
    assert DraftSnapshot().is_empty
