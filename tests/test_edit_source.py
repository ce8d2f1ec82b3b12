"""Tests for edit document loading."""

import io

import pytest

from pg_edit.core.edit_source import (
    document_columns,
    load_edit_document,
    parse_edit_document,
    read_edit_source,
)
from pg_edit.core.exceptions import InputError


@pytest.mark.unit
class TestReadEditSource:
    def test_reads_file(self, temp_dir):
        path = temp_dir / "edits.json"
        path.write_text("[]")
        assert read_edit_source(str(path)) == "[]"

    def test_missing_file(self, temp_dir):
        with pytest.raises(InputError, match="Edits file not found"):
            read_edit_source(str(temp_dir / "missing.json"))

    def test_reads_piped_stdin(self, monkeypatch):
        monkeypatch.setattr("sys.stdin", io.StringIO('{"rows": []}'))
        assert read_edit_source("-") == '{"rows": []}'
        monkeypatch.setattr("sys.stdin", io.StringIO("[]"))
        assert read_edit_source(None) == "[]"

    def test_terminal_stdin_rejected(self, monkeypatch):
        class Tty(io.StringIO):
            def isatty(self):
                return True

        monkeypatch.setattr("sys.stdin", Tty())
        with pytest.raises(InputError, match="No edits provided"):
            read_edit_source(None)


@pytest.mark.unit
class TestParseEditDocument:
    def test_object_form_with_camel_case(self):
        document = parse_edit_document(
            '{"primaryKey": ["id"], "rows": [{"current": {"name": "a"}, "isNew": true}]}'
        )
        assert document.primary_key == ["id"]
        assert document.rows[0].is_new is True
        assert document.rows[0].original == {}

    def test_bare_list(self):
        document = parse_edit_document('[{"original": {"id": 1}, "deleted": true}]')
        assert document.primary_key is None
        assert document.rows[0].deleted is True

    def test_invalid_json(self):
        with pytest.raises(InputError, match="not valid JSON"):
            parse_edit_document("{rows: ")

    def test_wrong_shape(self):
        with pytest.raises(InputError, match="Malformed edits document"):
            parse_edit_document('{"rows": "everything"}')


@pytest.mark.unit
def test_document_columns_in_first_seen_order(temp_dir):
    path = temp_dir / "edits.json"
    path.write_text(
        '[{"original": {"id": 1, "name": "a"}, "current": {"qty": 2}},'
        ' {"current": {"name": "b", "tags": ["x"]}, "isNew": true}]'
    )
    assert document_columns(load_edit_document(str(path))) == ["id", "name", "qty", "tags"]
