"""Edit document loading.

Reads a serialized set of row edits from a file path or stdin. The document
is either an object ``{"primaryKey": [...], "rows": [...]}`` or a bare list
of rows, each in the ``{original, current, isNew, deleted}`` shape.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from pg_edit.core.exceptions import InputError
from pg_edit.core.models import EditDocument


def read_edit_source(path: str | None) -> str:
    """Raw document text from a file, or from stdin for ``-`` or no path."""
    if path is not None and path != "-":
        p = Path(path)
        if not p.exists():
            raise InputError(f"Edits file not found: {path}")
        return p.read_text()

    if not sys.stdin.isatty():
        return sys.stdin.read()

    raise InputError("No edits provided. Pass a file path or pipe a document to stdin.")


def parse_edit_document(text: str) -> EditDocument:
    try:
        data = json.loads(text)
    except ValueError as e:
        raise InputError(f"Edits document is not valid JSON: {e}") from e

    if isinstance(data, list):
        data = {"rows": data}
    try:
        return EditDocument.model_validate(data)
    except PydanticValidationError as e:
        raise InputError(f"Malformed edits document: {e}") from e


def load_edit_document(path: str | None) -> EditDocument:
    return parse_edit_document(read_edit_source(path))


def document_columns(document: EditDocument) -> list[str]:
    """Column names in order of first appearance across the document's rows."""
    seen: dict[str, None] = {}
    for row in document.rows:
        for record in (row.original, row.current):
            for name in record:
                seen.setdefault(name, None)
    return list(seen)
