"""SQL synthesis for row changes.

Turns change descriptors into parameterized INSERT/UPDATE/DELETE statements
with numbered ``$n`` placeholders and double-quoted identifiers, and renders
display-only previews with the values substituted in.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterator, Sequence
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any

from pg_edit.core.exceptions import SynthesisError
from pg_edit.core.logging import get_logger
from pg_edit.core.models import (
    ChangeDescriptor,
    DeleteChange,
    InsertChange,
    SynthesizedStatement,
    UpdateChange,
)

NO_CHANGES_PREVIEW = "/* No changes to preview */"

_PLACEHOLDER = re.compile(r"\$(\d+)(?!\d)")


def quote_ident(name: str) -> str:
    """Quote an identifier: ``my"col`` becomes ``"my""col"``."""
    return '"' + name.replace('"', '""') + '"'


def qualified_name(schema: str, table: str) -> str:
    return f"{quote_ident(schema)}.{quote_ident(table)}"


def _assignments(columns: Sequence[str], start: int) -> list[str]:
    return [f"{quote_ident(col)} = ${start + i}" for i, col in enumerate(columns)]


def synthesize(schema: str, table: str, change: ChangeDescriptor) -> SynthesizedStatement:
    """Build the statement and positional values for one change.

    Raises SynthesisError for an update without data, or an update or
    delete without a WHERE key.
    """
    target = qualified_name(schema, table)

    if isinstance(change, InsertChange):
        if not change.data:
            return SynthesizedStatement(
                statement=f"INSERT INTO {target} DEFAULT VALUES", values=[]
            )
        columns = list(change.data)
        column_list = ", ".join(quote_ident(c) for c in columns)
        placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
        return SynthesizedStatement(
            statement=f"INSERT INTO {target} ({column_list}) VALUES ({placeholders})",
            values=list(change.data.values()),
        )

    if isinstance(change, UpdateChange):
        if not change.data:
            raise SynthesisError(f"Update of {target} has no changed columns")
        if not change.where:
            raise SynthesisError(f"Update of {target} has no WHERE key")
        set_clause = ", ".join(_assignments(list(change.data), 1))
        where_clause = " AND ".join(_assignments(list(change.where), len(change.data) + 1))
        return SynthesizedStatement(
            statement=f"UPDATE {target} SET {set_clause} WHERE {where_clause}",
            values=[*change.data.values(), *change.where.values()],
        )

    if isinstance(change, DeleteChange):
        if not change.where:
            raise SynthesisError(f"Delete from {target} has no WHERE key")
        where_clause = " AND ".join(_assignments(list(change.where), 1))
        return SynthesizedStatement(
            statement=f"DELETE FROM {target} WHERE {where_clause}",
            values=list(change.where.values()),
        )

    raise SynthesisError(f"Unknown change type: {getattr(change, 'type', change)!r}")


def synthesize_batch(
    schema: str, table: str, changes: Sequence[ChangeDescriptor]
) -> list[SynthesizedStatement]:
    """Synthesize every change, skipping the ones that cannot be expressed."""
    log = get_logger("sqlgen")
    statements: list[SynthesizedStatement] = []
    for index, change in enumerate(changes):
        try:
            stmt = synthesize(schema, table, change)
        except SynthesisError as e:
            log.warning("skipping change", change_index=index, reason=e.message)
            continue
        statements.append(stmt.model_copy(update={"change_index": index}))
    return statements


# ---------------------------------------------------------------------------
# Placeholder scanning
# ---------------------------------------------------------------------------


def _segments(statement: str) -> Iterator[tuple[str, bool]]:
    """Split a statement into (text, is_quoted) runs.

    Quoted runs are identifiers ("...") and string literals ('...'), with
    doubled quotes as escapes; placeholders are only recognized outside them.
    """
    i = 0
    start = 0
    n = len(statement)
    while i < n:
        ch = statement[i]
        if ch in ("'", '"'):
            if i > start:
                yield statement[start:i], False
            j = i + 1
            while j < n:
                if statement[j] == ch:
                    if j + 1 < n and statement[j + 1] == ch:
                        j += 2
                        continue
                    break
                j += 1
            yield statement[i : j + 1], True
            i = start = j + 1
            continue
        i += 1
    if start < n:
        yield statement[start:], False


def _substitute(statement: str, replace: Any) -> str:
    parts: list[str] = []
    for text, quoted in _segments(statement):
        parts.append(text if quoted else _PLACEHOLDER.sub(replace, text))
    return "".join(parts)


# ---------------------------------------------------------------------------
# Previews
# ---------------------------------------------------------------------------


def _quote_literal(text: str) -> str:
    return "'" + text.replace("'", "''") + "'"


def render_literal(value: Any) -> str:
    """Render a value as a SQL literal for display."""
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, str):
        return _quote_literal(value)
    if isinstance(value, (dict, list, tuple)):
        return _quote_literal(json.dumps(value, default=str))
    if isinstance(value, (datetime, date, time)):
        return _quote_literal(value.isoformat())
    return _quote_literal(str(value))


def preview_with_values(statement: str, values: Sequence[Any]) -> str:
    """Substitute each ``$n`` with its rendered value. Display only."""

    def replace(match: re.Match[str]) -> str:
        index = int(match.group(1)) - 1
        if 0 <= index < len(values):
            return render_literal(values[index])
        return match.group(0)

    return _substitute(statement, replace)


_INSERT_LAYOUT = re.compile(
    r"^INSERT INTO (\S+) \((.+)\) VALUES \((.+)\)$", re.IGNORECASE | re.DOTALL
)
_UPDATE_LAYOUT = re.compile(r"^UPDATE (\S+) SET (.+) WHERE (.+)$", re.IGNORECASE | re.DOTALL)
_DELETE_LAYOUT = re.compile(r"^DELETE FROM (\S+) WHERE (.+)$", re.IGNORECASE | re.DOTALL)


def format_for_display(statement: str) -> str:
    """Lay a synthesized statement out over several lines.

    Only statements whose identifiers contain no spaces or commas are
    reflowed; anything else is returned untouched.
    """
    if any(quoted and (" " in text or "," in text) for text, quoted in _segments(statement)):
        return statement
    if m := _INSERT_LAYOUT.match(statement):
        table, cols, vals = m.groups()
        return f"INSERT INTO {table}\n  ({cols})\nVALUES\n  ({vals})"
    if m := _UPDATE_LAYOUT.match(statement):
        table, sets, wheres = m.groups()
        set_lines = ",\n  ".join(s.strip() for s in sets.split(", "))
        where_lines = "\n  AND ".join(w.strip() for w in wheres.split(" AND "))
        return f"UPDATE {table}\nSET\n  {set_lines}\nWHERE\n  {where_lines}"
    if m := _DELETE_LAYOUT.match(statement):
        table, wheres = m.groups()
        where_lines = "\n  AND ".join(w.strip() for w in wheres.split(" AND "))
        return f"DELETE FROM {table}\nWHERE\n  {where_lines}"
    return statement


def render_preview(statements: Sequence[SynthesizedStatement]) -> str:
    if not statements:
        return NO_CHANGES_PREVIEW
    return ";\n\n".join(
        preview_with_values(format_for_display(s.statement), s.values) for s in statements
    )


# ---------------------------------------------------------------------------
# Driver translation
# ---------------------------------------------------------------------------


def to_driver_query(statement: str, values: Sequence[Any]) -> tuple[str, list[Any]]:
    """Translate ``$n`` placeholders into psycopg's positional ``%s`` form.

    Literal ``%`` characters are doubled, and the values are reordered to
    follow the order in which placeholders appear.
    """
    ordered: list[Any] = []

    def replace(match: re.Match[str]) -> str:
        index = int(match.group(1)) - 1
        if not 0 <= index < len(values):
            raise SynthesisError(
                f"Placeholder {match.group(0)} has no value ({len(values)} given)"
            )
        ordered.append(values[index])
        return "%s"

    parts: list[str] = []
    for text, quoted in _segments(statement):
        escaped = text.replace("%", "%%")
        parts.append(escaped if quoted else _PLACEHOLDER.sub(replace, escaped))
    return "".join(parts), ordered
