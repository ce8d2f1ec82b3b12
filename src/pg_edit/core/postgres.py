"""Table page loading.

Framework-agnostic business logic for fetching one page of a table with the
view's sort, per-column filters and free-text search applied, and for
normalizing the fetched values into the shapes the editor works with.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from pg_edit.core.models import PageData
from pg_edit.core.pgarray import parse_array_literal
from pg_edit.core.sqlgen import qualified_name, quote_ident

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from pg_edit.core.client import PgClient
    from pg_edit.core.models import ColumnDescriptor, RowRecord, ViewState


def _ident(name: str) -> str:
    # identifiers go into pyformat SQL, where a bare % starts a placeholder
    return quote_ident(name).replace("%", "%%")


def build_where_clause(
    columns: Sequence[ColumnDescriptor],
    filters: Mapping[str, str],
    search_term: str,
) -> tuple[str, dict[str, Any]]:
    """WHERE clause for column filters (ANDed) and search (ORed over columns).

    Matching is a case-insensitive substring match on each value's text form.
    Filters on unknown columns and blank filters are ignored.
    """
    valid = {c.name for c in columns}
    clauses: list[str] = []
    params: dict[str, Any] = {}

    for i, (name, raw) in enumerate(filters.items()):
        value = raw.strip() if isinstance(raw, str) else ""
        if name not in valid or not value:
            continue
        key = f"filter_{i}"
        clauses.append(f"CAST({_ident(name)} AS TEXT) ILIKE %({key})s")
        params[key] = f"%{value}%"

    term = search_term.strip()
    if term and columns:
        ored = " OR ".join(
            f"CAST({_ident(c.name)} AS TEXT) ILIKE %(search)s" for c in columns
        )
        clauses.append(f"({ored})")
        params["search"] = f"%{term}%"

    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    return where, params


def normalize_value(column: ColumnDescriptor, raw: Any) -> Any:
    """Turn textual JSON and array values into Python structures."""
    if isinstance(raw, str):
        if column.declared_type in ("json", "jsonb"):
            try:
                return json.loads(raw)
            except ValueError:
                return raw
        if column.is_array:
            try:
                parsed = json.loads(raw)
            except ValueError:
                parsed = None
            if isinstance(parsed, list):
                return parsed
            return parse_array_literal(raw, column.declared_type)
    return raw


def normalize_row(columns: Sequence[ColumnDescriptor], row: Mapping[str, Any]) -> RowRecord:
    return {c.name: normalize_value(c, row.get(c.name)) for c in columns}


def fetch_page(
    client: PgClient,
    schema: str,
    table: str,
    columns: Sequence[ColumnDescriptor],
    view: ViewState,
    page_size: int,
) -> PageData:
    """Fetch the view's current page and the total matching row count.

    A sort on a column that no longer exists is dropped from the view.
    """
    target = qualified_name(schema, table).replace("%", "%%")
    where, params = build_where_clause(columns, view.filters, view.search_term)

    if view.sort is not None and view.sort.column not in {c.name for c in columns}:
        view.sort = None
    order = ""
    if view.sort is not None:
        direction = "DESC" if view.sort.direction == "desc" else "ASC"
        order = f"ORDER BY {_ident(view.sort.column)} {direction}"

    clauses = " ".join(part for part in (where, order) if part)
    data_sql = f"SELECT * FROM {target} {clauses} LIMIT %(limit)s OFFSET %(offset)s"
    data_params = {**params, "limit": page_size, "offset": view.page * page_size}
    result = client.execute_query(data_sql, data_params)

    names = [c.name for c in result.columns]
    rows = [normalize_row(columns, dict(zip(names, row, strict=True))) for row in result.rows]

    count_sql = f"SELECT COUNT(*)::int AS total FROM {target} {where}"
    count_result = client.execute_query(count_sql, params)
    total = count_result.rows[0][0] if count_result.rows else len(rows)

    return PageData(rows=rows, total_rows=total)
