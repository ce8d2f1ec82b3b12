"""Schema metadata introspection and caching.

Reads column types, enum labels, primary key, unique/index membership and
foreign keys from the PostgreSQL catalogs, and keeps the result per
(connection, schema, table) until the session ends or is refreshed.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import sentry_sdk

from pg_edit.core.logging import get_logger
from pg_edit.core.models import ColumnDescriptor, ForeignKeyRef, TableMetadata

if TYPE_CHECKING:
    from pg_edit.core.client import PgClient

CacheKey = tuple[str, str, str]

_COLUMNS_SQL = """
SELECT
    a.attname AS column_name,
    pg_catalog.format_type(a.atttypid, a.atttypmod) AS data_type,
    NOT a.attnotnull AS is_nullable,
    t.oid::bigint AS typoid,
    t.typelem::bigint AS typelem
FROM pg_catalog.pg_attribute a
JOIN pg_catalog.pg_class c ON a.attrelid = c.oid
JOIN pg_catalog.pg_namespace n ON c.relnamespace = n.oid
JOIN pg_catalog.pg_type t ON a.atttypid = t.oid
WHERE n.nspname = %(schema)s
  AND c.relname = %(table)s
  AND a.attnum > 0
  AND NOT a.attisdropped
ORDER BY a.attnum
"""

_ENUM_SQL = """
SELECT e.enumtypid::bigint AS enumtypid, e.enumlabel
FROM pg_catalog.pg_enum e
WHERE e.enumtypid = ANY(%(oids)s::oid[])
ORDER BY e.enumtypid, e.enumsortorder
"""

_PRIMARY_KEY_SQL = """
SELECT a.attname
FROM pg_catalog.pg_index i
JOIN pg_catalog.pg_class c ON c.oid = i.indrelid
JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
JOIN LATERAL unnest(i.indkey) WITH ORDINALITY AS k(attnum, ord) ON true
JOIN pg_catalog.pg_attribute a ON a.attrelid = c.oid AND a.attnum = k.attnum
WHERE n.nspname = %(schema)s AND c.relname = %(table)s AND i.indisprimary
ORDER BY k.ord
"""

_UNIQUE_SQL = """
SELECT DISTINCT a.attname
FROM pg_catalog.pg_constraint con
JOIN pg_catalog.pg_class c ON c.oid = con.conrelid
JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
JOIN pg_catalog.pg_attribute a ON a.attrelid = c.oid AND a.attnum = ANY(con.conkey)
WHERE n.nspname = %(schema)s AND c.relname = %(table)s AND con.contype = 'u'
"""

_INDEXED_SQL = """
SELECT DISTINCT a.attname
FROM pg_catalog.pg_index i
JOIN pg_catalog.pg_class c ON c.oid = i.indrelid
JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
JOIN pg_catalog.pg_attribute a ON a.attrelid = c.oid AND a.attnum = ANY(i.indkey)
WHERE n.nspname = %(schema)s AND c.relname = %(table)s AND NOT i.indisprimary
"""

_FOREIGN_KEY_SQL = """
SELECT
    a.attname AS column_name,
    rn.nspname AS referenced_schema,
    rc.relname AS referenced_table,
    ra.attname AS referenced_column
FROM pg_catalog.pg_constraint con
JOIN pg_catalog.pg_class c ON c.oid = con.conrelid
JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
JOIN pg_catalog.pg_class rc ON rc.oid = con.confrelid
JOIN pg_catalog.pg_namespace rn ON rn.oid = rc.relnamespace
JOIN LATERAL unnest(con.conkey, con.confkey) AS k(attnum, refnum) ON true
JOIN pg_catalog.pg_attribute a ON a.attrelid = con.conrelid AND a.attnum = k.attnum
JOIN pg_catalog.pg_attribute ra ON ra.attrelid = con.confrelid AND ra.attnum = k.refnum
WHERE n.nspname = %(schema)s AND c.relname = %(table)s AND con.contype = 'f'
"""


def fetch_enum_labels(client: PgClient, oids: list[int]) -> dict[int, tuple[str, ...]]:
    """Enum labels in declaration order, grouped by enum type oid."""
    if not oids:
        return {}
    result = client.execute_query(_ENUM_SQL, {"oids": oids})
    labels: dict[int, list[str]] = {}
    for type_oid, label in result.rows:
        labels.setdefault(int(type_oid), []).append(str(label))
    return {oid: tuple(values) for oid, values in labels.items()}


def fetch_primary_key(client: PgClient, schema: str, table: str) -> tuple[str, ...]:
    result = client.execute_query(_PRIMARY_KEY_SQL, {"schema": schema, "table": table})
    return tuple(str(row[0]) for row in result.rows)


def fetch_table_metadata(client: PgClient, schema: str, table: str) -> TableMetadata:
    """Read every ColumnDescriptor of ``schema.table`` plus its primary key."""
    params = {"schema": schema, "table": table}
    col_result = client.execute_query(_COLUMNS_SQL, params)

    candidate_oids: list[int] = []
    for _, _, _, typoid, typelem in col_result.rows:
        for oid in (typoid, typelem):
            if oid and oid not in candidate_oids:
                candidate_oids.append(int(oid))
    enum_labels = fetch_enum_labels(client, candidate_oids)

    unique = {row[0] for row in client.execute_query(_UNIQUE_SQL, params).rows}
    indexed = {row[0] for row in client.execute_query(_INDEXED_SQL, params).rows}
    foreign_keys = {
        name: ForeignKeyRef(
            referenced_schema=ref_schema,
            referenced_table=ref_table,
            referenced_column=ref_column,
        )
        for name, ref_schema, ref_table, ref_column in client.execute_query(
            _FOREIGN_KEY_SQL, params
        ).rows
    }

    columns: list[ColumnDescriptor] = []
    for name, data_type, is_nullable, typoid, typelem in col_result.rows:
        typoid = int(typoid or 0)
        typelem = int(typelem or 0)
        labels = enum_labels.get(typoid) or enum_labels.get(typelem)
        columns.append(
            ColumnDescriptor(
                name=name,
                declared_type=data_type,
                nullable=bool(is_nullable),
                enum_labels=labels,
                foreign_key=foreign_keys.get(name),
                type_oid=typoid,
                element_oid=typelem,
                is_unique=name in unique,
                is_indexed=name in indexed,
            )
        )

    return TableMetadata(
        columns=tuple(columns),
        primary_key=fetch_primary_key(client, schema, table),
    )


class SchemaMetadataCache:
    """Table metadata keyed by (connection_id, schema, table).

    Concurrent fills of the same key are harmless: the fetch is idempotent
    and the last write wins.
    """

    def __init__(self) -> None:
        self._entries: dict[CacheKey, TableMetadata] = {}

    def __contains__(self, key: CacheKey) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: CacheKey) -> TableMetadata | None:
        return self._entries.get(key)

    def put(self, key: CacheKey, metadata: TableMetadata) -> None:
        self._entries[key] = metadata

    def get_or_fetch(
        self, client: PgClient, connection_id: str, schema: str, table: str
    ) -> TableMetadata:
        log = get_logger("metadata")
        key = (connection_id, schema, table)
        cached = self._entries.get(key)
        if cached is not None:
            return cached

        with sentry_sdk.start_span(op="db.metadata", description=f"{schema}.{table}"):
            metadata = fetch_table_metadata(client, schema, table)
        log.debug(
            "metadata cached",
            connection=connection_id,
            table=f"{schema}.{table}",
            columns=len(metadata.columns),
            primary_key=list(metadata.primary_key),
        )
        self._entries[key] = metadata
        return metadata

    def invalidate(self, connection_id: str, schema: str, table: str) -> None:
        self._entries.pop((connection_id, schema, table), None)

    def clear(self) -> None:
        self._entries.clear()
