"""PostgreSQL client for pg-edit.

Wraps psycopg v3 synchronous connections with query execution, statement
execution inside or outside a transaction, statement timeout, and exception
mapping to the PgEditError hierarchy.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import psycopg
import psycopg.errors
import sentry_sdk
import structlog
from psycopg.types.json import Jsonb

from pg_edit.core.exceptions import ExecutionError, NetworkError, PgEditError, TimeoutError
from pg_edit.core.models import ColumnMeta, QueryResult
from pg_edit.core.sqlgen import to_driver_query

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

    from pg_edit.core.config import ResolvedConfig

# Mapping from psycopg type OIDs to human-readable names.
# Covers the most common PostgreSQL types; unknown OIDs fall back to "unknown".
_TYPE_NAMES: dict[int, str] = {
    16: "bool",
    20: "int8",
    21: "int2",
    23: "int4",
    25: "text",
    26: "oid",
    114: "json",
    700: "float4",
    701: "float8",
    1042: "bpchar",
    1043: "varchar",
    1082: "date",
    1083: "time",
    1114: "timestamp",
    1184: "timestamptz",
    1700: "numeric",
    2950: "uuid",
    3802: "jsonb",
}


def adapt_value(value: Any) -> Any:
    """Wrap structured values so psycopg sends them as jsonb."""
    if isinstance(value, dict):
        return Jsonb(value)
    if isinstance(value, list) and any(isinstance(v, (dict, list)) for v in value):
        return Jsonb(value)
    return value


class PgTransaction:
    """Statement runner bound to an open transaction."""

    def __init__(self, client: PgClient, cursor: psycopg.Cursor[Any]) -> None:
        self._client = client
        self._cursor = cursor

    def execute_statement(self, statement: str, values: Sequence[Any]) -> int:
        return self._client._run_statement(self._cursor, statement, values)


class PgClient:
    """Synchronous PostgreSQL client using psycopg v3."""

    def __init__(self, config: ResolvedConfig) -> None:
        self.config = config
        self._connection: psycopg.Connection[Any] | None = None

    def __enter__(self) -> PgClient:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    @property
    def connection_id(self) -> str:
        """Stable name of the target database, used as a cache key."""
        return f"{self.config.user or ''}@{self.config.host}:{self.config.port}/{self.config.dbname}"

    def _connect(self) -> psycopg.Connection[Any]:
        if self._connection is not None and not self._connection.closed:
            return self._connection

        try:
            self._connection = psycopg.connect(
                host=self.config.host,
                port=self.config.port,
                dbname=self.config.dbname,
                user=self.config.user,
                password=self.config.password,
                sslmode=self.config.sslmode,
                connect_timeout=self.config.connect_timeout,
                application_name=self.config.application_name,
                autocommit=True,
            )
        except psycopg.OperationalError as e:
            msg = (
                f"Connection failed to {self.config.host}:{self.config.port} "
                f"database '{self.config.dbname}': {e}"
            )
            raise NetworkError(msg) from e

        return self._connection

    def _set_timeout(self, cur: psycopg.Cursor[Any]) -> None:
        timeout_ms = int(self.config.default_timeout * 1000)
        cur.execute(f"SET statement_timeout = {timeout_ms}")

    def execute_query(
        self, sql: str, params: dict[str, Any] | None = None
    ) -> QueryResult:
        """Execute SQL and return a QueryResult."""
        log = structlog.get_logger()
        conn = self._connect()

        sql_normalized = " ".join(sql.split())
        span_description = sql_normalized[:100]
        log.debug("executing query", sql=sql_normalized)
        with sentry_sdk.start_span(op="db.query", description=span_description) as span:
            start_time = time.monotonic()
            try:
                with conn.cursor() as cur:
                    self._set_timeout(cur)
                    cur.execute(sql, params)

                    columns: list[ColumnMeta] = []
                    rows: list[tuple[Any, ...]] = []

                    if cur.description:
                        for desc in cur.description:
                            columns.append(
                                ColumnMeta(
                                    name=desc.name,
                                    type_oid=desc.type_code,
                                    type_name=_TYPE_NAMES.get(
                                        desc.type_code, "unknown"
                                    ),
                                )
                            )
                        rows = cur.fetchall()

                    duration_ms = (time.monotonic() - start_time) * 1000
                    span.set_data("row_count", len(rows))
                    span.set_data("duration_ms", duration_ms)
                    log.debug(
                        "query complete",
                        duration_ms=f"{duration_ms:.1f}",
                        row_count=len(rows),
                    )

                    return QueryResult(
                        columns=columns,
                        rows=rows,
                        row_count=len(rows),
                        status_message=cur.statusmessage or "",
                    )

            except psycopg.errors.QueryCanceled as e:
                span.set_status("deadline_exceeded")
                log.error("query timeout", sql=sql_normalized)
                msg = f"Query timed out after {self.config.default_timeout}s: {e}"
                raise TimeoutError(msg) from e
            except psycopg.OperationalError as e:
                span.set_status("unavailable")
                log.error("database error", sql=sql_normalized, error=str(e))
                raise NetworkError(f"Database error: {e}") from e
            except psycopg.Error as e:
                span.set_status("invalid_argument")
                log.error("query error", sql=sql_normalized, error=str(e))
                raise PgEditError(f"SQL error: {e}") from e

    def _run_statement(
        self, cur: psycopg.Cursor[Any], statement: str, values: Sequence[Any]
    ) -> int:
        """Run one ``$n``-parameterized statement, returning affected rows.

        Driver failures become ExecutionError carrying ``str(exc)``
        unmodified; cancellation by statement_timeout becomes TimeoutError with
        the same text.
        """
        log = structlog.get_logger()
        query, params = to_driver_query(statement, values)
        log.debug("executing statement", sql=statement, params=len(params))
        with sentry_sdk.start_span(op="db.statement", description=statement[:100]) as span:
            try:
                cur.execute(query, [adapt_value(v) for v in params])
            except psycopg.errors.QueryCanceled as e:
                span.set_status("deadline_exceeded")
                log.error("statement timeout", sql=statement, error=str(e))
                raise TimeoutError(str(e)) from e
            except psycopg.Error as e:
                span.set_status("internal_error")
                log.error("statement failed", sql=statement, error=str(e))
                raise ExecutionError(str(e)) from e
            rowcount = cur.rowcount
            span.set_data("row_count", rowcount)
            return rowcount

    def execute_statement(self, statement: str, values: Sequence[Any]) -> int:
        """Run one statement in its own implicit transaction."""
        conn = self._connect()
        with conn.cursor() as cur:
            self._set_timeout(cur)
            return self._run_statement(cur, statement, values)

    @contextmanager
    def transaction(self) -> Iterator[PgTransaction]:
        """Open a transaction; commit on clean exit, roll back on error."""
        conn = self._connect()
        try:
            with conn.transaction(), conn.cursor() as cur:
                self._set_timeout(cur)
                yield PgTransaction(self, cur)
        except psycopg.Error as e:
            raise ExecutionError(str(e)) from e

    def close(self) -> None:
        """Close the database connection."""
        if self._connection is not None:
            self._connection.close()
            self._connection = None
