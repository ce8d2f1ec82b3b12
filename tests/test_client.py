"""Tests for PgClient.

Unit tests drive the client with mocked connections; integration tests run
against a real PostgreSQL using the test profile.
"""

from unittest.mock import MagicMock, patch

import psycopg
import psycopg.errors
import pytest
from psycopg.types.json import Jsonb

from pg_edit.core.client import PgClient, adapt_value
from pg_edit.core.config import ResolvedConfig, load_config, resolve_config
from pg_edit.core.exceptions import ExecutionError, NetworkError, PgEditError, TimeoutError
from pg_edit.core.executor import BatchExecutor
from pg_edit.core.exit_codes import ExitCode
from pg_edit.core.models import QueryResult, SynthesizedStatement
from tests.integration_config import TEST_PROFILE


def _mock_client(cursor=None):
    client = PgClient(ResolvedConfig(user="me", dbname="shop"))
    conn = MagicMock()
    cursor = cursor or MagicMock()
    conn.cursor.return_value.__enter__.return_value = cursor
    client._connect = MagicMock(return_value=conn)
    return client, conn, cursor


@pytest.mark.unit
class TestAdaptValue:
    def test_dict_becomes_jsonb(self):
        assert isinstance(adapt_value({"a": 1}), Jsonb)

    def test_list_of_scalars_kept_for_arrays(self):
        assert adapt_value([1, 2]) == [1, 2]

    def test_list_of_objects_becomes_jsonb(self):
        assert isinstance(adapt_value([{"a": 1}]), Jsonb)

    def test_scalars_untouched(self):
        assert adapt_value("x") == "x"
        assert adapt_value(None) is None


@pytest.mark.unit
class TestConnectionId:
    def test_names_target_database(self):
        client = PgClient(ResolvedConfig(user="me", host="db", port=6543, dbname="shop"))
        assert client.connection_id == "me@db:6543/shop"


@pytest.mark.unit
class TestExecuteStatement:
    def test_translates_placeholders(self):
        client, _, cursor = _mock_client()
        cursor.rowcount = 1
        affected = client.execute_statement('UPDATE "t" SET "a" = $1 WHERE "id" = $2', ["x", 4])
        assert affected == 1
        sql, params = cursor.execute.call_args.args
        assert sql == 'UPDATE "t" SET "a" = %s WHERE "id" = %s'
        assert params == ["x", 4]

    def test_statement_timeout_set_first(self):
        client, _, cursor = _mock_client()
        client.execute_statement('DELETE FROM "t" WHERE "id" = $1', [1])
        assert cursor.execute.call_args_list[0].args[0] == "SET statement_timeout = 30000"

    def test_driver_error_keeps_native_message(self):
        cursor = MagicMock()
        native = 'duplicate key value violates unique constraint "t_pkey"'
        cursor.execute.side_effect = [None, psycopg.errors.UniqueViolation(native)]
        client, _, _ = _mock_client(cursor)
        with pytest.raises(ExecutionError) as exc_info:
            client.execute_statement('INSERT INTO "t" ("id") VALUES ($1)', [1])
        assert exc_info.value.message == native

    def test_cancel_maps_to_timeout_keeping_native_text(self):
        cursor = MagicMock()
        native = "canceling statement due to statement timeout"
        cursor.execute.side_effect = [None, psycopg.errors.QueryCanceled(native)]
        client, _, _ = _mock_client(cursor)
        with pytest.raises(TimeoutError) as exc_info:
            client.execute_statement('DELETE FROM "t" WHERE "id" = $1', [1])
        assert exc_info.value.message == native
        assert exc_info.value.exit_code == ExitCode.TIMEOUT

    def test_batch_reports_native_timeout_text(self):
        cursor = MagicMock()
        native = "canceling statement due to statement timeout"
        cursor.execute.side_effect = [None, psycopg.errors.QueryCanceled(native)]
        client, _, _ = _mock_client(cursor)
        statements = [
            SynthesizedStatement(
                statement='DELETE FROM "t" WHERE "id" = $1', values=[1], change_index=0
            )
        ]
        result = BatchExecutor(client).execute(statements, transactional=False)
        assert not result.success
        assert result.error == native
        assert result.failed_index == 0


@pytest.mark.unit
class TestTransaction:
    def test_statements_run_inside_transaction(self):
        client, conn, cursor = _mock_client()
        with client.transaction() as tx:
            tx.execute_statement('UPDATE "t" SET "doc" = $1 WHERE "id" = $2', [{"k": 1}, 3])
        conn.transaction.assert_called_once()
        _, params = cursor.execute.call_args.args
        assert isinstance(params[0], Jsonb)
        assert params[1] == 3

    def test_commit_error_maps_to_execution_error(self):
        client, conn, _ = _mock_client()
        conn.transaction.return_value.__exit__.side_effect = psycopg.errors.SerializationFailure(
            "could not serialize access"
        )
        with pytest.raises(ExecutionError, match="could not serialize access"):
            with client.transaction():
                pass


@pytest.mark.unit
def test_connect_failure_raises_network_error():
    client = PgClient(ResolvedConfig(host="db.invalid"))
    with (
        patch("pg_edit.core.client.psycopg.connect", side_effect=psycopg.OperationalError("no")),
        pytest.raises(NetworkError, match="Connection failed"),
    ):
        client.execute_query("SELECT 1")


# -- Integration --


@pytest.fixture
def resolved_config():
    return resolve_config(load_config(), profile_name=TEST_PROFILE)


@pytest.fixture
def client(resolved_config):
    with PgClient(resolved_config) as c:
        yield c


@pytest.fixture
def scratch_table(client):
    client.execute_query(
        "CREATE TEMP TABLE pg_edit_scratch (id int PRIMARY KEY, name text, doc jsonb)"
    )
    yield "pg_edit_scratch"
    client.execute_query("DROP TABLE IF EXISTS pg_edit_scratch")


@pytest.mark.integration
def test_execute_returns_query_result(client):
    result = client.execute_query("SELECT 1 AS num")
    assert isinstance(result, QueryResult)
    assert result.rows == [(1,)]


@pytest.mark.integration
def test_syntax_error_raises(client):
    with pytest.raises(PgEditError, match="SQL error"):
        client.execute_query("SELECTT 1")


@pytest.mark.integration
def test_transaction_rolls_back(client, scratch_table):
    with pytest.raises(ExecutionError), client.transaction() as tx:
        tx.execute_statement(f'INSERT INTO "{scratch_table}" ("id") VALUES ($1)', [1])
        tx.execute_statement(f'INSERT INTO "{scratch_table}" ("id") VALUES ($1)', [1])
    result = client.execute_query(f"SELECT count(*) FROM {scratch_table}")
    assert result.rows == [(0,)]


@pytest.mark.integration
def test_jsonb_round_trip(client, scratch_table):
    client.execute_statement(
        f'INSERT INTO "{scratch_table}" ("id", "doc") VALUES ($1, $2)', [1, {"b": 2, "a": 1}]
    )
    result = client.execute_query(f"SELECT doc FROM {scratch_table}")
    assert result.rows == [({"a": 1, "b": 2},)]
