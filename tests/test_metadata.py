"""Tests for catalog introspection and the metadata cache."""

from unittest.mock import MagicMock

import pytest

from pg_edit.core.metadata import SchemaMetadataCache, fetch_enum_labels, fetch_table_metadata
from pg_edit.core.models import ColumnDescriptor, QueryResult, TableMetadata


def _result(rows):
    return QueryResult(columns=[], rows=rows, row_count=len(rows), status_message="SELECT")


def _catalog_client():
    client = MagicMock()
    client.execute_query.side_effect = [
        # columns
        _result(
            [
                ("id", "integer", False, 23, 0),
                ("status", "order_status", True, 90001, 0),
                ("tags", "order_status[]", True, 90002, 90001),
                ("customer_id", "integer", True, 23, 0),
            ]
        ),
        # enum labels
        _result([(90001, "new"), (90001, "shipped")]),
        # unique
        _result([]),
        # indexed
        _result([("customer_id",)]),
        # foreign keys
        _result([("customer_id", "public", "customers", "id")]),
        # primary key
        _result([("id",)]),
    ]
    return client


@pytest.mark.unit
class TestFetchTableMetadata:
    def test_builds_descriptors(self):
        metadata = fetch_table_metadata(_catalog_client(), "public", "orders")

        assert metadata.primary_key == ("id",)
        assert metadata.column_names == ["id", "status", "tags", "customer_id"]

        id_col = metadata.column("id")
        assert id_col.nullable is False
        assert id_col.enum_labels is None

        assert metadata.column("status").enum_labels == ("new", "shipped")

        tags = metadata.column("tags")
        assert tags.is_array
        assert tags.enum_labels == ("new", "shipped")
        assert tags.element_oid == 90001

        customer = metadata.column("customer_id")
        assert customer.is_indexed
        assert customer.foreign_key.referenced_table == "customers"
        assert customer.foreign_key.referenced_column == "id"

    def test_queries_use_parameters(self):
        client = _catalog_client()
        fetch_table_metadata(client, "public", "orders")
        first_call = client.execute_query.call_args_list[0]
        assert first_call.args[1] == {"schema": "public", "table": "orders"}
        assert "orders" not in first_call.args[0]

    def test_oids_read_as_bigint(self):
        client = _catalog_client()
        fetch_table_metadata(client, "public", "orders")
        columns_sql = client.execute_query.call_args_list[0].args[0]
        enum_sql = client.execute_query.call_args_list[1].args[0]
        assert "t.oid::bigint" in columns_sql
        assert "t.typelem::bigint" in columns_sql
        assert "e.enumtypid::bigint" in enum_sql
        assert "::int " not in columns_sql + enum_sql


@pytest.mark.unit
def test_fetch_enum_labels_without_oids_skips_query():
    client = MagicMock()
    assert fetch_enum_labels(client, []) == {}
    client.execute_query.assert_not_called()


def _metadata():
    return TableMetadata(columns=(ColumnDescriptor(name="id", declared_type="integer"),))


@pytest.mark.unit
class TestSchemaMetadataCache:
    def test_fetches_once(self, monkeypatch):
        calls = []

        def fake_fetch(client, schema, table):
            calls.append((schema, table))
            return _metadata()

        monkeypatch.setattr("pg_edit.core.metadata.fetch_table_metadata", fake_fetch)
        cache = SchemaMetadataCache()
        first = cache.get_or_fetch(MagicMock(), "conn", "public", "t")
        second = cache.get_or_fetch(MagicMock(), "conn", "public", "t")

        assert first is second
        assert calls == [("public", "t")]
        assert ("conn", "public", "t") in cache

    def test_keyed_by_connection(self):
        cache = SchemaMetadataCache()
        cache.put(("a", "public", "t"), _metadata())
        assert cache.get(("b", "public", "t")) is None

    def test_invalidate(self):
        cache = SchemaMetadataCache()
        cache.put(("conn", "public", "t"), _metadata())
        cache.invalidate("conn", "public", "t")
        assert len(cache) == 0

    def test_invalidate_missing_is_noop(self):
        SchemaMetadataCache().invalidate("conn", "public", "nope")

    def test_clear(self):
        cache = SchemaMetadataCache()
        cache.put(("conn", "public", "a"), _metadata())
        cache.put(("conn", "public", "b"), _metadata())
        cache.clear()
        assert len(cache) == 0
