import polars as pl
import pytest

from conftest import fetch, insert_rows
from dialects import get_dialect
from reconciliation.catalog import DEFAULT_CATALOG
from reconciliation.store import Store, qualify_table, safe_identifier

VALUE_TABLE = DEFAULT_CATALOG.entity("value").table


class TestSafeIdentifier:
    def test_plain_identifiers(self):
        assert safe_identifier("alf_prop_value") == "alf_prop_value"
        assert safe_identifier("SYS$X") == "SYS$X"

    @pytest.mark.parametrize("name", ["", "alf prop", "alf;drop", '"quoted"', "1abc", "x" * 129])
    def test_rejected(self, name):
        with pytest.raises(ValueError, match="H-1"):
            safe_identifier(name)

    def test_qualify(self):
        assert qualify_table("alf_prop_value", "alfresco") == "alfresco.alf_prop_value"
        assert qualify_table("alf_prop_value") == "alf_prop_value"


class TestDialects:
    def test_placeholders(self):
        assert get_dialect("oracle").placeholders(3) == [":1", ":2", ":3"]
        assert get_dialect("postgresql").placeholders(2) == ["?", "?"]

    def test_unknown_dialect(self):
        with pytest.raises(ValueError, match="Unknown dialect"):
            get_dialect("db2")


class TestStore:
    def test_snapshot_types(self, store):
        frame = store.snapshot(VALUE_TABLE)
        assert frame.is_empty()
        assert dict(frame.schema) == VALUE_TABLE.columns

    def test_snapshot_with_schema(self, conn):
        insert_rows(conn, {"alf_prop_value": [(30, 1, 3, 10)]})
        store = Store(conn, get_dialect("sqlite"), schema="main")
        assert store.snapshot(VALUE_TABLE).rows() == [(30, 1, 3, 10)]

    def test_update_rows_in_batches(self, conn):
        insert_rows(conn, {"alf_prop_value": [(30, 1, 3, 10), (31, 1, 3, 11), (32, 2, 1, 7)]})
        store = Store(conn, get_dialect("sqlite"), batch_size=1)
        rewrites = pl.DataFrame(
            {"id": [30, 31], "actual_type_id": [5, 5], "long_value": [10, 11]},
            schema={"id": pl.Int64, "actual_type_id": pl.Int64, "long_value": pl.Int64},
        )
        assert store.update_rows(VALUE_TABLE, ["actual_type_id", "long_value"], rewrites) == 2
        assert fetch(conn, "alf_prop_value") == [(30, 5, 3, 10), (31, 5, 3, 11), (32, 2, 1, 7)]

    def test_delete_rows(self, conn, store):
        insert_rows(conn, {"alf_prop_value": [(30, 1, 3, 10), (31, 1, 3, 11)]})
        assert store.delete_rows(VALUE_TABLE, "id", [31]) == 1
        assert store.delete_rows(VALUE_TABLE, "id", []) == 0
        assert fetch(conn, "alf_prop_value") == [(30, 1, 3, 10)]

    def test_transaction_rolls_back_on_error(self, conn, store):
        insert_rows(conn, {"alf_prop_value": [(30, 1, 3, 10)]})
        with pytest.raises(RuntimeError):
            with store.transaction():
                store.delete_rows(VALUE_TABLE, "id", [30])
                raise RuntimeError("boom")
        assert fetch(conn, "alf_prop_value") == [(30, 1, 3, 10)]

    def test_transaction_without_commit(self, conn, store):
        insert_rows(conn, {"alf_prop_value": [(30, 1, 3, 10)]})
        with store.transaction(commit=False):
            store.delete_rows(VALUE_TABLE, "id", [30])
        assert fetch(conn, "alf_prop_value") == [(30, 1, 3, 10)]
