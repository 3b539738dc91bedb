import pytest

from conftest import insert_rows
from reconciliation.catalog import DEFAULT_CATALOG
from reconciliation.engine import map_entities
from reconciliation.errors import ReferentialIntegrityViolation, ResidualDuplicates
from reconciliation.verify import verify_repair

STRING_CLASS = (1, "java.lang.String", "String", 100)
STRING_CLASS_DUP = (21, "java.lang.String", "String", 101)


def current_remaps(store):
    snapshots = {t.name: store.snapshot(t) for t in DEFAULT_CATALOG.tables()}
    return map_entities(DEFAULT_CATALOG, snapshots)


class TestVerifyRepair:
    def test_clean_store_passes(self, conn, store):
        insert_rows(conn, {
            "alf_prop_class": [STRING_CLASS, (2, "java.lang.Long", "Long", 200)],
            "alf_prop_string_value": [(10, "Hello", "hello", 5), (11, "Hello", "Hello", 5)],
            "alf_prop_value": [(30, 1, 3, 10), (33, 2, 1, 11)],
        })
        remaps = current_remaps(store)
        conn.execute("DELETE FROM alf_prop_string_value WHERE id = 11")
        # 33 is Long-persisted: its long_value 11 is a number, not the purged string
        verify_repair(store, DEFAULT_CATALOG, remaps)

    def test_repeated_natural_key(self, conn, store):
        insert_rows(conn, {"alf_prop_class": [STRING_CLASS, STRING_CLASS_DUP]})
        with pytest.raises(ResidualDuplicates) as excinfo:
            verify_repair(store, DEFAULT_CATALOG, current_remaps(store))
        assert excinfo.value.subject == "class"

    def test_surviving_duplicate(self, conn, store):
        insert_rows(conn, {"alf_prop_class": [STRING_CLASS, STRING_CLASS_DUP]})
        remaps = current_remaps(store)
        conn.execute("UPDATE alf_prop_class SET java_class_name = 'java.lang.Object' WHERE id = 21")
        with pytest.raises(ResidualDuplicates) as excinfo:
            verify_repair(store, DEFAULT_CATALOG, remaps)
        assert excinfo.value.subject == "class"
        assert excinfo.value.sample == [21]

    def test_repeated_scope_tuple(self, conn, store):
        conn.execute("DROP INDEX idx_alf_propc_crc")
        insert_rows(conn, {"alf_prop_class": [STRING_CLASS, (2, "org.example.String", "String", 100)]})
        with pytest.raises(ResidualDuplicates) as excinfo:
            verify_repair(store, DEFAULT_CATALOG, current_remaps(store))
        assert excinfo.value.subject == "alf_prop_class.idx_alf_propc_crc"

    def test_dangling_reference(self, conn, store):
        insert_rows(conn, {
            "alf_prop_class": [STRING_CLASS, STRING_CLASS_DUP],
            "alf_prop_string_value": [(12, "World", "world", 9)],
            "alf_prop_value": [(32, 21, 3, 12)],
        })
        remaps = current_remaps(store)
        conn.execute("DELETE FROM alf_prop_class WHERE id = 21")
        with pytest.raises(ReferentialIntegrityViolation) as excinfo:
            verify_repair(store, DEFAULT_CATALOG, remaps)
        assert excinfo.value.subject == "alf_prop_value.actual_type_id"
        assert excinfo.value.sample == [(32, 21)]
