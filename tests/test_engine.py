import pytest

from conftest import dump, insert_rows
from reconciliation import engine
from reconciliation.catalog import DEFAULT_CATALOG
from reconciliation.engine import map_entities, reconcile
from reconciliation.errors import (
    AmbiguousNaturalKey,
    ReferentialIntegrityViolation,
    ResidualDuplicates,
    UnsafeRewriteWithoutCanonicalTarget,
)
from reconciliation.purger import check_no_references

REPAIRED = {
    "alf_prop_class": [
        (1, "java.lang.String", "String", 100),
        (2, "java.lang.Long", "Long", 200),
    ],
    "alf_prop_string_value": [
        (10, "Hello", "hello", 5),
        (12, "World", "world", 9),
        (13, "alfresco-access", "alfresco-access", 7),
    ],
    "alf_prop_value": [
        (30, 1, 3, 10),
        (32, 1, 3, 12),
        (33, 2, 1, 11),
        (34, 1, 3, 13),
    ],
    "alf_prop_unique_ctx": [
        (38, 30, 32, 33, 40),
        (72, 34, 33, 30, 42),
    ],
    "alf_audit_app": [(50, 34)],
    "alf_prop_link": [
        (1, 0, 0, 30, 34),
        (1, 0, 1, 33, 32),
    ],
    "alf_audit_entry": [
        (60, 50, 30),
        (61, 50, 33),
    ],
}


class TestReconcile:
    def test_repairs_store(self, conn, corrupted_store):
        report = reconcile(corrupted_store)
        assert report.committed
        assert dump(conn) == REPAIRED

    def test_report_counts(self, corrupted_store):
        report = reconcile(corrupted_store)
        counts = {
            name: (e.duplicates_detected, e.rows_rewritten, e.redirects, e.rows_normalized, e.rows_purged)
            for name, e in report.entities.items()
        }
        assert counts == {
            "class": (1, 1, 0, 0, 1),
            "string": (1, 0, 0, 1, 1),
            "value": (2, 3, 2, 0, 2),
            "audit_app": (1, 1, 1, 0, 1),
            "unique_ctx": (1, 0, 1, 0, 1),
        }
        assert report.total_duplicates == 6
        assert report.total_rewritten == 4
        assert report.total_purged == 6
        assert not report.is_noop

    def test_second_run_is_noop(self, conn, corrupted_store):
        reconcile(corrupted_store)
        report = reconcile(corrupted_store)
        assert report.is_noop
        assert dump(conn) == REPAIRED

    def test_clean_store_is_noop(self, conn, store):
        insert_rows(conn, REPAIRED)
        report = reconcile(store)
        assert report.is_noop
        assert dump(conn) == REPAIRED

    def test_dry_run_rolls_back(self, conn, corrupted_store):
        before = dump(conn)
        report = reconcile(corrupted_store, dry_run=True)
        assert report.dry_run
        assert not report.committed
        assert report.total_purged == 6
        assert dump(conn) == before

    def test_events_cover_every_stage(self, corrupted_store):
        report = reconcile(corrupted_store)
        stages = {e.stage for e in report.events}
        assert stages == {"SNAPSHOT", "MAP", "CLASSIFY", "REWRITE", "NORMALIZE", "PURGE", "VERIFY"}
        assert all(e.status == "SUCCESS" for e in report.events)
        assert report.to_dict()["events"][0]["stage"] == "SNAPSHOT"

    def test_classify_events_carry_verdicts(self, corrupted_store):
        report = reconcile(corrupted_store)
        details = {e.subject: e.detail for e in report.events if e.stage == "CLASSIFY"}
        assert details["alf_prop_value"] == "SAFE=1, REDIRECT_TO_CANONICAL=2"
        assert details["alf_prop_link"] == "SAFE=1"


class TestReconcileAborts:
    def test_ambiguous_natural_key(self, conn, corrupted_store):
        insert_rows(conn, {"alf_prop_class": [(22, "java.lang.String", "String", 102)]})
        before = dump(conn)
        with pytest.raises(AmbiguousNaturalKey):
            reconcile(corrupted_store)
        assert dump(conn) == before

    def test_fatal_collision_writes_nothing(self, conn, store):
        insert_rows(conn, {
            "alf_prop_class": [(1, "java.lang.String", "String", 100)],
            "alf_prop_string_value": [(10, "Hello", "hello", 5), (11, "Hello", "Hello", 5)],
            "alf_prop_value": [(40, 1, 3, 11), (41, 1, 3, 10)],
        })
        before = dump(conn)
        with pytest.raises(UnsafeRewriteWithoutCanonicalTarget) as excinfo:
            reconcile(store)
        assert excinfo.value.subject == "alf_prop_value"
        assert dump(conn) == before

    def test_failure_after_writes_rolls_back(self, conn, corrupted_store, monkeypatch):
        def fail(*args, **kwargs):
            raise ResidualDuplicates("catalog", "forced failure")

        monkeypatch.setattr(engine, "verify_repair", fail)
        before = dump(conn)
        with pytest.raises(ResidualDuplicates):
            reconcile(corrupted_store)
        assert dump(conn) == before


class TestPurgeCheck:
    def test_refuses_to_purge_referenced_duplicates(self, corrupted_store):
        snapshots = {t.name: corrupted_store.snapshot(t) for t in DEFAULT_CATALOG.tables()}
        remaps = map_entities(DEFAULT_CATALOG, snapshots)
        # Nothing rewritten yet: value 32 still points at class 21
        with pytest.raises(ReferentialIntegrityViolation) as excinfo:
            check_no_references(corrupted_store, DEFAULT_CATALOG, remaps)
        assert excinfo.value.subject == "alf_prop_value.actual_type_id"
        assert excinfo.value.sample == [(32, 21)]
