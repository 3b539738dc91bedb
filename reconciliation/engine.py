"""reconcile(): run the whole duplicate repair as one all-or-nothing unit.

Stage order inside a single store transaction:

  SNAPSHOT   read every catalog table
  MAP        detector + mapper per entity, in dependency order
  CLASSIFY   verdict per row of every referencing table (+ normalizations)
  REWRITE    SAFE rewrites per table, in dependency order
  NORMALIZE  derived-column fixes (string_end_lower)
  PURGE      reference check, then deletes in reverse dependency order
  VERIFY     re-read and assert the repaired state

Any error propagates out of the transaction and rolls back every stage.
A second run over a repaired store detects nothing and writes nothing.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

import polars as pl

from observability.event_tracker import RepairEventTracker
from reconciliation.catalog import DEFAULT_CATALOG, Catalog
from reconciliation.classifier import classify_normalizations, classify_table
from reconciliation.mapper import build_remap
from reconciliation.models import (
    EntityReport,
    ReconciliationReport,
    RemapSet,
    TablePlan,
    TableReport,
    Verdict,
)
from reconciliation.purger import check_no_references, purge_entity, purge_order
from reconciliation.rewriter import apply_plan, ensure_safe
from reconciliation.store import Store
from reconciliation.verify import verify_repair

logger = logging.getLogger(__name__)


def verdict_counts(plan: TablePlan) -> dict[str, int]:
    """Rows per verdict, in SAFE, REDIRECT_TO_CANONICAL, FATAL order."""
    counts = dict(plan.verdicts().group_by("verdict").len().rows())
    return {v.value: counts[v.value] for v in Verdict if v.value in counts}


def map_entities(
    catalog: Catalog,
    snapshots: dict[str, pl.DataFrame],
    tracker: RepairEventTracker | None = None,
) -> dict[str, RemapSet]:
    """Build every entity's remap set in dependency order."""
    tracker = tracker or RepairEventTracker()
    remaps: dict[str, RemapSet] = {}
    for entity in catalog.entities():
        with tracker.track("MAP", entity.name) as event:
            upstream = {name: remaps[name] for name in entity.upstream if name in remaps}
            snapshot = snapshots[entity.table.name]
            remaps[entity.name] = build_remap(entity, snapshot, upstream)
            for entry in remaps[entity.name].to_entries():
                logger.debug(
                    "Remap %s %s: %d -> %d",
                    entity.name, entry.natural_key, entry.duplicate_id, entry.canonical_id,
                )
            event.rows_processed = len(snapshot)
            event.rows_affected = len(remaps[entity.name])
    return remaps


def classify_all(
    catalog: Catalog,
    snapshots: dict[str, pl.DataFrame],
    remaps: dict[str, RemapSet],
    tracker: RepairEventTracker | None = None,
) -> tuple[dict[str, TablePlan], dict[str, TablePlan]]:
    """Classify every referencing table and every normalization.

    Returns:
        (reference plans by table name, normalization plans by entity name).

    Raises:
        UnsafeRewriteWithoutCanonicalTarget: If any plan holds a FATAL row.
            Nothing has been written yet at that point.
    """
    tracker = tracker or RepairEventTracker()
    plans: dict[str, TablePlan] = {}
    for table in catalog.referencing_tables():
        with tracker.track("CLASSIFY", table.name) as event:
            owner = catalog.owner(table.name)
            own_remap = remaps[owner.name] if owner is not None else None
            plan = classify_table(table, snapshots[table.name], remaps, own_remap)
            event.rows_processed = len(snapshots[table.name])
            event.rows_affected = len(plan.rewrites)
            counts = verdict_counts(plan)
            if counts:
                event.detail = ", ".join(f"{k}={n}" for k, n in counts.items())
                logger.info("Verdicts %s: %s", table.name, event.detail)
            ensure_safe(plan)
            plans[table.name] = plan

    normalizations: dict[str, TablePlan] = {}
    for entity in catalog.entities():
        if not entity.normalizations:
            continue
        with tracker.track("CLASSIFY", f"{entity.table.name}:normalize") as event:
            plan = classify_normalizations(entity, snapshots[entity.table.name], remaps[entity.name])
            event.rows_affected = len(plan.rewrites)
            ensure_safe(plan)
            normalizations[entity.name] = plan
    return plans, normalizations


def reconcile(
    store: Store,
    catalog: Catalog | None = None,
    *,
    dry_run: bool = False,
    tracker: RepairEventTracker | None = None,
) -> ReconciliationReport:
    """Detect, remap, rewrite and purge duplicates across the catalog.

    Args:
        store: Store with exclusive access for the duration of the run.
        catalog: Tables to repair. Defaults to the property/audit catalog.
        dry_run: Run every stage, then roll back instead of committing.
        tracker: Event tracker (carries the run id). Created when omitted.

    Returns:
        ReconciliationReport with per-entity and per-table counts.

    Raises:
        ReconciliationError: Any subclass; the store is left untouched.
    """
    catalog = catalog or DEFAULT_CATALOG
    tracker = tracker or RepairEventTracker()
    report = ReconciliationReport(
        run_id=tracker.run_id,
        dry_run=dry_run,
        started_at=datetime.now(timezone.utc),
    )
    for entity in catalog.entities():
        report.entities[entity.name] = EntityReport(entity.name, entity.table.name)
    for table in catalog.referencing_tables():
        report.tables[table.name] = TableReport(table.name)

    logger.info("=" * 60)
    logger.info(
        "Duplicate repair %s starting (%s), entity order: %s",
        report.run_id, "DRY RUN" if dry_run else "LIVE", " -> ".join(catalog.entity_order),
    )
    logger.info("=" * 60)

    with store.transaction(commit=not dry_run):
        with tracker.track("SNAPSHOT", "catalog") as event:
            snapshots = {t.name: store.snapshot(t) for t in catalog.tables()}
            event.rows_processed = sum(len(df) for df in snapshots.values())

        remaps = map_entities(catalog, snapshots, tracker)
        for name, remap in remaps.items():
            report.entities[name].duplicates_detected = len(remap)

        plans, normalizations = classify_all(catalog, snapshots, remaps, tracker)

        for table in catalog.referencing_tables():
            plan = plans[table.name]
            with tracker.track("REWRITE", table.name) as event:
                updated = apply_plan(store, table, plan)
                event.rows_affected = updated
            report.tables[table.name].rows_rewritten = updated
            report.tables[table.name].redirects = len(plan.redirects)
            owner = catalog.owner(table.name)
            if owner is not None:
                report.entities[owner.name].redirects = len(plan.redirects)
            for target, count in plan.changed_by_target.items():
                report.entities[target].rows_rewritten += count

        for name, plan in normalizations.items():
            entity = catalog.entity(name)
            with tracker.track("NORMALIZE", entity.table.name) as event:
                event.rows_affected = apply_plan(store, entity.table, plan)
            report.entities[name].rows_normalized = event.rows_affected

        with tracker.track("PURGE", "check"):
            check_no_references(store, catalog, remaps)
        for name in purge_order(catalog):
            with tracker.track("PURGE", name) as event:
                event.rows_affected = purge_entity(store, catalog, remaps[name])
            report.entities[name].rows_purged = event.rows_affected

        with tracker.track("VERIFY", "catalog"):
            verify_repair(store, catalog, remaps)

    report.committed = not dry_run
    report.completed_at = datetime.now(timezone.utc)
    report.events = list(tracker.events)

    logger.info("=" * 60)
    logger.info(
        "Duplicate repair %s %s: %d duplicate(s), %d row(s) rewritten, %d row(s) purged%s",
        report.run_id,
        "rolled back (dry run)" if dry_run else "committed",
        report.total_duplicates, report.total_rewritten, report.total_purged,
        " (no-op)" if report.is_noop else "",
    )
    logger.info("=" * 60)
    return report
