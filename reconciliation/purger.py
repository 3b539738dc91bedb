"""Duplicate purging: delete duplicate rows once nothing references them."""

from __future__ import annotations

import logging
from typing import Mapping

import polars as pl

import config
from reconciliation.catalog import Catalog
from reconciliation.errors import ReferentialIntegrityViolation
from reconciliation.models import RemapSet
from reconciliation.store import Store

logger = logging.getLogger(__name__)


def find_dangling_references(
    catalog: Catalog,
    snapshots: Mapping[str, pl.DataFrame],
    remaps: Mapping[str, RemapSet],
) -> list[tuple[str, str, pl.DataFrame]]:
    """List references that point at a duplicate id.

    Rows that are themselves duplicates of their own entity are skipped: they
    are deleted in the same purge.

    Returns:
        (table name, column, offending rows' key columns) per dirty column.
    """
    found = []
    for table in catalog.referencing_tables():
        frame = snapshots[table.name]
        owner = catalog.owner(table.name)
        if owner is not None and not remaps[owner.name].is_empty:
            frame = frame.filter(~pl.col(owner.id_column).is_in(remaps[owner.name].duplicate_ids))

        for ref in table.references:
            remap = remaps[ref.target]
            if remap.is_empty:
                continue
            hits = frame.filter(ref.applies() & pl.col(ref.column).is_in(remap.duplicate_ids))
            if not hits.is_empty():
                found.append((table.name, ref.column, hits.select(*table.key_columns, ref.column)))
    return found


def check_no_references(
    store: Store,
    catalog: Catalog,
    remaps: Mapping[str, RemapSet],
) -> None:
    """Re-read every referencing table and refuse to purge if any reference remains.

    Raises:
        ReferentialIntegrityViolation: For the first dirty column found.
    """
    snapshots = {t.name: store.snapshot(t) for t in catalog.referencing_tables()}
    dangling = find_dangling_references(catalog, snapshots, remaps)
    if dangling:
        table_name, column, rows = dangling[0]
        raise ReferentialIntegrityViolation(
            f"{table_name}.{column}",
            f"{rows.height} row(s) still reference ids scheduled for purge",
            sample=rows.head(config.ERROR_SAMPLE_SIZE).rows(),
        )


def purge_entity(store: Store, catalog: Catalog, remap: RemapSet) -> int:
    """Delete the duplicate rows of one entity. Returns rows deleted."""
    if remap.is_empty:
        return 0
    entity = catalog.entity(remap.entity)
    deleted = store.delete_rows(entity.table, entity.id_column, remap.duplicate_ids)
    logger.info("Purger %s: %d duplicate row(s) deleted from %s", entity.name, deleted, entity.table.name)
    return deleted


def purge_order(catalog: Catalog) -> list[str]:
    """Entity names in reverse dependency order: referrers go before their targets."""
    return list(reversed(catalog.entity_order))
