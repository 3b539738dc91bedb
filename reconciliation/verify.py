"""Post-run verification, still inside the repair transaction.

Re-reads every catalog table and asserts the end state: no natural key or
uniqueness scope repeats, no purged id survives, and no reference points at
a purged id. Any failure aborts the run, rolling everything back.
"""

from __future__ import annotations

import logging
from typing import Mapping

import polars as pl

import config
from reconciliation.catalog import Catalog
from reconciliation.detector import find_duplicate_groups
from reconciliation.errors import ReferentialIntegrityViolation, ResidualDuplicates
from reconciliation.models import RemapSet
from reconciliation.purger import find_dangling_references
from reconciliation.store import Store

logger = logging.getLogger(__name__)


def verify_repair(store: Store, catalog: Catalog, remaps: Mapping[str, RemapSet]) -> None:
    snapshots = {t.name: store.snapshot(t) for t in catalog.tables()}

    for entity in catalog.entities():
        frame = snapshots[entity.table.name]
        groups = find_duplicate_groups(frame, entity.natural_key, entity.id_column)
        if not groups.is_empty():
            raise ResidualDuplicates(
                entity.name,
                f"{groups.height} natural key(s) still repeat after repair",
                sample=groups.head(config.ERROR_SAMPLE_SIZE).rows(),
            )
        remap = remaps.get(entity.name)
        if remap is not None and not remap.is_empty:
            survivors = frame.filter(pl.col(entity.id_column).is_in(remap.duplicate_ids))
            if not survivors.is_empty():
                raise ResidualDuplicates(
                    entity.name,
                    f"{survivors.height} duplicate row(s) survived the purge",
                    sample=survivors[entity.id_column].head(config.ERROR_SAMPLE_SIZE).to_list(),
                )

    for table in catalog.tables():
        frame = snapshots[table.name]
        for scope in table.scopes:
            repeated = (
                frame.drop_nulls(subset=list(scope.columns))
                .group_by(list(scope.columns))
                .agg(pl.len().alias("occurrences"))
                .filter(pl.col("occurrences") > 1)
            )
            if not repeated.is_empty():
                raise ResidualDuplicates(
                    f"{table.name}.{scope.name}",
                    f"{repeated.height} tuple(s) repeat",
                    sample=repeated.head(config.ERROR_SAMPLE_SIZE).rows(),
                )

    # Purged rows are gone, so nothing is excluded as "about to be deleted"
    dangling = find_dangling_references(catalog, snapshots, remaps)
    if dangling:
        table_name, column, rows = dangling[0]
        raise ReferentialIntegrityViolation(
            f"{table_name}.{column}",
            f"{rows.height} row(s) reference purged ids",
            sample=rows.head(config.ERROR_SAMPLE_SIZE).rows(),
        )

    logger.info("Verification passed for %d table(s)", len(snapshots))
