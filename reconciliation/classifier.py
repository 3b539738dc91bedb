"""Conflict classification: decide, per row, whether a rewrite is safe.

For each referencing table every row gets exactly one verdict:

  REDIRECT_TO_CANONICAL  the row is itself a duplicate of its own entity and
                         will be purged; its referrers are retargeted through
                         the remap set instead of rewriting the row.
  FATAL                  rewriting the row would make it equal to another row
                         (stored, or another pending rewrite) on a uniqueness
                         scope, and the row has no canonical to fold into.
  SAFE                   everything else; rows whose references are already
                         canonical are SAFE no-ops and are not carried in the
                         plan.

Tuples containing NULL never collide, matching SQL unique-index semantics.
"""

from __future__ import annotations

import logging
from typing import Mapping, Sequence

import polars as pl

from reconciliation.catalog import EntitySpec, TableSpec
from reconciliation.mapper import resolve_references, resolved_name
from reconciliation.models import CANONICAL_ID, DUPLICATE_ID, RemapSet, TablePlan

logger = logging.getLogger(__name__)

SCOPE = "scope"


def find_collisions(
    table: TableSpec,
    snapshot: pl.DataFrame,
    pending: pl.DataFrame,
    changed_columns: Sequence[str],
) -> pl.DataFrame:
    """Find pending rows whose post-rewrite tuple is already taken.

    Args:
        table: Table being rewritten.
        snapshot: Stored rows of ``table``.
        pending: Rows to rewrite, with their post-rewrite values in place.
        changed_columns: Columns the rewrite sets. Scopes that touch none of
            them cannot be violated and are skipped.

    Returns:
        Key columns + scope name, one row per (pending row, violated scope).
    """
    key_columns = list(table.key_columns)
    other_keys = {k: f"__other_{k}" for k in key_columns}
    hits: list[pl.DataFrame] = []

    for scope in table.scopes:
        if not set(scope.columns) & set(changed_columns):
            continue
        columns = list(scope.columns)
        targets = pending.select(*key_columns, *columns).drop_nulls(subset=columns)

        # Against stored rows other than the row itself
        stored = snapshot.select(*key_columns, *columns).drop_nulls(subset=columns).rename(other_keys)
        against_stored = (
            targets.join(stored, on=columns, how="inner")
            .filter(pl.any_horizontal([pl.col(k) != pl.col(o) for k, o in other_keys.items()]))
            .select(key_columns)
        )

        # Against other pending rewrites landing on the same tuple
        against_pending = targets.filter(
            pl.col(key_columns[0]).len().over(columns) > 1
        ).select(key_columns)

        scope_hits = pl.concat([against_stored, against_pending]).unique()
        if not scope_hits.is_empty():
            logger.warning(
                "Classifier %s: %d row(s) would violate %s",
                table.name, len(scope_hits), scope.name,
            )
        hits.append(scope_hits.with_columns(pl.lit(scope.name).alias(SCOPE)))

    if not hits:
        return pl.DataFrame(schema={**{k: table.columns[k] for k in key_columns}, SCOPE: pl.Utf8})
    return pl.concat(hits).sort(key_columns)


def _split(
    table: TableSpec,
    snapshot: pl.DataFrame,
    pending: pl.DataFrame,
    set_columns: list[str],
) -> tuple[pl.DataFrame, pl.DataFrame]:
    """Partition pending rows into (SAFE rewrites, FATAL rows)."""
    key_columns = list(table.key_columns)
    collisions = find_collisions(table, snapshot, pending, set_columns)
    if collisions.is_empty():
        return pending, collisions
    safe = pending.join(collisions.select(key_columns).unique(), on=key_columns, how="anti")
    return safe, collisions


def classify_table(
    table: TableSpec,
    snapshot: pl.DataFrame,
    remaps: Mapping[str, RemapSet],
    own_remap: RemapSet | None = None,
) -> TablePlan:
    """Classify every row of a referencing table.

    Args:
        table: Table to classify.
        snapshot: Its current rows.
        remaps: Remap sets of every entity the table references.
        own_remap: Remap set of the entity that owns ``table``, if any. Rows
            whose id is a duplicate there are REDIRECT_TO_CANONICAL.

    Returns:
        TablePlan. The caller must refuse to apply it when ``fatal`` is not empty.
    """
    key_columns = list(table.key_columns)
    ref_columns = table.reference_columns

    frame = resolve_references(snapshot, table.references, remaps, subject=table.name)
    frame = frame.with_columns(
        pl.any_horizontal(
            [pl.col(c).ne_missing(pl.col(resolved_name(c))) for c in ref_columns]
        ).alias("__changed")
    )

    if own_remap is not None and not own_remap.is_empty:
        frame = frame.join(
            own_remap.pairs().rename({DUPLICATE_ID: key_columns[0]}),
            on=key_columns[0],
            how="left",
        )
    else:
        frame = frame.with_columns(pl.lit(None, dtype=pl.Int64).alias(CANONICAL_ID))

    redirects = frame.filter(pl.col(CANONICAL_ID).is_not_null()).select(*key_columns, CANONICAL_ID)

    # Post-rewrite image of every row that changes and is not itself a duplicate
    pending = frame.filter(pl.col("__changed") & pl.col(CANONICAL_ID).is_null())
    changed_by_column = {
        c: pending.filter(pl.col(c).ne_missing(pl.col(resolved_name(c))))
        .select(key_columns)
        for c in ref_columns
    }
    pending = pending.with_columns(
        [pl.col(resolved_name(c)).alias(c) for c in ref_columns]
    ).select(list(table.columns))

    rewrites, fatal = _split(table, snapshot, pending, ref_columns)

    changed_by_target: dict[str, pl.DataFrame] = {}
    for ref in table.references:
        safe_changed = changed_by_column[ref.column].join(rewrites.select(key_columns), on=key_columns, how="semi")
        previous = changed_by_target.get(ref.target)
        if previous is None:
            changed_by_target[ref.target] = safe_changed
        else:
            changed_by_target[ref.target] = pl.concat([previous, safe_changed]).unique()

    plan = TablePlan(
        table_name=table.name,
        set_columns=ref_columns,
        rewrites=rewrites.select(*key_columns, *ref_columns).sort(key_columns),
        redirects=redirects.sort(key_columns),
        fatal=fatal,
        changed_by_target={target: len(rows) for target, rows in changed_by_target.items()},
    )
    logger.info(
        "Classifier %s: %d safe rewrite(s), %d redirect(s), %d fatal",
        table.name, len(plan.rewrites), len(plan.redirects), len(plan.fatal),
    )
    return plan


def classify_normalizations(
    entity: EntitySpec,
    snapshot: pl.DataFrame,
    remap: RemapSet,
) -> TablePlan | None:
    """Plan normalization of derived columns (e.g. string_end_lower).

    Rows involved in a duplicate pair are left alone: the duplicate is purged
    and the canonical row keeps its stored content. Normalized rows go through
    the same collision check as reference rewrites.

    Returns:
        None when the entity declares no normalizations.
    """
    if not entity.normalizations:
        return None

    table = entity.table
    key_columns = list(table.key_columns)
    columns = [n.column for n in entity.normalizations]

    frame = snapshot
    if not remap.is_empty:
        involved = remap.entries[CANONICAL_ID].to_list() + remap.duplicate_ids
        frame = frame.filter(~pl.col(entity.id_column).is_in(involved))

    normalized = frame.with_columns(
        [n.expr().alias(f"__normalized_{n.column}") for n in entity.normalizations]
    )
    pending = (
        normalized.filter(
            pl.any_horizontal([pl.col(c).ne_missing(pl.col(f"__normalized_{c}")) for c in columns])
        )
        .with_columns([pl.col(f"__normalized_{c}").alias(c) for c in columns])
        .select(list(table.columns))
    )

    rewrites, fatal = _split(table, snapshot, pending, columns)
    plan = TablePlan(
        table_name=table.name,
        set_columns=columns,
        rewrites=rewrites.select(*key_columns, *columns).sort(key_columns),
        redirects=pl.DataFrame(schema={k: table.columns[k] for k in key_columns}),
        fatal=fatal,
    )
    logger.info(
        "Classifier %s: %d row(s) to normalize (%s), %d fatal",
        table.name, len(plan.rewrites), ", ".join(columns), len(plan.fatal),
    )
    return plan
