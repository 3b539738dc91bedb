"""Reference rewriting: apply classified plans inside the repair transaction."""

from __future__ import annotations

import logging

import config
from reconciliation.catalog import TableSpec
from reconciliation.errors import UnsafeRewriteWithoutCanonicalTarget
from reconciliation.models import TablePlan
from reconciliation.store import Store

logger = logging.getLogger(__name__)


def ensure_safe(plan: TablePlan) -> None:
    """Raise if any row of ``plan`` was classified FATAL.

    Raises:
        UnsafeRewriteWithoutCanonicalTarget: With a sample of offending row keys
            and the scope each one would violate.
    """
    if plan.fatal.is_empty():
        return
    scopes = sorted(set(plan.fatal["scope"].to_list()))
    raise UnsafeRewriteWithoutCanonicalTarget(
        plan.table_name,
        f"{plan.fatal.height} row(s) would violate {', '.join(scopes)} "
        f"and have no canonical row to fold into",
        sample=plan.fatal.head(config.ERROR_SAMPLE_SIZE).rows(),
    )


def apply_plan(store: Store, table: TableSpec, plan: TablePlan) -> int:
    """Apply the SAFE rewrites of one table. Returns rows updated.

    Each row's columns change in a single UPDATE, so a row never passes
    through a half-rewritten state that could trip a unique index.
    """
    ensure_safe(plan)
    if plan.rewrites.is_empty():
        return 0
    updated = store.update_rows(table, plan.set_columns, plan.rewrites)
    logger.info(
        "Rewriter %s: %d row(s) updated (%s)",
        table.name, updated, ", ".join(plan.set_columns),
    )
    if updated != len(plan.rewrites):
        logger.warning(
            "Rewriter %s: expected %d row(s), driver reported %d",
            table.name, len(plan.rewrites), updated,
        )
    return updated
