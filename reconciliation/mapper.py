"""Identifier mapping: turn detector output into per-entity remap sets.

When an entity's natural key embeds ids of an upstream entity (a value row's
actual_type_id is a class id; its long_value may be a string id) those columns
are first resolved through the upstream remap set, then grouped. Two rows that
only differed by pointing at a class and at that class's duplicate therefore
land in one group, which is how a string remap cascades into a value remap and
on into unique-context and audit-application remaps.
"""

from __future__ import annotations

import logging
from typing import Mapping, Sequence

import polars as pl

from reconciliation.catalog import EntitySpec, Reference
from reconciliation.detector import detect_duplicates
from reconciliation.errors import UnresolvedTransitiveReference
from reconciliation.models import CANONICAL_ID, DUPLICATE_ID, RemapSet

logger = logging.getLogger(__name__)

RESOLVED_SUFFIX = "__resolved"


def resolved_name(column: str) -> str:
    return f"{column}{RESOLVED_SUFFIX}"


def resolve_references(
    frame: pl.DataFrame,
    references: Sequence[Reference],
    remaps: Mapping[str, RemapSet],
    *,
    subject: str,
) -> pl.DataFrame:
    """Add a ``<column>__resolved`` column per reference.

    The resolved value is the canonical id when the stored id is a duplicate
    in the target entity's remap set (and the reference's condition holds),
    otherwise the stored value. One hop is enough: canonical ids are never
    duplicates themselves.

    Raises:
        UnresolvedTransitiveReference: If a target's remap set is missing.
    """
    for ref in references:
        remap = remaps.get(ref.target)
        if remap is None:
            raise UnresolvedTransitiveReference(
                subject,
                f"remap set for {ref.target!r} (needed by column {ref.column}) "
                f"has not been built",
            )
        lookup = remap.pairs().rename({DUPLICATE_ID: ref.column, CANONICAL_ID: "__canonical"})
        frame = (
            frame.join(lookup, on=ref.column, how="left")
            .with_columns(
                pl.when(ref.applies() & pl.col("__canonical").is_not_null())
                .then(pl.col("__canonical"))
                .otherwise(pl.col(ref.column))
                .alias(resolved_name(ref.column))
            )
            .drop("__canonical")
        )
    return frame


def build_remap(
    entity: EntitySpec,
    snapshot: pl.DataFrame,
    upstream: Mapping[str, RemapSet],
) -> RemapSet:
    """Build the remap set for one entity.

    Args:
        entity: Entity being mapped.
        snapshot: Current rows of the entity's table.
        upstream: Remap sets of the entities its natural key embeds. Passed
            explicitly; the caller is responsible for building them first.

    Returns:
        RemapSet whose natural-key values are the resolved (canonical) ones.
    """
    frame = snapshot
    key_refs = entity.key_references
    if key_refs:
        frame = resolve_references(frame, key_refs, upstream, subject=entity.name)
        frame = frame.with_columns(
            [pl.col(resolved_name(r.column)).alias(r.column) for r in key_refs]
        )

    entries = detect_duplicates(
        frame, entity.natural_key, entity.id_column, entity=entity.name,
    )
    if key_refs and not entries.is_empty():
        logger.info(
            "Mapper %s: %d transitive duplicate(s) via %s",
            entity.name, len(entries), ", ".join(entity.upstream),
        )
    return RemapSet(entity=entity.name, natural_key=entity.natural_key, entries=entries)
