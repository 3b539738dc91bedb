"""Duplicate detection: group a snapshot by natural key, min id wins.

Pure functions over polars frames. The source frame is never modified.
"""

from __future__ import annotations

import logging
from typing import Sequence

import polars as pl

import config
from reconciliation.errors import AmbiguousNaturalKey
from reconciliation.models import CANONICAL_ID, DUPLICATE_ID

logger = logging.getLogger(__name__)

OCCURRENCES = "occurrences"


def find_duplicate_groups(
    frame: pl.DataFrame,
    key_columns: Sequence[str],
    id_column: str = "id",
) -> pl.DataFrame:
    """Return every natural key held by more than one row.

    Rows with a NULL in any key column are ignored: unique indexes never
    consider NULL-bearing tuples equal, so they cannot be duplicates.

    Returns:
        Key columns + occurrences + canonical_id (min id) + duplicate_id (max id),
        ordered by canonical_id.
    """
    key_columns = list(key_columns)
    return (
        frame.drop_nulls(subset=key_columns)
        .group_by(key_columns)
        .agg(
            pl.col(id_column).len().alias(OCCURRENCES),
            pl.col(id_column).min().alias(CANONICAL_ID),
            pl.col(id_column).max().alias(DUPLICATE_ID),
        )
        .filter(pl.col(OCCURRENCES) > 1)
        .sort(CANONICAL_ID)
    )


def detect_duplicates(
    frame: pl.DataFrame,
    key_columns: Sequence[str],
    id_column: str = "id",
    *,
    entity: str,
) -> pl.DataFrame:
    """Build min/max id pairs for duplicated natural keys.

    Args:
        frame: Snapshot (natural-key columns already resolved where needed).
        key_columns: Natural-key columns.
        id_column: Surrogate id column.
        entity: Entity name, for logging and errors.

    Returns:
        Key columns + canonical_id + duplicate_id, one row per duplicated key.

    Raises:
        AmbiguousNaturalKey: If any key is shared by more than two ids. The
            min/max pair would silently drop the middle rows.
    """
    groups = find_duplicate_groups(frame, key_columns, id_column)

    ambiguous = groups.filter(pl.col(OCCURRENCES) > 2)
    if not ambiguous.is_empty():
        sample = ambiguous.head(config.ERROR_SAMPLE_SIZE).select(*key_columns, OCCURRENCES).rows()
        raise AmbiguousNaturalKey(
            entity,
            f"{len(ambiguous)} natural key(s) are shared by more than two surrogate ids",
            sample=sample,
        )

    logger.info(
        "Detector %s: %d rows scanned, %d duplicated natural key(s)",
        entity, len(frame), len(groups),
    )
    return groups.select(*key_columns, CANONICAL_ID, DUPLICATE_ID)
