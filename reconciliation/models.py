"""Remap sets, classification verdicts and reconciliation report dataclasses."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

import polars as pl

if TYPE_CHECKING:
    from observability.event_tracker import StageEvent

CANONICAL_ID = "canonical_id"
DUPLICATE_ID = "duplicate_id"


@dataclass(frozen=True)
class RemapEntry:
    """One natural key whose rows were split: ``duplicate_id`` folds into ``canonical_id``."""

    natural_key: tuple
    canonical_id: int
    duplicate_id: int

    def __post_init__(self) -> None:
        if not self.canonical_id < self.duplicate_id:
            raise ValueError(
                f"Canonical id must precede duplicate id: "
                f"{self.canonical_id} >= {self.duplicate_id} for {self.natural_key}"
            )


@dataclass(frozen=True)
class RemapSet:
    """All remap entries of one entity type.

    ``entries`` has the natural-key columns followed by canonical_id and
    duplicate_id, one row per natural key that had a violation. Never
    persisted: lives for the duration of one repair run.
    """

    entity: str
    natural_key: tuple[str, ...]
    entries: pl.DataFrame

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def is_empty(self) -> bool:
        return self.entries.is_empty()

    @property
    def duplicate_ids(self) -> list[int]:
        return self.entries[DUPLICATE_ID].to_list()

    def pairs(self) -> pl.DataFrame:
        """canonical_id/duplicate_id pairs only, for joins."""
        return self.entries.select(CANONICAL_ID, DUPLICATE_ID)

    def to_entries(self) -> list[RemapEntry]:
        return [
            RemapEntry(
                natural_key=tuple(row[c] for c in self.natural_key),
                canonical_id=row[CANONICAL_ID],
                duplicate_id=row[DUPLICATE_ID],
            )
            for row in self.entries.iter_rows(named=True)
        ]


class Verdict(str, Enum):
    """What the rewriter does with one row of a referencing table."""

    SAFE = "SAFE"
    REDIRECT_TO_CANONICAL = "REDIRECT_TO_CANONICAL"
    FATAL = "FATAL"


@dataclass
class TablePlan:
    """Classifier output for one table.

    Attributes:
        table_name: Table the plan applies to.
        set_columns: Columns each SAFE rewrite sets (all of them, together).
        rewrites: SAFE rows: key columns + new values under ``set_columns``.
        redirects: REDIRECT_TO_CANONICAL rows: key columns + canonical_id.
        fatal: FATAL rows: key columns + the scope that collided.
        changed_by_target: entity name -> rows whose reference into that
            entity changes in a SAFE rewrite.
    """

    table_name: str
    set_columns: list[str]
    rewrites: pl.DataFrame
    redirects: pl.DataFrame
    fatal: pl.DataFrame
    changed_by_target: dict[str, int] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return self.rewrites.is_empty() and self.redirects.is_empty() and self.fatal.is_empty()

    def verdicts(self) -> pl.DataFrame:
        """Row key + verdict for every row the plan touches."""
        key_columns = [c for c in self.redirects.columns if c != CANONICAL_ID]
        tagged = [
            self.rewrites.select(key_columns).with_columns(pl.lit(Verdict.SAFE.value).alias("verdict")),
            self.redirects.select(key_columns).with_columns(
                pl.lit(Verdict.REDIRECT_TO_CANONICAL.value).alias("verdict")
            ),
            self.fatal.select(key_columns).unique().with_columns(pl.lit(Verdict.FATAL.value).alias("verdict")),
        ]
        return pl.concat(tagged).sort(key_columns)


@dataclass
class EntityReport:
    """Per-entity-type outcome of a reconciliation run."""

    entity: str
    table_name: str
    duplicates_detected: int = 0
    rows_rewritten: int = 0
    rows_purged: int = 0
    redirects: int = 0
    rows_normalized: int = 0

    def to_dict(self) -> dict:
        return {
            "entity": self.entity,
            "table_name": self.table_name,
            "duplicates_detected": self.duplicates_detected,
            "rows_rewritten": self.rows_rewritten,
            "rows_purged": self.rows_purged,
            "redirects": self.redirects,
            "rows_normalized": self.rows_normalized,
        }


@dataclass
class TableReport:
    """Per-table rewrite counts."""

    table_name: str
    rows_rewritten: int = 0
    redirects: int = 0


@dataclass
class ReconciliationReport:
    """Results from one reconcile() run."""

    run_id: str
    dry_run: bool = False
    committed: bool = False
    started_at: datetime | None = None
    completed_at: datetime | None = None
    entities: dict[str, EntityReport] = field(default_factory=dict)
    tables: dict[str, TableReport] = field(default_factory=dict)
    events: list[StageEvent] = field(default_factory=list)

    @property
    def total_duplicates(self) -> int:
        return sum(e.duplicates_detected for e in self.entities.values())

    @property
    def total_rewritten(self) -> int:
        return sum(t.rows_rewritten for t in self.tables.values())

    @property
    def total_purged(self) -> int:
        return sum(e.rows_purged for e in self.entities.values())

    @property
    def is_noop(self) -> bool:
        """True when the store was already clean (e.g. a second run)."""
        return (
            self.total_duplicates == 0
            and self.total_rewritten == 0
            and self.total_purged == 0
            and not any(e.rows_normalized for e in self.entities.values())
        )

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "dry_run": self.dry_run,
            "committed": self.committed,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "entities": [e.to_dict() for e in self.entities.values()],
            "tables": [
                {"table_name": t.table_name, "rows_rewritten": t.rows_rewritten, "redirects": t.redirects}
                for t in self.tables.values()
            ],
            "events": [e.to_dict() for e in self.events],
        }
