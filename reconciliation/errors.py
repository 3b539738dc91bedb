"""Run-aborting reconciliation errors.

Every error here is fatal: the engine lets it propagate out of the repair
transaction, which rolls back every stage already applied in the run.
"""

from __future__ import annotations


class ReconciliationError(Exception):
    """Base class for errors that abort a reconciliation run."""

    def __init__(self, subject: str, message: str, sample: list | None = None) -> None:
        self.subject = subject
        self.sample = list(sample or [])
        detail = f"{subject}: {message}"
        if self.sample:
            detail += f" (sample: {self.sample})"
        super().__init__(detail)


class AmbiguousNaturalKey(ReconciliationError):
    """More than two surrogate ids share one natural key; min/max cannot decide."""


class UnresolvedTransitiveReference(ReconciliationError):
    """A mapper needed an upstream remap set that was not built before it."""


class UnsafeRewriteWithoutCanonicalTarget(ReconciliationError):
    """A rewrite would collide on a uniqueness scope and no canonical row exists."""


class ReferentialIntegrityViolation(ReconciliationError):
    """A reference still points at an id that is scheduled for (or was) purged."""


class ResidualDuplicates(ReconciliationError):
    """Post-run verification found a repeated natural key or a surviving duplicate."""
