"""One-time repair of duplicate rows in the property and audit tables.

Rows that should be unique on a natural key were duplicated after the CRC
helper changed how string CRCs were computed. The repair keeps the lowest id
of each natural key (canonical), retargets every reference at the higher id
(duplicate) to it, then deletes the duplicate. It cascades through entities
whose natural keys embed other entities' ids, and runs inside one transaction.

Usage:
    python3 -c "
    from reconciliation import Store, reconcile
    from dialects import get_dialect
    import connections
    store = Store(connections.get_connection('oracle'), get_dialect('oracle'), schema='alfresco')
    report = reconcile(store, dry_run=True)
    print(report.to_dict())
    "

Intended to be run once per repository, dry run first.
"""

# --- Models ---
from reconciliation.models import (
    EntityReport,
    ReconciliationReport,
    RemapEntry,
    RemapSet,
    TablePlan,
    TableReport,
    Verdict,
)

# --- Errors ---
from reconciliation.errors import (
    AmbiguousNaturalKey,
    ReconciliationError,
    ReferentialIntegrityViolation,
    ResidualDuplicates,
    UnresolvedTransitiveReference,
    UnsafeRewriteWithoutCanonicalTarget,
)

# --- Catalog ---
from reconciliation.catalog import (
    DEFAULT_CATALOG,
    Catalog,
    EntitySpec,
    Normalization,
    Reference,
    TableSpec,
    UniquenessScope,
    build_default_catalog,
)

# --- Store ---
from reconciliation.store import Store, safe_identifier

# --- Stages ---
from reconciliation.detector import detect_duplicates, find_duplicate_groups
from reconciliation.mapper import build_remap, resolve_references
from reconciliation.classifier import classify_normalizations, classify_table
from reconciliation.rewriter import apply_plan
from reconciliation.purger import check_no_references, purge_entity
from reconciliation.verify import verify_repair

# --- Engine ---
from reconciliation.engine import classify_all, map_entities, reconcile

__all__ = [
    # Models
    "RemapEntry",
    "RemapSet",
    "Verdict",
    "TablePlan",
    "EntityReport",
    "TableReport",
    "ReconciliationReport",
    # Errors
    "ReconciliationError",
    "AmbiguousNaturalKey",
    "UnresolvedTransitiveReference",
    "UnsafeRewriteWithoutCanonicalTarget",
    "ReferentialIntegrityViolation",
    "ResidualDuplicates",
    # Catalog
    "Catalog",
    "EntitySpec",
    "TableSpec",
    "Reference",
    "UniquenessScope",
    "Normalization",
    "DEFAULT_CATALOG",
    "build_default_catalog",
    # Store
    "Store",
    "safe_identifier",
    # Stages
    "find_duplicate_groups",
    "detect_duplicates",
    "resolve_references",
    "build_remap",
    "classify_table",
    "classify_normalizations",
    "apply_plan",
    "check_no_references",
    "purge_entity",
    "verify_repair",
    # Engine
    "map_entities",
    "classify_all",
    "reconcile",
]
