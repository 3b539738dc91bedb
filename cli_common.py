"""CLI common boilerplate: logging, store setup and report output.

Import this module BEFORE any other project imports in main_*.py files.
Module-level code sets MALLOC_ARENA_MAX and sys.path.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path

# M-1: Snapshots of large property tables are held in Polars frames for the
# whole run. MALLOC_ARENA_MAX=2 limits glibc arena fragmentation (Polars #23128).
MALLOC_ARENA_EXTERNALLY_SET = "MALLOC_ARENA_MAX" in os.environ
os.environ.setdefault("MALLOC_ARENA_MAX", "2")

# Ensure project root is on sys.path for imports
sys.path.insert(0, str(Path(__file__).parent))

import config
from observability.log_handler import RunLogHandler

logger = logging.getLogger(__name__)


def setup_logging(run_id: str) -> RunLogHandler:
    """Configure logging: StreamHandler + RunLogHandler.

    Args:
        run_id: Repair run id; names the JSON-lines log file.

    Returns:
        The RunLogHandler instance (for flush/context updates).
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, config.LOG_LEVEL, logging.INFO))

    # Console handler
    console = logging.StreamHandler(sys.stdout)
    console.setLevel(logging.INFO)
    console.setFormatter(
        logging.Formatter("%(asctime)s [%(levelname)s] %(name)s - %(message)s")
    )
    root.addHandler(console)

    # Run log file
    run_handler = RunLogHandler(
        config.RUN_LOG_DIR / f"{run_id}.jsonl",
        level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    )
    run_handler.set_context(run_id=run_id)
    root.addHandler(run_handler)

    return run_handler


def warn_malloc_arena() -> None:
    """W-4: Warn if MALLOC_ARENA_MAX was not set before the interpreter started."""
    if not MALLOC_ARENA_EXTERNALLY_SET:
        logger.warning(
            "W-4: MALLOC_ARENA_MAX was not set in the external environment. "
            "Set MALLOC_ARENA_MAX=2 in the shell wrapper when repairing large "
            "property tables (Polars issue #23128)."
        )


def open_store(dialect_name: str | None = None, schema: str | None = None):
    """Open a connection for ``dialect_name`` and wrap it in a Store.

    pyodbc and oracledb are imported only when their dialect connects, so
    sqlite rehearsal runs need neither driver installed.
    """
    from connections import get_connection
    from dialects import get_dialect
    from reconciliation.store import Store

    dialect = get_dialect(dialect_name or config.DB_DIALECT)
    conn = get_connection(dialect.name)
    schema = config.DB_SCHEMA if schema is None else schema
    logger.info("Opened %s store (schema=%s)", dialect.name, schema or "<session default>")
    return Store(conn, dialect, schema=schema)


def write_report(report, path: Path) -> None:
    """Write the reconciliation report as JSON."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(report.to_dict(), indent=2), encoding="utf-8")
    logger.info("Report written to %s", path)


def format_report(report) -> str:
    """Fixed-width summary table of a reconciliation report."""
    lines = [
        f"\n{'Entity':<12} {'Table':<24} {'Dups':>6} {'Rewritten':>10} "
        f"{'Redirects':>10} {'Normalized':>11} {'Purged':>8}",
        "-" * 87,
    ]
    for e in report.entities.values():
        lines.append(
            f"{e.entity:<12} {e.table_name:<24} {e.duplicates_detected:>6} "
            f"{e.rows_rewritten:>10} {e.redirects:>10} {e.rows_normalized:>11} {e.rows_purged:>8}"
        )
    lines.append("")
    lines.append(f"{'Table':<24} {'Rows rewritten':>15}")
    lines.append("-" * 40)
    for t in report.tables.values():
        lines.append(f"{t.table_name:<24} {t.rows_rewritten:>15}")
    status = "ROLLED BACK (dry run)" if report.dry_run else ("COMMITTED" if report.committed else "NOT COMMITTED")
    lines.append(f"\nRun {report.run_id}: {status}{' - nothing to repair' if report.is_noop else ''}")
    return "\n".join(lines)
