"""CLI entry point for the duplicate repair.

Usage:
    python3 main_reconcile.py --dry-run
    python3 main_reconcile.py --dialect oracle --schema alfresco
    python3 main_reconcile.py --dialect sqlite --report-file repair_report.json
    python3 main_reconcile.py --list-tables
"""

from __future__ import annotations

# L-1: cli_common sets MALLOC_ARENA_MAX (M-1) and sys.path; must be imported
# before any other project modules.
import cli_common  # noqa: F401

import argparse
import logging
import sys
from pathlib import Path

from dialects import available_dialects
from observability.event_tracker import RepairEventTracker, new_run_id
from reconciliation import DEFAULT_CATALOG, ReconciliationError, reconcile


def main() -> None:
    parser = argparse.ArgumentParser(description="Property/audit duplicate repair")
    parser.add_argument("--dialect", type=str, choices=available_dialects(), help="Target store dialect (default: DB_DIALECT)")
    parser.add_argument("--schema", type=str, help="Schema prefix for every table (default: DB_SCHEMA)")
    parser.add_argument("--dry-run", action="store_true", help="Run every stage, then roll back")
    parser.add_argument("--report-file", type=Path, help="Write the JSON report to this path")
    parser.add_argument("--list-tables", action="store_true", help="List catalog tables in repair order and exit")
    args = parser.parse_args()

    logger = logging.getLogger(__name__)

    if args.list_tables:
        print(f"\n{'Order':<6} {'Table':<24} {'Entity':<12} {'References'}")
        print("-" * 80)
        for i, table in enumerate(DEFAULT_CATALOG.tables(), start=1):
            owner = DEFAULT_CATALOG.owner(table.name)
            refs = ", ".join(f"{r.column}->{r.target}" for r in table.references)
            print(f"{i:<6} {table.name:<24} {owner.name if owner else '-':<12} {refs}")
        print(f"\nTotal: {len(DEFAULT_CATALOG.tables())} tables")
        return

    run_id = new_run_id()
    run_handler = cli_common.setup_logging(run_id)
    tracker = RepairEventTracker(run_id=run_id, log_handler=run_handler)

    # W-4: Warn if MALLOC_ARENA_MAX was not set in the external environment.
    cli_common.warn_malloc_arena()

    store = cli_common.open_store(args.dialect, args.schema)
    exit_code = 0
    try:
        report = reconcile(store, dry_run=args.dry_run, tracker=tracker)
        print(cli_common.format_report(report))
        if args.report_file:
            cli_common.write_report(report, args.report_file)
    except ReconciliationError as e:
        logger.error("Repair aborted, nothing was changed: %s", e)
        exit_code = 1
    finally:
        store.close()
        run_handler.flush()

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
