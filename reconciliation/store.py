"""Store: thin transactional wrapper around a DB-API 2.0 connection.

Reads come back as polars DataFrames typed from the catalog's column
declarations. Writes are parameterized UPDATE/DELETE statements sent through
executemany() in config.WRITE_BATCH_SIZE chunks. All reads and writes go
through the same connection, so every snapshot taken inside
Store.transaction() sees the run's own uncommitted rewrites.
"""

from __future__ import annotations

import logging
import re
from contextlib import contextmanager
from typing import TYPE_CHECKING, Iterable, Sequence

import polars as pl

import config

if TYPE_CHECKING:
    from dialects import Dialect
    from reconciliation.catalog import TableSpec

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# H-1: SQL identifier validation
# ---------------------------------------------------------------------------
# Identifiers are never quoted: Oracle folds unquoted names to upper case and
# would not find a quoted lower-case "alf_prop_class". Every table and column
# name must instead be a plain identifier before it reaches an f-string.

_MAX_IDENTIFIER_LENGTH = 128
_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_$]*$")


def safe_identifier(name: str) -> str:
    """H-1: Validate a table or column name for use in dynamic SQL.

    Args:
        name: Raw identifier (e.g. ``alf_prop_value``, ``long_value``).

    Returns:
        The identifier, unchanged.

    Raises:
        ValueError: If the name is empty, too long, or not a plain identifier.
    """
    if not name:
        raise ValueError("H-1: Identifier cannot be empty")
    if len(name) > _MAX_IDENTIFIER_LENGTH:
        raise ValueError(
            f"H-1: Identifier exceeds {_MAX_IDENTIFIER_LENGTH} characters "
            f"(len={len(name)}): {name[:50]}..."
        )
    if not _IDENTIFIER_RE.match(name):
        raise ValueError(f"H-1: Not a plain SQL identifier: {name!r}")
    return name


def qualify_table(table: str, schema: str | None = None) -> str:
    """H-1: Build ``schema.table`` (or bare ``table``) from validated parts."""
    if schema:
        return f"{safe_identifier(schema)}.{safe_identifier(table)}"
    return safe_identifier(table)


class Store:
    """A relational store the engine has exclusive access to.

    Usage::

        store = Store(conn, get_dialect("oracle"), schema="alfresco")
        with store.transaction(commit=not dry_run):
            df = store.snapshot(table_spec)
            store.update_rows(table_spec, ["long_value"], df_rewrites)
    """

    def __init__(
        self,
        connection,
        dialect: Dialect,
        schema: str | None = None,
        batch_size: int | None = None,
    ) -> None:
        self._conn = connection
        self.dialect = dialect
        self.schema = schema or None
        self.batch_size = batch_size or config.WRITE_BATCH_SIZE

    def qualified(self, table_name: str) -> str:
        return qualify_table(table_name, self.schema)

    def snapshot(self, table: TableSpec) -> pl.DataFrame:
        """Read every declared column of ``table`` into a DataFrame."""
        columns = list(table.columns)
        select_list = ", ".join(safe_identifier(c) for c in columns)
        cursor = self._conn.cursor()
        try:
            cursor.execute(f"SELECT {select_list} FROM {self.qualified(table.name)}")
            rows = [tuple(row) for row in cursor.fetchall()]
        finally:
            cursor.close()

        schema = dict(table.columns)
        if not rows:
            return pl.DataFrame(schema=schema)
        return pl.DataFrame(rows, schema=schema, orient="row", strict=False)

    def executemany(self, sql: str, params: Sequence[tuple]) -> int:
        """Run ``sql`` once per parameter tuple, in batches. Returns rows affected."""
        affected = 0
        cursor = self._conn.cursor()
        try:
            for start in range(0, len(params), self.batch_size):
                batch = list(params[start:start + self.batch_size])
                cursor.executemany(sql, batch)
                # Some ODBC drivers report -1 for executemany
                affected += cursor.rowcount if cursor.rowcount >= 0 else len(batch)
        finally:
            cursor.close()
        return affected

    def update_rows(
        self,
        table: TableSpec,
        set_columns: Sequence[str],
        rows: pl.DataFrame,
    ) -> int:
        """UPDATE ``set_columns`` of each row in ``rows``, matched on the table's row key.

        ``rows`` must carry the key columns and the new values under the
        column names being set. All columns of a row change in one statement.
        """
        if rows.is_empty():
            return 0
        key_columns = list(table.key_columns)
        set_columns = list(set_columns)
        placeholders = self.dialect.placeholders(len(set_columns) + len(key_columns))
        assignments = ", ".join(
            f"{safe_identifier(c)} = {p}" for c, p in zip(set_columns, placeholders)
        )
        predicate = " AND ".join(
            f"{safe_identifier(c)} = {p}"
            for c, p in zip(key_columns, placeholders[len(set_columns):])
        )
        sql = f"UPDATE {self.qualified(table.name)} SET {assignments} WHERE {predicate}"
        params = list(rows.select(set_columns + key_columns).iter_rows())
        logger.debug("%s x %d", sql, len(params))
        return self.executemany(sql, params)

    def delete_rows(self, table: TableSpec, column: str, ids: Iterable[int]) -> int:
        """DELETE rows of ``table`` whose ``column`` is one of ``ids``."""
        params = [(int(i),) for i in ids]
        if not params:
            return 0
        placeholder = self.dialect.placeholders(1)[0]
        sql = f"DELETE FROM {self.qualified(table.name)} WHERE {safe_identifier(column)} = {placeholder}"
        logger.debug("%s x %d", sql, len(params))
        return self.executemany(sql, params)

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self, commit: bool = True):
        """Scope one all-or-nothing unit of work.

        Any exception rolls back and propagates. With ``commit=False`` the
        work is rolled back even on success (dry run).
        """
        try:
            yield self
        except BaseException:
            logger.error("Rolling back repair transaction")
            self._conn.rollback()
            raise
        if commit:
            self._conn.commit()
            logger.info("Repair transaction committed")
        else:
            self._conn.rollback()
            logger.info("Dry run: repair transaction rolled back")
