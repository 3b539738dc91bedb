"""Target store connections (PostgreSQL / SQL Server via pyodbc, Oracle via oracledb).

Every connection returned here is transactional (autocommit off): the repair
is a single all-or-nothing unit of work and the caller owns COMMIT/ROLLBACK.
"""

from __future__ import annotations

import logging
import sqlite3
import time

import config
from dialects import Dialect, DriverFamily, get_dialect

logger = logging.getLogger(__name__)


def _port(dialect: Dialect) -> int | None:
    return config.DB_PORT or dialect.default_port


def _pyodbc_connection_string(dialect: Dialect) -> str:
    if dialect.name == "sqlserver":
        return (
            f"DRIVER={{{config.ODBC_DRIVER}}};"
            f"SERVER={config.DB_HOST},{_port(dialect)};"
            f"DATABASE={config.DB_NAME};"
            f"UID={config.DB_USER};"
            f"PWD={config.DB_PASSWORD};"
            "TrustServerCertificate=yes;"
        )
    return (
        f"DRIVER={{{config.POSTGRES_ODBC_DRIVER}}};"
        f"SERVER={config.DB_HOST};"
        f"PORT={_port(dialect)};"
        f"DATABASE={config.DB_NAME};"
        f"UID={config.DB_USER};"
        f"PWD={config.DB_PASSWORD};"
    )


def _oracle_connection(dialect: Dialect):
    import oracledb

    if config.ORACLE_CLIENT_DIR:
        oracledb.init_oracle_client(lib_dir=config.ORACLE_CLIENT_DIR)
    conn = oracledb.connect(
        user=config.DB_USER,
        password=config.DB_PASSWORD,
        dsn=f"{config.DB_HOST}:{_port(dialect)}/{config.DB_NAME}",
    )
    conn.autocommit = False
    return conn


def get_connection(dialect_name: str | None = None):
    """Open a fresh transactional connection for the configured dialect.

    Args:
        dialect_name: Dialect registry name. Defaults to ``config.DB_DIALECT``.

    Returns:
        A DB-API 2.0 connection with autocommit disabled.
    """
    dialect = get_dialect(dialect_name or config.DB_DIALECT)
    start = time.monotonic()

    if dialect.driver is DriverFamily.PYODBC:
        import pyodbc

        conn = pyodbc.connect(_pyodbc_connection_string(dialect), autocommit=False)
    elif dialect.driver is DriverFamily.ORACLEDB:
        conn = _oracle_connection(dialect)
    else:
        if not config.SQLITE_PATH:
            raise ValueError("SQLITE_PATH must be set for the sqlite dialect")
        conn = sqlite3.connect(config.SQLITE_PATH)

    logger.info(
        "Connected to %s (%s) in %.1f ms",
        config.DB_NAME if dialect.driver is not DriverFamily.SQLITE else config.SQLITE_PATH,
        dialect.name,
        (time.monotonic() - start) * 1000,
    )
    return conn
