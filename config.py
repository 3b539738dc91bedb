"""Environment variables, connection settings, and repair-run constants."""

import os
from pathlib import Path

from dotenv import load_dotenv

# Operators keep one .env per target repository; override with REPAIR_ENV_FILE.
load_dotenv(os.getenv("REPAIR_ENV_FILE", ".env"))

# --- Target store ---
# One of: postgresql, sqlserver, oracle, sqlite (see dialects.py)
DB_DIALECT = os.getenv("DB_DIALECT", "postgresql")
DB_HOST = os.getenv("DB_HOST", "")
# Empty = the dialect's default port (5432, 1433 or 1521, see dialects.py)
DB_PORT = int(os.getenv("DB_PORT")) if os.getenv("DB_PORT") else None
DB_NAME = os.getenv("DB_NAME", "alfresco")
DB_USER = os.getenv("DB_USER", "")
DB_PASSWORD = os.getenv("DB_PASSWORD", "")

# Schema prefix for every table (the Oracle variant of the repair ran with
# "alfresco."). Empty string = unqualified names resolved by the session.
DB_SCHEMA = os.getenv("DB_SCHEMA", "")

# Path to a SQLite file for rehearsal runs against a local extract.
SQLITE_PATH = os.getenv("SQLITE_PATH", "")

# --- ODBC Drivers ---
ODBC_DRIVER = os.getenv("ODBC_DRIVER", "ODBC Driver 18 for SQL Server")
POSTGRES_ODBC_DRIVER = os.getenv("POSTGRES_ODBC_DRIVER", "PostgreSQL Unicode")

# Oracle Instant Client path. Empty = python-oracledb thin mode.
ORACLE_CLIENT_DIR = os.getenv("ORACLE_CLIENT_DIR", "")

# ---------------------------------------------------------------------------
# Write batching
# ---------------------------------------------------------------------------
# Rows per executemany() call for UPDATE/DELETE. The whole run is one
# transaction regardless; batching only bounds driver-side parameter arrays.
WRITE_BATCH_SIZE = int(os.getenv("WRITE_BATCH_SIZE", "1000"))

# Number of offending keys quoted in a fatal error message.
ERROR_SAMPLE_SIZE = int(os.getenv("ERROR_SAMPLE_SIZE", "10"))

# --- Logging ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
RUN_LOG_DIR = Path(os.getenv("RUN_LOG_DIR", "./repair_logs"))
