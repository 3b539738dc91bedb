"""Shared fixtures: an in-memory SQLite store with the production unique indexes."""

from __future__ import annotations

import sqlite3

import pytest

from dialects import get_dialect
from reconciliation.store import Store

SCHEMA = """
CREATE TABLE alf_prop_class (
    id INTEGER PRIMARY KEY,
    java_class_name TEXT NOT NULL,
    java_class_name_short TEXT NOT NULL,
    java_class_name_crc INTEGER NOT NULL
);
CREATE UNIQUE INDEX idx_alf_propc_crc ON alf_prop_class (java_class_name_crc, java_class_name_short);

CREATE TABLE alf_prop_string_value (
    id INTEGER PRIMARY KEY,
    string_value TEXT NOT NULL,
    string_end_lower TEXT NOT NULL,
    string_crc INTEGER NOT NULL
);
CREATE UNIQUE INDEX idx_alf_props_str ON alf_prop_string_value (string_end_lower, string_crc);

CREATE TABLE alf_prop_value (
    id INTEGER PRIMARY KEY,
    actual_type_id INTEGER NOT NULL,
    persisted_type INTEGER NOT NULL,
    long_value INTEGER NOT NULL
);
CREATE UNIQUE INDEX idx_alf_propv_act ON alf_prop_value (actual_type_id, long_value);

CREATE TABLE alf_prop_unique_ctx (
    id INTEGER PRIMARY KEY,
    value1_prop_id INTEGER NOT NULL,
    value2_prop_id INTEGER NOT NULL,
    value3_prop_id INTEGER NOT NULL,
    prop1_id INTEGER
);
CREATE UNIQUE INDEX idx_alf_propuctx ON alf_prop_unique_ctx (value1_prop_id, value2_prop_id, value3_prop_id);

CREATE TABLE alf_audit_app (
    id INTEGER PRIMARY KEY,
    app_name_id INTEGER NOT NULL
);
CREATE UNIQUE INDEX idx_alf_aud_app_nm ON alf_audit_app (app_name_id);

CREATE TABLE alf_prop_link (
    root_prop_id INTEGER NOT NULL,
    contained_in INTEGER NOT NULL,
    prop_index INTEGER NOT NULL,
    key_prop_id INTEGER NOT NULL,
    value_prop_id INTEGER NOT NULL,
    PRIMARY KEY (root_prop_id, contained_in, prop_index)
);

CREATE TABLE alf_audit_entry (
    id INTEGER PRIMARY KEY,
    audit_app_id INTEGER NOT NULL,
    audit_user_id INTEGER
);
"""

# Class 21 duplicates class 1 and string 11 duplicates string 10. Those two
# splits make values 31 and 35 duplicates of 30 and 34, which in turn make
# unique context 71 a duplicate of 38 and audit app 51 a duplicate of 50.
CORRUPTED = {
    "alf_prop_class": [
        (1, "java.lang.String", "String", 100),
        (2, "java.lang.Long", "Long", 200),
        (21, "java.lang.String", "String", 101),
    ],
    "alf_prop_string_value": [
        (10, "Hello", "hello", 5),
        (11, "Hello", "Hello", 5),
        (12, "World", "World", 9),
        (13, "alfresco-access", "alfresco-access", 7),
    ],
    "alf_prop_value": [
        (30, 1, 3, 10),
        (31, 1, 3, 11),
        (32, 21, 3, 12),
        (33, 2, 1, 11),
        (34, 1, 3, 13),
        (35, 21, 3, 13),
    ],
    "alf_prop_unique_ctx": [
        (38, 30, 32, 33, 40),
        (71, 31, 32, 33, 41),
        (72, 35, 33, 30, 42),
    ],
    "alf_audit_app": [
        (50, 34),
        (51, 35),
    ],
    "alf_prop_link": [
        (1, 0, 0, 31, 35),
        (1, 0, 1, 33, 32),
    ],
    "alf_audit_entry": [
        (60, 51, 31),
        (61, 50, 33),
    ],
}


def insert_rows(conn: sqlite3.Connection, data: dict[str, list[tuple]]) -> None:
    for table, rows in data.items():
        if not rows:
            continue
        marks = ", ".join("?" * len(rows[0]))
        conn.executemany(f"INSERT INTO {table} VALUES ({marks})", rows)
    conn.commit()


def fetch(conn: sqlite3.Connection, table: str, order_by: str = "id") -> list[tuple]:
    return [tuple(r) for r in conn.execute(f"SELECT * FROM {table} ORDER BY {order_by}")]


def dump(conn: sqlite3.Connection) -> dict[str, list[tuple]]:
    """Every table's rows, for before/after comparisons."""
    return {
        table: fetch(conn, table, "1, 2, 3" if table == "alf_prop_link" else "id")
        for table in CORRUPTED
    }


@pytest.fixture
def conn():
    connection = sqlite3.connect(":memory:")
    connection.executescript(SCHEMA)
    yield connection
    connection.close()


@pytest.fixture
def store(conn):
    return Store(conn, get_dialect("sqlite"))


@pytest.fixture
def corrupted_store(conn, store):
    insert_rows(conn, CORRUPTED)
    return store
