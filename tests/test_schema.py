"""Tests for chatplayer.storage.schema.

Covers version detection, convergence from every starting version, and
failure handling.
"""

import sqlite3
from unittest.mock import patch

import pytest

from chatplayer.protocols import SchemaConvergenceError
from chatplayer.storage.schema import (
    ALLOWED_TABLES,
    SCHEMA_STEPS,
    SCHEMA_V1,
    SCHEMA_VERSION,
    SchemaStep,
    converge,
    detect_version,
    get_columns,
    table_exists,
    validate_table_name,
)


def _connect():
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    return conn


def _v1_store():
    conn = _connect()
    conn.executescript(SCHEMA_V1)
    return conn


def _structure(conn):
    """Tables and their columns, for comparing final states."""
    tables = sorted(
        r[0]
        for r in conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%'"
        )
    )
    return {t: sorted(get_columns(conn, t)) for t in tables}


class TestValidateTableName:
    def test_valid_table_names(self):
        for table in ALLOWED_TABLES:
            assert validate_table_name(table) == table

    def test_invalid_table_name_raises(self):
        with pytest.raises(ValueError, match="Invalid table name"):
            validate_table_name("not_a_table")

    def test_sql_injection_attempt(self):
        with pytest.raises(ValueError):
            validate_table_name("message; DROP TABLE message")


class TestRegistry:
    def test_steps_are_consecutive(self):
        versions = [step.version for step in SCHEMA_STEPS]
        assert versions == list(range(1, SCHEMA_VERSION + 1))

    def test_latest_version_is_two(self):
        assert SCHEMA_VERSION == 2


class TestDetectVersion:
    def test_empty_store_is_version_zero(self):
        assert detect_version(_connect()) == 0

    def test_v1_tables_without_config_is_version_one(self):
        assert detect_version(_v1_store()) == 1

    def test_partial_v1_store_is_version_zero(self):
        conn = _connect()
        conn.execute("CREATE TABLE conversation (id INTEGER PRIMARY KEY, title TEXT, key TEXT)")
        assert detect_version(conn) == 0

    def test_config_row_is_ground_truth(self):
        conn = _v1_store()
        conn.execute("CREATE TABLE config (version INT NOT NULL PRIMARY KEY)")
        conn.execute("INSERT INTO config (version) VALUES (2)")
        assert detect_version(conn) == 2

    def test_config_table_without_row_falls_back_to_v1(self):
        conn = _v1_store()
        conn.execute("CREATE TABLE config (version INT NOT NULL PRIMARY KEY)")
        assert detect_version(conn) == 1


class TestConverge:
    def test_fresh_store_reaches_latest(self):
        conn = _connect()
        assert converge(conn) == SCHEMA_VERSION
        for table in ("conversation", "message", "error", "config"):
            assert table_exists(conn, table)
        assert "topic" in get_columns(conn, "conversation")
        assert conn.execute("SELECT version FROM config").fetchall()[0][0] == SCHEMA_VERSION

    def test_v1_store_reaches_latest(self):
        conn = _v1_store()
        assert converge(conn) == SCHEMA_VERSION
        assert detect_version(conn) == SCHEMA_VERSION

    def test_fresh_and_v1_end_in_same_structure(self):
        fresh = _connect()
        converge(fresh)
        upgraded = _v1_store()
        converge(upgraded)
        assert _structure(fresh) == _structure(upgraded)

    def test_idempotent(self):
        conn = _connect()
        converge(conn)
        before = _structure(conn)
        assert converge(conn) == SCHEMA_VERSION
        assert converge(conn) == SCHEMA_VERSION
        assert _structure(conn) == before
        assert conn.execute("SELECT COUNT(*) FROM config").fetchone()[0] == 1

    def test_v1_data_survives_upgrade(self):
        conn = _v1_store()
        conn.execute("INSERT INTO conversation (title, key) VALUES ('old', 'k1')")
        conn.execute(
            "INSERT INTO message (conversation_id, role, content, prompt_tokens, completion_tokens)"
            " VALUES (1, 'user', 'hello', 0, 0)"
        )
        conn.commit()
        converge(conn)
        row = conn.execute("SELECT title, key, topic FROM conversation").fetchone()
        assert (row["title"], row["key"], row["topic"]) == ("old", "k1", 0)
        assert conn.execute("SELECT COUNT(*) FROM message").fetchone()[0] == 1

    def test_interrupted_v2_upgrade_is_completed(self):
        conn = _v1_store()
        conn.execute("CREATE TABLE config (version INT NOT NULL PRIMARY KEY)")
        conn.execute("ALTER TABLE conversation ADD COLUMN topic INTEGER DEFAULT 0")
        conn.commit()
        assert converge(conn) == 2
        assert detect_version(conn) == 2

    def test_applies_each_missing_step_in_order(self):
        conn = _connect()
        applied = []
        steps = [
            SchemaStep(
                s.version,
                s.description,
                s.detect,
                (lambda step: lambda c: (applied.append(step.version), step.apply(c)))(s),
            )
            for s in SCHEMA_STEPS
        ]
        with patch("chatplayer.storage.schema.SCHEMA_STEPS", steps):
            converge(conn)
        assert applied == [1, 2]

    def test_only_missing_steps_run_from_v1(self):
        conn = _v1_store()
        applied = []
        steps = [
            SchemaStep(
                s.version,
                s.description,
                s.detect,
                (lambda step: lambda c: (applied.append(step.version), step.apply(c)))(s),
            )
            for s in SCHEMA_STEPS
        ]
        with patch("chatplayer.storage.schema.SCHEMA_STEPS", steps):
            converge(conn)
        assert applied == [2]

    def test_newer_store_is_rejected(self):
        conn = _v1_store()
        conn.execute("CREATE TABLE config (version INT NOT NULL PRIMARY KEY)")
        conn.execute("INSERT INTO config (version) VALUES (99)")
        with pytest.raises(SchemaConvergenceError, match="newer"):
            converge(conn)

    def test_storage_failure_is_surfaced(self):
        conn = _v1_store()

        def broken_apply(c):
            c.execute("ALTER TABLE no_such_table ADD COLUMN x INTEGER")

        steps = [SCHEMA_STEPS[0], SchemaStep(2, "broken", SCHEMA_STEPS[1].detect, broken_apply)]
        with patch("chatplayer.storage.schema.SCHEMA_STEPS", steps):
            with pytest.raises(SchemaConvergenceError) as exc_info:
                converge(conn)
        assert exc_info.value.from_version == 1
        assert isinstance(exc_info.value.__cause__, sqlite3.Error)
