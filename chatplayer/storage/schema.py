"""Database schema and migration logic for chatplayer SQLite storage.

Contains:
- Table allowlist (ALLOWED_TABLES, validate_table_name)
- Per-version DDL and detection (SCHEMA_STEPS)
- Schema version tracking (SCHEMA_VERSION, detect_version)
- Convergence driver (converge)

Version 1 has no version row: a store with the v1 tables and no ``config``
table is version 1. From version 2 on the ``config`` table holds the
version number.
"""

import logging
import sqlite3
from dataclasses import dataclass
from typing import Callable, List, Set

from chatplayer.protocols import SchemaConvergenceError

logger = logging.getLogger(__name__)

# Schema version for migrations
SCHEMA_VERSION = 2  # v2: config table (explicit version row), conversation.topic

# Allowed table names for SQL queries (security: prevents SQL injection via table names)
ALLOWED_TABLES = frozenset(
    {
        "conversation",
        "message",
        "error",
        "config",
    }
)

V1_TABLES = ("error", "conversation", "message")


def validate_table_name(table: str) -> str:
    """Validate table name against allowlist to prevent SQL injection.

    Raises:
        ValueError: If table name is not in allowlist
    """
    if table not in ALLOWED_TABLES:
        raise ValueError(f"Invalid table name: {table}")
    return table


def table_exists(conn: sqlite3.Connection, table: str) -> bool:
    row = conn.execute(
        "SELECT COUNT(*) FROM sqlite_master WHERE type = 'table' AND name = ?",
        (table,),
    ).fetchone()
    return row[0] > 0


def get_columns(conn: sqlite3.Connection, table: str) -> Set[str]:
    validate_table_name(table)
    cols = conn.execute(f"PRAGMA table_info({table})").fetchall()
    return {c[1] for c in cols}


# =============================================================================
# Version 1: conversations, messages, error log
# =============================================================================

SCHEMA_V1 = """
-- Failed exchanges, for diagnostics
CREATE TABLE IF NOT EXISTS error (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    key VARCHAR(512) NOT NULL,
    context TEXT,           -- JSON array of the messages about to be sent
    error TEXT,             -- raw error text
    message TEXT,
    code VARCHAR(128),
    type VARCHAR(128),
    param TEXT,
    updateat DATETIME DEFAULT CURRENT_TIMESTAMP
);

-- Conversations, scoped to the API key that created them
CREATE TABLE IF NOT EXISTS conversation (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title VARCHAR(512) NOT NULL,
    key VARCHAR(512) NOT NULL,
    updateat DATETIME DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS message (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    conversation_id INTEGER NOT NULL,
    role VARCHAR(32) NOT NULL,
    content TEXT,
    prompt_tokens INTEGER NOT NULL,
    completion_tokens INTEGER NOT NULL,
    updateat DATETIME DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (conversation_id) REFERENCES conversation (id)
);
"""


def detect_v1(conn: sqlite3.Connection) -> int:
    """1 when every v1 table exists, 0 for an empty (or partial) store."""
    if all(table_exists(conn, t) for t in V1_TABLES):
        return 1
    return 0


def apply_v1(conn: sqlite3.Connection) -> None:
    conn.executescript(SCHEMA_V1)


# =============================================================================
# Version 2: config table with explicit version row, conversation.topic
# =============================================================================

SCHEMA_V2_CONFIG = """
CREATE TABLE IF NOT EXISTS config (
    version INT NOT NULL PRIMARY KEY
);
"""


def detect_v2(conn: sqlite3.Connection) -> int:
    """Read the version row; without a ``config`` table the store predates v2."""
    if not table_exists(conn, "config"):
        return detect_v1(conn)
    row = conn.execute("SELECT version FROM config LIMIT 1").fetchone()
    if row is None:
        # Interrupted v2 upgrade: table created, row never written
        return detect_v1(conn)
    return int(row[0])


def apply_v2(conn: sqlite3.Connection) -> None:
    conn.executescript(SCHEMA_V2_CONFIG)
    if "topic" not in get_columns(conn, "conversation"):
        conn.execute("ALTER TABLE conversation ADD COLUMN topic INTEGER DEFAULT 0")
        logger.info("v2: Added topic column to conversation")


# =============================================================================
# Registry and driver
# =============================================================================


@dataclass(frozen=True)
class SchemaStep:
    """One schema version.

    ``apply`` upgrades a store at ``version - 1`` to ``version``. It may
    assume the predecessor's tables exist.
    """

    version: int
    description: str
    detect: Callable[[sqlite3.Connection], int]
    apply: Callable[[sqlite3.Connection], None]


SCHEMA_STEPS: List[SchemaStep] = [
    SchemaStep(1, "conversation, message and error tables", detect_v1, apply_v1),
    SchemaStep(2, "config table and conversation.topic", detect_v2, apply_v2),
]


def detect_version(conn: sqlite3.Connection) -> int:
    """Ask the latest version which version the store is at."""
    return SCHEMA_STEPS[-1].detect(conn)


def _record_version(conn: sqlite3.Connection, version: int) -> None:
    if not table_exists(conn, "config"):
        return
    conn.execute("DELETE FROM config")
    conn.execute("INSERT INTO config (version) VALUES (?)", (version,))


def converge(conn: sqlite3.Connection) -> int:
    """Bring the store to SCHEMA_VERSION, one version at a time.

    Safe to call repeatedly; a converged store is left untouched.

    Returns:
        The schema version after convergence.

    Raises:
        SchemaConvergenceError: on any storage failure, or when the store was
            written by a newer release.
    """
    current = None
    try:
        current = detect_version(conn)
        if current == SCHEMA_VERSION:
            logger.debug(f"Schema already at v{current}")
            return current
        if current > SCHEMA_VERSION:
            raise SchemaConvergenceError(
                f"Database schema v{current} is newer than supported v{SCHEMA_VERSION}",
                from_version=current,
            )

        start = current
        for step in SCHEMA_STEPS:
            if step.version <= current:
                continue
            if step.version != current + 1:
                raise SchemaConvergenceError(
                    f"No migration path from v{current} to v{step.version}",
                    from_version=start,
                )
            step.apply(conn)
            _record_version(conn, step.version)
            conn.commit()
            current = step.version
            logger.info(f"Schema migrated to v{current}: {step.description}")

        logger.info(f"Schema converged from v{start} to v{current}")
        return current
    except sqlite3.Error as e:
        conn.rollback()
        raise SchemaConvergenceError(
            f"Schema migration failed at v{current}: {e}", from_version=current
        ) from e
