"""chatplayer storage.

Local conversation store on SQLite, with versioned schema migrations and an
error log for failed exchanges.
"""

from .schema import (
    ALLOWED_TABLES,
    SCHEMA_STEPS,
    SCHEMA_VERSION,
    SchemaStep,
    converge,
    detect_version,
    validate_table_name,
)
from .sqlite import SQLiteStorage

__all__ = [
    "ALLOWED_TABLES",
    "SCHEMA_STEPS",
    "SCHEMA_VERSION",
    "SQLiteStorage",
    "SchemaStep",
    "converge",
    "detect_version",
    "validate_table_name",
]
