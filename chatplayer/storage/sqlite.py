"""SQLite storage backend for chatplayer.

One process, one connection. The schema is brought up to date by
``converge_schema()`` before any other operation is used.
"""

import logging
import sqlite3
from pathlib import Path
from typing import List, Optional, Sequence, Set, Union

from chatplayer.protocols import StoreError
from chatplayer.types import (
    CompletionError,
    CompletionResponse,
    ConversationListing,
    Message,
    SavedMessage,
)

from . import conversations_crud
from .error_log import record_error as _record_error
from .schema import SCHEMA_VERSION, converge, detect_version

logger = logging.getLogger(__name__)

MEMORY_DB = ":memory:"


class SQLiteStorage:
    """Local conversation store.

    Usage::

        with SQLiteStorage(Path("ai.db")) as storage:
            storage.converge_schema()
            cid = storage.create_conversation("hello", api_key)
    """

    def __init__(self, db_path: Union[Path, str] = MEMORY_DB):
        self.db_path = db_path if db_path == MEMORY_DB else Path(db_path)
        self._conn = self._open()
        self.schema_version: Optional[int] = None

    def _open(self) -> sqlite3.Connection:
        try:
            if isinstance(self.db_path, Path):
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.db_path))
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
        except (OSError, sqlite3.Error) as e:
            logger.error(f"Invalid database path {self.db_path}: {e}")
            raise StoreError(f"Could not open database {self.db_path}: {e}") from e
        return conn

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "SQLiteStorage":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # === Schema ===

    def converge_schema(self) -> int:
        """Run pending migrations. Raises SchemaConvergenceError on failure."""
        self.schema_version = converge(self._conn)
        return self.schema_version

    def detect_schema_version(self) -> int:
        return detect_version(self._conn)

    @property
    def is_converged(self) -> bool:
        return self.schema_version == SCHEMA_VERSION

    # === Conversations ===

    def create_conversation(self, title: str, owner_key: str) -> int:
        conversation_id = conversations_crud.create_conversation(self._conn, title, owner_key)
        logger.debug(f"Created conversation {conversation_id}")
        return conversation_id

    def list_conversations(self, owner_key: str) -> List[ConversationListing]:
        return conversations_crud.list_conversations(self._conn, owner_key)

    def get_conversation_ids(self, owner_key: str) -> Set[int]:
        return conversations_crud.get_conversation_ids(self._conn, owner_key)

    # === Messages ===

    def list_messages(self, conversation_id: int) -> List[SavedMessage]:
        return conversations_crud.list_messages(self._conn, conversation_id)

    def append_user_message(self, conversation_id: int, content: str) -> int:
        return conversations_crud.append_user_message(self._conn, conversation_id, content)

    def append_assistant_message(self, conversation_id: int, response: CompletionResponse) -> int:
        return conversations_crud.append_assistant_message(self._conn, conversation_id, response)

    # === Error log ===

    def record_error(
        self,
        owner_key: str,
        context: Sequence[Message],
        raw_error: str,
        api_error: Optional[CompletionError] = None,
    ) -> int:
        return _record_error(self._conn, owner_key, context, raw_error, api_error)
