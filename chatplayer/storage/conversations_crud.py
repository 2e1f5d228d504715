"""Conversation and message operations.

All functions receive the connection explicitly. Every value goes through
SQL parameters; content is stored as given apart from whitespace trimming.
Each insert commits on its own.
"""

import contextlib
import logging
import sqlite3
from typing import Iterator, List, Set

from chatplayer.protocols import StoreError
from chatplayer.types import (
    CompletionResponse,
    ConversationListing,
    MessageRole,
    SavedMessage,
    parse_sqlite_timestamp,
)

logger = logging.getLogger(__name__)


@contextlib.contextmanager
def store_errors(conn: sqlite3.Connection, action: str) -> Iterator[None]:
    """Translate sqlite3 failures into StoreError, rolling back the open transaction."""
    try:
        yield
    except sqlite3.Error as e:
        try:
            conn.rollback()
        except sqlite3.Error as rollback_error:
            logger.warning(f"Rollback after failed {action} also failed: {rollback_error}")
        raise StoreError(f"Could not {action}: {e}") from e


def _row_to_listing(row: sqlite3.Row) -> ConversationListing:
    return ConversationListing(
        id=row["id"],
        title=row["title"],
        usage=row["usage"],
        last_update=parse_sqlite_timestamp(row["last_update"]),
    )


def _row_to_message(row: sqlite3.Row) -> SavedMessage:
    return SavedMessage(
        id=row["id"],
        conversation_id=row["conversation_id"],
        role=row["role"],
        content=row["content"] or "",
        prompt_tokens=row["prompt_tokens"],
        completion_tokens=row["completion_tokens"],
        created_at=parse_sqlite_timestamp(row["updateat"]),
    )


def create_conversation(conn: sqlite3.Connection, title: str, owner_key: str) -> int:
    """Insert a conversation owned by ``owner_key`` and return its id."""
    with store_errors(conn, "create conversation"):
        cur = conn.execute(
            "INSERT INTO conversation (title, key) VALUES (?, ?)",
            (title, owner_key),
        )
        conn.commit()
    return cur.lastrowid


def list_conversations(conn: sqlite3.Connection, owner_key: str) -> List[ConversationListing]:
    """Conversations owned by ``owner_key``, least recently active first.

    ``usage`` and ``last_update`` are aggregated from the messages on every
    read; an empty conversation reports usage 0 and its creation time.
    """
    with store_errors(conn, "list conversations"):
        rows = conn.execute(
            """
            SELECT
                a.id AS id,
                a.title AS title,
                IFNULL(SUM(b.prompt_tokens) + SUM(b.completion_tokens), 0) AS usage,
                IFNULL(MAX(b.updateat), a.updateat) AS last_update
            FROM conversation a
            LEFT JOIN message b ON a.id = b.conversation_id
            WHERE a.key = ?
            GROUP BY a.id
            ORDER BY last_update ASC, a.id ASC
            """,
            (owner_key,),
        ).fetchall()
        return [_row_to_listing(row) for row in rows]


def get_conversation_ids(conn: sqlite3.Connection, owner_key: str) -> Set[int]:
    with store_errors(conn, "list conversation ids"):
        rows = conn.execute("SELECT id FROM conversation WHERE key = ?", (owner_key,)).fetchall()
        return {row["id"] for row in rows}


def list_messages(conn: sqlite3.Connection, conversation_id: int) -> List[SavedMessage]:
    """All messages of a conversation in insertion order."""
    with store_errors(conn, "list messages"):
        rows = conn.execute(
            """
            SELECT id, conversation_id, role, content, prompt_tokens, completion_tokens, updateat
            FROM message
            WHERE conversation_id = ?
            ORDER BY updateat ASC, id ASC
            """,
            (conversation_id,),
        ).fetchall()
        return [_row_to_message(row) for row in rows]


def _insert_message(
    conn: sqlite3.Connection,
    conversation_id: int,
    role: MessageRole,
    content: str,
    prompt_tokens: int,
    completion_tokens: int,
) -> int:
    with store_errors(conn, f"save {role.value} message"):
        cur = conn.execute(
            """
            INSERT INTO message
            (conversation_id, role, content, prompt_tokens, completion_tokens)
            VALUES (?, ?, ?, ?, ?)
            """,
            (conversation_id, role.value, content.strip(), prompt_tokens, completion_tokens),
        )
        conn.commit()
    return cur.lastrowid


def append_user_message(conn: sqlite3.Connection, conversation_id: int, content: str) -> int:
    """Store the user's prompt. User messages consume no tokens."""
    return _insert_message(conn, conversation_id, MessageRole.USER, content, 0, 0)


def append_assistant_message(
    conn: sqlite3.Connection, conversation_id: int, response: CompletionResponse
) -> int:
    """Store the first choice of a completion with the usage the API reported."""
    message = response.message
    return _insert_message(
        conn,
        conversation_id,
        message.role,
        message.content,
        response.usage.prompt_tokens,
        response.usage.completion_tokens,
    )
