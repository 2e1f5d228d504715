"""Error log: append-only record of failed exchanges.

Rows are written for operators and never read back by the client. A failure
to write one is raised as ErrorLogWriteError so the caller can tell it apart
from the failure being logged.
"""

import json
import logging
import sqlite3
from typing import Optional, Sequence

from chatplayer.protocols import ErrorLogWriteError
from chatplayer.types import CompletionError, Message

logger = logging.getLogger(__name__)


def serialize_context(context: Sequence[Message]) -> str:
    """JSON snapshot of the messages that were about to be sent."""
    return json.dumps([m.to_dict() for m in context], ensure_ascii=False)


def record_error(
    conn: sqlite3.Connection,
    owner_key: str,
    context: Sequence[Message],
    raw_error: str,
    api_error: Optional[CompletionError] = None,
) -> int:
    """Append one error row and return its id.

    ``message``/``code``/``type``/``param`` are filled only for structured
    API errors.
    """
    message = code = error_type = param = None
    if api_error is not None:
        message = api_error.message
        code = api_error.code
        error_type = api_error.type
        param = api_error.param

    try:
        cur = conn.execute(
            """
            INSERT INTO error (key, context, error, message, code, type, param)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                owner_key,
                serialize_context(context),
                raw_error,
                message,
                code,
                error_type,
                param,
            ),
        )
        conn.commit()
    except sqlite3.Error as e:
        try:
            conn.rollback()
        except sqlite3.Error:
            logger.debug("Rollback after failed error-log write also failed", exc_info=True)
        raise ErrorLogWriteError(f"Could not write error log: {e}") from e

    logger.info(f"Recorded failed exchange #{cur.lastrowid} ({error_type or 'transport'})")
    return cur.lastrowid
