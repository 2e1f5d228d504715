"""
chatplayer - terminal chat client with locally saved conversations.

Conversations live in a local SQLite database; each turn replays a bounded
window of history to the chat completion API.
"""

from importlib.metadata import PackageNotFoundError, version

from .context import build_context
from .session import ChatSession
from .storage import SQLiteStorage

try:
    __version__ = version("chatplayer")
except PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = ["ChatSession", "SQLiteStorage", "build_context"]
