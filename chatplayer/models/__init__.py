"""chatplayer completion API clients."""

from __future__ import annotations

from chatplayer.models.openai import DEFAULT_BASE_URL, DEFAULT_MODEL, CompletionClient

__all__ = ["CompletionClient", "DEFAULT_BASE_URL", "DEFAULT_MODEL"]
