"""
Pytest fixtures and test configuration for chatplayer tests.
"""

import logging
from typing import List, Sequence, Union

import pytest

from chatplayer.storage import SQLiteStorage
from chatplayer.types import CompletionResponse, Message


def make_response_dict(content="Hi there!", prompt_tokens=5, completion_tokens=7, role="assistant"):
    return {
        "id": "chatcmpl-123",
        "object": "chat.completion",
        "created": 1677652288,
        "model": "gpt-3.5-turbo",
        "usage": {
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "total_tokens": prompt_tokens + completion_tokens,
        },
        "choices": [
            {
                "index": 0,
                "finish_reason": "stop",
                "message": {"role": role, "content": content},
            }
        ],
    }


def make_response(content="Hi there!", prompt_tokens=5, completion_tokens=7) -> CompletionResponse:
    return CompletionResponse.from_dict(
        make_response_dict(content, prompt_tokens, completion_tokens)
    )


class FakeCompletionClient:
    """Scripted completion backend.

    Each queued item is either a CompletionResponse (returned) or an
    exception instance (raised). Every call's messages are kept in ``calls``.
    """

    def __init__(self, *results: Union[CompletionResponse, Exception]):
        self.results = list(results)
        self.calls: List[List[Message]] = []

    def queue(self, result: Union[CompletionResponse, Exception]) -> None:
        self.results.append(result)

    def complete(self, messages: Sequence[Message]) -> CompletionResponse:
        self.calls.append(list(messages))
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def storage():
    """A converged in-memory store."""
    s = SQLiteStorage()
    s.converge_schema()
    yield s
    s.close()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "ai.db"


@pytest.fixture
def fake_client():
    return FakeCompletionClient()


@pytest.fixture
def chatplayer_home(tmp_path, monkeypatch):
    """Point CHATPLAYER_HOME at a temp directory."""
    home = tmp_path / "home"
    monkeypatch.setenv("CHATPLAYER_HOME", str(home))
    return home


@pytest.fixture
def clean_chatplayer_logger():
    """Remove all handlers from the chatplayer logger before/after a test."""
    logger = logging.getLogger("chatplayer")

    def _reset():
        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)
        logger.setLevel(logging.NOTSET)
        logger.propagate = True

    _reset()
    yield logger
    _reset()
