"""
Shared types for chatplayer.

Stored rows (SavedMessage, ConversationListing), the wire-level chat message,
and the success / error payloads of the completion API. These are the
vocabulary shared by storage, the context assembler, the completion client
and the session.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from chatplayer.protocols import RoleDecodeError

# SQLite CURRENT_TIMESTAMP format (always UTC)
SQLITE_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def parse_sqlite_timestamp(value: str) -> datetime:
    """Parse a ``CURRENT_TIMESTAMP`` value into an aware UTC datetime."""
    return datetime.strptime(value, SQLITE_TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def format_timestamp(value: datetime) -> str:
    return value.strftime(SQLITE_TIMESTAMP_FORMAT)


class MessageRole(str, Enum):
    """Closed set of chat roles."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"

    @classmethod
    def decode(cls, value: Any, message_id: Optional[int] = None) -> "MessageRole":
        """Decode a stored role string.

        Raises:
            RoleDecodeError: if the value is not one of the known roles.
        """
        try:
            return cls(value)
        except ValueError:
            raise RoleDecodeError(str(value), message_id) from None

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]


_DISPLAY_NAMES = {
    MessageRole.ASSISTANT: "ChatGPT",
    MessageRole.USER: "You",
    MessageRole.SYSTEM: "System",
}


@dataclass(frozen=True)
class Message:
    """A chat message as sent to the completion API."""

    role: MessageRole
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}


@dataclass(frozen=True)
class SavedMessage:
    """A message row read back from the store."""

    id: int
    conversation_id: int
    role: str
    content: str
    prompt_tokens: int
    completion_tokens: int
    created_at: datetime

    def to_message(self) -> Message:
        return Message(role=MessageRole.decode(self.role, self.id), content=self.content)


@dataclass(frozen=True)
class ConversationListing:
    """A conversation with usage and last activity aggregated from its messages."""

    id: int
    title: str
    usage: int
    last_update: datetime


# === Completion API payloads ===


def _require(data: Dict[str, Any], key: str, expected: Any) -> Any:
    if not isinstance(data, dict):
        raise ValueError(f"expected an object containing {key!r}")
    if key not in data:
        raise ValueError(f"missing field {key!r}")
    value = data[key]
    # bool is an int subclass; token counts must be real integers
    if isinstance(value, bool) and expected is int:
        raise ValueError(f"field {key!r} must be int")
    if not isinstance(value, expected):
        name = getattr(expected, "__name__", str(expected))
        raise ValueError(f"field {key!r} must be {name}")
    return value


def _optional_str(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TokenUsage":
        return cls(
            prompt_tokens=_require(data, "prompt_tokens", int),
            completion_tokens=_require(data, "completion_tokens", int),
            total_tokens=_require(data, "total_tokens", int),
        )


@dataclass(frozen=True)
class ResponseChoice:
    index: int
    message: Message
    finish_reason: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResponseChoice":
        raw_message = _require(data, "message", dict)
        role = _require(raw_message, "role", str)
        try:
            decoded = MessageRole(role)
        except ValueError:
            raise ValueError(f"unknown role {role!r} in response") from None
        return cls(
            index=_require(data, "index", int),
            message=Message(role=decoded, content=_require(raw_message, "content", str)),
            finish_reason=_optional_str(data, "finish_reason"),
        )


@dataclass(frozen=True)
class CompletionResponse:
    """Success payload of the chat completion endpoint."""

    id: str
    object: str
    created: int
    model: str
    usage: TokenUsage
    choices: List[ResponseChoice] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CompletionResponse":
        """Build from decoded JSON.

        Raises:
            ValueError: if the payload does not have the success shape.
        """
        raw_choices = _require(data, "choices", list)
        if not raw_choices:
            raise ValueError("response has no choices")
        return cls(
            id=_require(data, "id", str),
            object=_require(data, "object", str),
            created=_require(data, "created", int),
            model=_require(data, "model", str),
            usage=TokenUsage.from_dict(_require(data, "usage", dict)),
            choices=[ResponseChoice.from_dict(c) for c in raw_choices],
        )

    @property
    def message(self) -> Message:
        return self.choices[0].message

    def msg(self) -> str:
        """Content of the first choice."""
        return self.choices[0].message.content


@dataclass(frozen=True)
class CompletionError:
    """The ``error`` object of a structured API error."""

    message: str
    type: str
    code: Optional[str] = None
    param: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "message": self.message,
            "type": self.type,
            "param": self.param,
            "code": self.code,
        }


@dataclass(frozen=True)
class APIErrorPayload:
    """Structured error payload: ``{"error": {message, type, param?, code}}``."""

    error: CompletionError

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "APIErrorPayload":
        raw = _require(data, "error", dict)
        return cls(
            error=CompletionError(
                message=_require(raw, "message", str),
                type=_require(raw, "type", str),
                code=_optional_str(raw, "code"),
                param=_optional_str(raw, "param"),
            )
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.error.to_dict()}
