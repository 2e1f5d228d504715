"""Error taxonomy for chatplayer.

Startup errors (configuration, schema convergence) end the process. Store
errors are surfaced to the caller. Completion failures belong to a single
turn: the session records them in the error log and keeps going.
"""

from typing import TYPE_CHECKING, Optional, Protocol, Sequence, runtime_checkable

if TYPE_CHECKING:
    from chatplayer.types import CompletionError, CompletionResponse, Message


class ChatPlayerError(Exception):
    """Base for all chatplayer errors."""

    pass


class ConfigurationError(ChatPlayerError):
    """Raised when required configuration (usually the API key) is missing."""

    pass


class SchemaConvergenceError(ChatPlayerError):
    """Raised when the database cannot be brought to the current schema."""

    def __init__(self, message: str, from_version: Optional[int] = None) -> None:
        super().__init__(message)
        self.from_version = from_version


class StoreError(ChatPlayerError):
    """Raised on constraint violations or I/O faults in the local store."""

    pass


class RoleDecodeError(StoreError):
    """A stored message carries a role outside the known set."""

    def __init__(self, role: str, message_id: Optional[int] = None) -> None:
        if message_id is not None:
            text = f"Message ID {message_id} does not have a valid role: {role!r}"
        else:
            text = f"Invalid message role: {role!r}"
        super().__init__(text)
        self.role = role
        self.message_id = message_id


class ErrorLogWriteError(StoreError):
    """The error log itself could not be written."""

    pass


class CompletionFailure(ChatPlayerError):
    """Base for failures of a single completion request.

    ``raw_error`` is the text written to the error log.
    """

    def __init__(self, message: str, raw_error: str) -> None:
        super().__init__(message)
        self.raw_error = raw_error


class TransportError(CompletionFailure):
    """The request could not be completed (connection, timeout, read error)."""

    pass


class StructuredAPIError(CompletionFailure):
    """The API answered with a well-formed ``{"error": {...}}`` payload."""

    def __init__(self, api_error: "CompletionError", raw_error: str) -> None:
        super().__init__(api_error.message, raw_error)
        self.api_error = api_error


class ParseError(CompletionFailure):
    """The response body matched neither the success nor the error shape."""

    def __init__(self, message: str, raw_error: str, original: str) -> None:
        super().__init__(message, raw_error)
        self.original = original


# =============================================================================
# PROTOCOLS
# =============================================================================


@runtime_checkable
class CompletionBackend(Protocol):
    """Anything that can turn a message list into a completion.

    Implementations raise a CompletionFailure subclass when the exchange fails.
    """

    def complete(self, messages: Sequence["Message"]) -> "CompletionResponse": ...
