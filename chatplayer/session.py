"""Session controller: one conversation, one turn at a time.

States::

    UNINITIALIZED -> SCHEMA_CONVERGED -> CONVERSATION_CHOSEN
        -> (TURN_IN_FLIGHT <-> TURN_IDLE) ...

A successful turn stores the user message and then the assistant message,
and reloads history from the store. A failed turn writes only to the error
log. The two inserts are separate statements: a crash between them can
leave a user message without its reply.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from chatplayer.config import mask_key
from chatplayer.context import DEFAULT_MAX_MESSAGES, DEFAULT_MAX_TOKENS, build_context
from chatplayer.protocols import (
    CompletionBackend,
    CompletionFailure,
    ConfigurationError,
    ErrorLogWriteError,
    StoreError,
    StructuredAPIError,
)
from chatplayer.storage.sqlite import SQLiteStorage
from chatplayer.types import (
    CompletionError,
    ConversationListing,
    Message,
    SavedMessage,
    TokenUsage,
)

logger = logging.getLogger(__name__)


class SessionState(Enum):
    UNINITIALIZED = "uninitialized"
    SCHEMA_CONVERGED = "schema_converged"
    CONVERSATION_CHOSEN = "conversation_chosen"
    TURN_IDLE = "turn_idle"
    TURN_IN_FLIGHT = "turn_in_flight"


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"  # completion failed, recorded in the error log
    STORE_ERROR = "store_error"  # local store (or the error log) failed
    SKIPPED = "skipped"  # empty prompt


@dataclass(frozen=True)
class TurnOutcome:
    kind: OutcomeKind
    reply: Optional[str] = None
    usage: Optional[TokenUsage] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.kind == OutcomeKind.SUCCESS


@dataclass(frozen=True)
class ConversationChoice:
    """Result of picking a conversation.

    ``first_prompt`` is set for a new conversation: the text that titled it
    is also its first turn.
    """

    conversation_id: int
    created: bool
    history: List[SavedMessage] = field(default_factory=list)
    first_prompt: Optional[str] = None


class ChatSession:
    """Drives conversation selection and turns for one API key."""

    def __init__(
        self,
        storage: SQLiteStorage,
        client: CompletionBackend,
        owner_key: str,
        *,
        max_messages: int = DEFAULT_MAX_MESSAGES,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ) -> None:
        if not owner_key:
            raise ConfigurationError("No API Key!")
        self.storage = storage
        self.client = client
        self.owner_key = owner_key
        self.max_messages = max_messages
        self.max_tokens = max_tokens

        self.state = SessionState.UNINITIALIZED
        self.conversation_id: Optional[int] = None
        self._history: List[SavedMessage] = []

    @property
    def history(self) -> List[SavedMessage]:
        return list(self._history)

    # ---- Startup ----

    def start(self) -> int:
        """Converge the store schema. SchemaConvergenceError propagates."""
        version = self.storage.converge_schema()
        if self.state == SessionState.UNINITIALIZED:
            self.state = SessionState.SCHEMA_CONVERGED
        logger.info(f"Session ready for key {mask_key(self.owner_key)} (schema v{version})")
        return version

    def _require_started(self) -> None:
        if self.state == SessionState.UNINITIALIZED:
            raise RuntimeError("Session not started; call start() first")

    # ---- Conversation selection ----

    def listings(self) -> List[ConversationListing]:
        self._require_started()
        return self.storage.list_conversations(self.owner_key)

    def choose(self, selection: str) -> Optional[ConversationChoice]:
        """Resume a conversation by id, or start a new one titled with the text.

        Returns None when the selection is empty or names an id this key does
        not own; the caller should ask again.
        """
        self._require_started()
        if self.state == SessionState.TURN_IN_FLIGHT:
            raise RuntimeError("Cannot switch conversation while a turn is in flight")

        selection = selection.strip()
        if not selection:
            return None

        if selection.isascii() and selection.isdigit():
            conversation_id = int(selection)
            if conversation_id not in self.storage.get_conversation_ids(self.owner_key):
                logger.debug(f"Conversation {conversation_id} not found for this key")
                return None
            history = self.storage.list_messages(conversation_id)
            choice = ConversationChoice(conversation_id, created=False, history=history)
        else:
            conversation_id = self.storage.create_conversation(selection, self.owner_key)
            choice = ConversationChoice(
                conversation_id, created=True, history=[], first_prompt=selection
            )

        self.conversation_id = conversation_id
        self._history = list(choice.history)
        self.state = SessionState.CONVERSATION_CHOSEN
        logger.info(
            f"{'Created' if choice.created else 'Resumed'} conversation {conversation_id} "
            f"({len(choice.history)} messages)"
        )
        return choice

    # ---- Turns ----

    def submit(self, prompt: str) -> TurnOutcome:
        """Run one turn. Never raises for per-turn failures."""
        if self.state == SessionState.TURN_IN_FLIGHT:
            raise RuntimeError("A turn is already in flight")
        if self.conversation_id is None:
            raise RuntimeError("No conversation chosen")

        prompt = prompt.strip()
        if not prompt:
            self.state = SessionState.TURN_IDLE
            return TurnOutcome(OutcomeKind.SKIPPED)

        self.state = SessionState.TURN_IN_FLIGHT
        try:
            return self._run_turn(prompt)
        finally:
            self.state = SessionState.TURN_IDLE

    def _run_turn(self, prompt: str) -> TurnOutcome:
        try:
            context = build_context(self._history, prompt, self.max_messages, self.max_tokens)
        except StoreError as e:
            logger.error(f"Conversation {self.conversation_id} history is corrupt: {e}")
            return TurnOutcome(OutcomeKind.STORE_ERROR, error=str(e))

        logger.debug(f"Sending {len(context)} messages for conversation {self.conversation_id}")
        try:
            response = self.client.complete(context)
        except StructuredAPIError as e:
            logger.warning(f"API error ({e.api_error.type}): {e.api_error.message}")
            return self._record_failure(context, e.raw_error, str(e), e.api_error)
        except CompletionFailure as e:
            logger.warning(f"Completion failed ({type(e).__name__}): {e}")
            return self._record_failure(context, e.raw_error, str(e))

        try:
            self.storage.append_user_message(self.conversation_id, prompt)
            self.storage.append_assistant_message(self.conversation_id, response)
            self._history = self.storage.list_messages(self.conversation_id)
        except StoreError as e:
            logger.error(f"Could not save turn for conversation {self.conversation_id}: {e}")
            self._reload_history()
            return TurnOutcome(OutcomeKind.STORE_ERROR, error=str(e))

        logger.info(
            f"Turn saved for conversation {self.conversation_id} "
            f"(prompt={response.usage.prompt_tokens}, completion={response.usage.completion_tokens})"
        )
        return TurnOutcome(OutcomeKind.SUCCESS, reply=response.msg().strip(), usage=response.usage)

    def _record_failure(
        self,
        context: List[Message],
        raw_error: str,
        message: str,
        api_error: Optional[CompletionError] = None,
    ) -> TurnOutcome:
        try:
            self.storage.record_error(self.owner_key, context, raw_error, api_error)
        except ErrorLogWriteError as e:
            logger.error(f"{e} (while logging: {message})")
            return TurnOutcome(OutcomeKind.STORE_ERROR, error=f"{e} (while logging: {message})")
        return TurnOutcome(OutcomeKind.FAILED, error=message)

    def _reload_history(self) -> None:
        """Best-effort refresh after a partial save; the store stays authoritative."""
        try:
            self._history = self.storage.list_messages(self.conversation_id)
        except StoreError as e:
            logger.warning(f"Could not reload history for conversation {self.conversation_id}: {e}")
