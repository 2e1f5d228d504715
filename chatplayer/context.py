"""Context assembly: which stored messages go out with the next prompt.

History is walked from the newest message back. Two counters run along the
walk, messages taken and estimated tokens. The check happens before a message
is taken, so the message that pushes a counter past its budget is still
included and only the following one is cut. Up to ``max_messages + 1``
history messages can therefore be sent.
"""

from typing import List, Sequence

from chatplayer.types import Message, MessageRole, SavedMessage

# Defaults for the CLI flags --max-dialog / --max-token
DEFAULT_MAX_MESSAGES = 32
DEFAULT_MAX_TOKENS = 3800

# Crude estimate: ~3 bytes of UTF-8 per token
BYTES_PER_TOKEN = 3


def estimate_tokens(text: str) -> int:
    """Estimate token count from text (UTF-8 length // 3)."""
    if not text:
        return 0
    return len(text.encode("utf-8")) // BYTES_PER_TOKEN


def build_context(
    history: Sequence[SavedMessage],
    new_prompt: str,
    max_messages: int = DEFAULT_MAX_MESSAGES,
    max_tokens: int = DEFAULT_MAX_TOKENS,
) -> List[Message]:
    """Build the message list for a completion request.

    Args:
        history: Stored messages in chronological order.
        new_prompt: The user's new prompt, always the last element.
        max_messages: Message budget for history.
        max_tokens: Estimated token budget for history.

    Returns:
        Kept history oldest first, followed by the new prompt as a user message.

    Raises:
        RoleDecodeError: if a kept message has an unknown stored role.
    """
    kept: List[Message] = []
    taken = 0
    tokens = 0
    for saved in reversed(history):
        if taken > max_messages or tokens > max_tokens:
            break
        taken += 1
        tokens += estimate_tokens(saved.content)
        kept.append(saved.to_message())

    kept.reverse()
    kept.append(Message(role=MessageRole.USER, content=new_prompt))
    return kept
