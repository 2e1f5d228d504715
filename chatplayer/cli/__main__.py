"""
chatplayer CLI - terminal chat client with saved conversations.

Usage:
    chatplayer [--key KEY | --key-file FILE] [--database DB]
               [--max-token N] [--max-dialog N] [--proxy URL] [--model MODEL]
"""

import argparse
import logging
import sys
from typing import Callable, Optional

from rich.console import Console

from chatplayer import __version__
from chatplayer.config import DEFAULT_DATABASE, DEFAULT_KEY_FILE, ChatConfig
from chatplayer.context import DEFAULT_MAX_MESSAGES, DEFAULT_MAX_TOKENS
from chatplayer.logging_config import log_chat_event, setup_chatplayer_logging
from chatplayer.models.openai import DEFAULT_BASE_URL, DEFAULT_MODEL, CompletionClient
from chatplayer.protocols import ConfigurationError, SchemaConvergenceError, StoreError
from chatplayer.session import ChatSession, OutcomeKind, TurnOutcome
from chatplayer.storage.sqlite import SQLiteStorage
from chatplayer.types import MessageRole, SavedMessage, format_timestamp

logger = logging.getLogger(__name__)

SEPARATOR = "=" * 75
THINKING = "ChatGPT is thinking..."

InputFn = Callable[[str], str]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chatplayer",
        description="A terminal-based client that calls the ChatGPT API to generate answers.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--key", "-k", metavar="API_KEY", help="Supply API key directly")
    parser.add_argument(
        "--key-file",
        "-f",
        metavar="API_KEY_FILE",
        default=DEFAULT_KEY_FILE,
        help="Read API key from file ('$' prefix: relative to chatplayer home)",
    )
    parser.add_argument(
        "--database",
        "-d",
        metavar="DATABASE",
        default=DEFAULT_DATABASE,
        help="Conversation database ('$' prefix: relative to chatplayer home)",
    )
    parser.add_argument(
        "--max-token",
        type=int,
        default=DEFAULT_MAX_TOKENS,
        metavar="SIZE",
        help="Approximate token budget for replayed history",
    )
    parser.add_argument(
        "--max-dialog",
        type=int,
        default=DEFAULT_MAX_MESSAGES,
        metavar="COUNT",
        help="Number of remembered messages replayed as context",
    )
    parser.add_argument(
        "--proxy", "-p", metavar="URL", help='Proxy address, for example "socks5://127.0.0.1:1080"'
    )
    parser.add_argument("--model", "-m", default=DEFAULT_MODEL, help="Chat model")
    parser.add_argument("--base-url", default=DEFAULT_BASE_URL, help="API base URL")
    parser.add_argument(
        "--timeout", type=float, default=None, metavar="SECONDS", help="Request timeout (default: none)"
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log file level",
    )
    return parser


def format_listing_line(listing) -> str:
    return (
        f"[{format_timestamp(listing.last_update)}] {listing.id}: {listing.title} "
        f"(Usage: {listing.usage} tokens in total)"
    )


def format_history_entry(message: SavedMessage) -> str:
    """Raises RoleDecodeError for a corrupt role."""
    role = MessageRole.decode(message.role, message.id)
    return f"{SEPARATOR}\n{role.display_name}: {message.content.strip()}"


def print_outcome(outcome: TurnOutcome) -> None:
    if outcome.kind == OutcomeKind.SUCCESS:
        print(f"ChatGPT: {outcome.reply}")
    elif outcome.kind != OutcomeKind.SKIPPED:
        print(f"Error: {outcome.error}")


def run_turn(session: ChatSession, prompt: str, console: Console) -> TurnOutcome:
    with console.status(THINKING, spinner="dots"):
        outcome = session.submit(prompt)
    print(SEPARATOR)
    print_outcome(outcome)
    if outcome.kind != OutcomeKind.SKIPPED:
        details = f"conversation={session.conversation_id} outcome={outcome.kind.value}"
        if outcome.usage is not None:
            details += f" tokens={outcome.usage.total_tokens}"
        log_chat_event("turn", details, session.owner_key)
    return outcome


def choose_conversation(
    session: ChatSession, console: Console, read: Optional[InputFn] = None
) -> None:
    """List saved conversations and let the user resume one or start a new one."""
    read = read or input
    listings = session.listings()
    print(f"You have {len(listings)} conversation(s) currently saved.")
    for listing in listings:
        print(format_listing_line(listing))
    print(
        "Enter a number to continue the desired conversation, "
        "or enter a piece of text to create a new one: "
    )

    while True:
        selection = read("")
        if not selection.strip():
            continue
        choice = session.choose(selection)
        if choice is not None:
            break
        print("No such conversation. Please enter again: ")

    if choice.created:
        log_chat_event("create", f"conversation={choice.conversation_id}", session.owner_key)
        run_turn(session, choice.first_prompt, console)
    else:
        for message in choice.history:
            print(format_history_entry(message))


def chat_loop(session: ChatSession, console: Console, read: Optional[InputFn] = None) -> None:
    read = read or input
    print(SEPARATOR)
    while True:
        prompt = read("> ").strip()
        if not prompt:
            continue
        if prompt.startswith("/"):
            print(f"This is a command: {prompt[1:]}. Custom commands are not implemented yet.")
        else:
            run_turn(session, prompt, console)
        print(SEPARATOR)


def main(argv: Optional[list] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = ChatConfig.from_args(args)
    except ConfigurationError as e:
        print(f"{e} See -h for more details.")
        return 1

    setup_chatplayer_logging(config.log_level)
    console = Console()

    try:
        storage = SQLiteStorage(config.db_path)
    except StoreError as e:
        print(f"Error: {e}")
        return 1

    client = CompletionClient(
        config.api_key,
        model=config.model,
        base_url=config.base_url,
        proxy=config.proxy,
        timeout=config.timeout,
    )

    with storage, client:
        session = ChatSession(
            storage,
            client,
            config.api_key,
            max_messages=config.max_messages,
            max_tokens=config.max_tokens,
        )
        try:
            session.start()
        except SchemaConvergenceError as e:
            logger.error(f"Schema convergence failed: {e}")
            print(f"Error: {e}")
            return 1

        print("Welcome to OpenAI Playground. Press Ctrl+C to exit the program.")
        try:
            choose_conversation(session, console)
            chat_loop(session, console)
        except (EOFError, KeyboardInterrupt):
            print("\nBye.")
        except StoreError as e:
            # Selection-time store failures leave nothing to chat in
            logger.error(f"Store error: {e}")
            print(f"Error: {e}")
            return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
