"""Runtime configuration for chatplayer.

Paths given with a leading ``$`` are relative to the chatplayer home
directory (``CHATPLAYER_HOME``, default ``~/.chatplayer``); any other
relative path is relative to the working directory. Everything is resolved
once, in ``ChatConfig.from_args``, and passed down.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from chatplayer.context import DEFAULT_MAX_MESSAGES, DEFAULT_MAX_TOKENS
from chatplayer.models.openai import DEFAULT_BASE_URL, DEFAULT_MODEL
from chatplayer.protocols import ConfigurationError

logger = logging.getLogger(__name__)

HOME_PREFIX = "$"
DEFAULT_KEY_FILE = "$api_key"
DEFAULT_DATABASE = "$ai.db"


def get_chatplayer_home() -> Path:
    """Application home: $CHATPLAYER_HOME or ~/.chatplayer."""
    env = os.environ.get("CHATPLAYER_HOME")
    if env:
        return Path(env).expanduser()
    return Path.home() / ".chatplayer"


def resolve_path(value: str, home: Optional[Path] = None, cwd: Optional[Path] = None) -> Path:
    """Resolve a CLI path argument.

    >>> resolve_path("$ai.db", home=Path("/h"), cwd=Path("/w"))
    PosixPath('/h/ai.db')
    >>> resolve_path("ai.db", home=Path("/h"), cwd=Path("/w"))
    PosixPath('/w/ai.db')
    """
    if value.startswith(HOME_PREFIX):
        base = home if home is not None else get_chatplayer_home()
        return base / value[len(HOME_PREFIX) :]
    path = Path(value).expanduser()
    if path.is_absolute():
        return path
    base = cwd if cwd is not None else Path.cwd()
    return base / path


def mask_key(key: str) -> str:
    """Short, log-safe form of an API key."""
    if len(key) <= 8:
        return "***"
    return f"{key[:3]}...{key[-4:]}"


def load_api_key(key: Optional[str], key_file: Optional[Path]) -> str:
    """Return the API key: ``key`` if given, otherwise the contents of ``key_file``.

    Raises:
        ConfigurationError: if no non-empty key could be found.
    """
    api_key = (key or "").strip()
    if not api_key and key_file is not None:
        try:
            api_key = key_file.read_text(encoding="utf-8-sig").strip()
        except OSError as e:
            logger.debug(f"Could not read key file {key_file}: {e}")
            api_key = ""

    if not api_key:
        raise ConfigurationError("No API Key! Supply one with --key or --key-file.")
    return api_key


@dataclass
class ChatConfig:
    api_key: str
    db_path: Path
    max_tokens: int = DEFAULT_MAX_TOKENS
    max_messages: int = DEFAULT_MAX_MESSAGES
    proxy: Optional[str] = None
    model: str = DEFAULT_MODEL
    base_url: str = DEFAULT_BASE_URL
    timeout: Optional[float] = None
    log_level: str = "INFO"

    @classmethod
    def from_args(cls, args, home: Optional[Path] = None, cwd: Optional[Path] = None) -> "ChatConfig":
        """Build from parsed CLI arguments.

        Raises:
            ConfigurationError: if no API key is available, or a budget is negative.
        """
        if args.max_token < 0 or args.max_dialog < 0:
            raise ConfigurationError("--max-token and --max-dialog must not be negative")
        if args.timeout is not None and args.timeout <= 0:
            raise ConfigurationError("--timeout must be positive")

        key_file = resolve_path(args.key_file, home, cwd) if args.key_file else None
        api_key = load_api_key(args.key, key_file)
        return cls(
            api_key=api_key,
            db_path=resolve_path(args.database, home, cwd),
            max_tokens=args.max_token,
            max_messages=args.max_dialog,
            proxy=args.proxy,
            model=args.model,
            base_url=args.base_url,
            timeout=args.timeout,
            log_level=args.log_level,
        )
