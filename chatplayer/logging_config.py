"""Logging setup for chatplayer.

Application logs go to ``<home>/logs/local-YYYY-MM-DD.log``. Chat events
(conversation created, turn completed, turn failed) go to a separate
``chat-events-YYYY-MM-DD.log`` so operators can follow activity without the
debug noise. API keys are always masked.
"""

import logging
from datetime import date, datetime
from pathlib import Path
from typing import Optional

from chatplayer.config import get_chatplayer_home, mask_key

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


def get_log_dir() -> Path:
    log_dir = get_chatplayer_home() / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


def setup_chatplayer_logging(level: str = "INFO") -> logging.Logger:
    """Configure the ``chatplayer`` logger.

    Adds a file handler (once) and, at DEBUG, a console handler. Unknown
    level names fall back to INFO.
    """
    logger = logging.getLogger("chatplayer")
    log_level = _LEVELS.get(str(level).upper(), logging.INFO)
    logger.setLevel(log_level)

    if not any(isinstance(h, logging.FileHandler) for h in logger.handlers):
        log_file = get_log_dir() / f"local-{date.today().isoformat()}.log"
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(file_handler)

    if log_level == logging.DEBUG:
        has_console = any(
            isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
            for h in logger.handlers
        )
        if not has_console:
            console = logging.StreamHandler()
            console.setFormatter(logging.Formatter(LOG_FORMAT))
            logger.addHandler(console)

    # Terminal output is owned by the CLI
    logger.propagate = False
    return logger


def log_chat_event(event_type: str, details: str, owner_key: Optional[str] = None) -> None:
    """Append one line to the chat events log."""
    owner = mask_key(owner_key) if owner_key else "-"
    event_file = get_log_dir() / f"chat-events-{date.today().isoformat()}.log"
    timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    with open(event_file, "a", encoding="utf-8") as f:
        f.write(f"{timestamp} | {event_type} | key={owner} | {details}\n")
