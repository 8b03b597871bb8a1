"""Logging configuration for server events."""
import logging
from logging.handlers import RotatingFileHandler
from typing import Optional

from .config import LOG_FILE, LOG_LEVEL

ROOT_LOGGER = "social_chat_server"


def configure_logging(component: Optional[str] = None) -> logging.Logger:
    """Attach the rotating file handler once and return the server logger.

    ``component`` selects a child logger (``social_chat_server.realtime``) so
    presence and message events can be filtered by origin in the log file.
    """
    root = logging.getLogger(ROOT_LOGGER)
    if not root.handlers:
        root.setLevel(logging.getLevelName(LOG_LEVEL.upper()))
        LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(LOG_FILE, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8")
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s [%(levelname)s] %(name)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        root.addHandler(handler)
    return root.getChild(component) if component else root
