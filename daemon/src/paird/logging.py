"""Logging configuration for paird."""

import logging
from pathlib import Path
from typing import Any, MutableMapping

from paird.config import Config

# Module-level logger cache
_logger: logging.Logger | None = None

# Log format: 2025-01-27 10:30:45 [INFO] message
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class SessionLogAdapter(logging.LoggerAdapter):
    """Prefix every record with the session it belongs to.

    Many sessions log through the same module loggers; the prefix keeps
    interleaved output attributable:

        2025-01-27 10:30:45 [INFO] [session alice] connecting -> online
    """

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        return f"[session {self.extra['session_id']}] {msg}", kwargs


def session_logger(logger: logging.Logger, session_id: str) -> SessionLogAdapter:
    """Wrap a module logger so records carry the session ID."""
    return SessionLogAdapter(logger, {"session_id": session_id})


def setup_logging(config: Config) -> logging.Logger:
    """Set up the paird logger from configuration.

    Idempotent: later calls return the logger configured by the first one.

    Args:
        config: Configuration object with log settings.

    Returns:
        Configured logger instance.
    """
    global _logger

    if _logger is not None:
        return _logger

    logger = logging.getLogger("paird")
    logger.setLevel(getattr(logging, config.log_level.upper(), logging.INFO))
    logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT)
    formatter.datefmt = DATE_FORMAT

    if config.log_file:
        log_path = Path(config.log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # Session chatter stays out of the host application's root logger
    logger.propagate = False

    _logger = logger
    return logger


def reset_logging() -> None:
    """Reset logging state. Used for testing."""
    global _logger
    if _logger is not None:
        _logger.handlers.clear()
        _logger.propagate = True
        _logger = None
