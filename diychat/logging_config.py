"""
Logging setup for diychat.

Everything logs through module-level ``logging.getLogger(__name__)`` loggers
under the ``diychat`` namespace; this module only installs the handler.
"""

import logging
import sys

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
DATE_FORMAT = "%H:%M:%S"


def setup_logging(level: str = "INFO") -> logging.Logger:
    """
    Configure the ``diychat`` logger with a single console handler.

    Calling it again only changes the level, so the CLI and the app factory
    can both call it safely.

    Args:
        level: Log level name (e.g. "INFO", "DEBUG").

    Returns:
        logging.Logger: The configured package logger.
    """
    logger = logging.getLogger("diychat")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    if not any(getattr(h, "_diychat", False) for h in logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        handler._diychat = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
        logger.propagate = False

    return logger
