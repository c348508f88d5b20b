"""Centralized logging configuration for Team AI.

Every module logs through a ``teamai.*`` logger. Output goes to stderr so it
never mixes with the text that CLI commands and tool adapters write to stdout.

Usage:
    # In an entry point (cli.py, a tool server):
    from .logging_config import setup_logging
    setup_logging(level="INFO")

    # In any module:
    from .logging_config import get_logger
    logger = get_logger(__name__)
    logger.info("Agent registered")
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

__all__ = [
    "setup_logging",
    "get_logger",
]

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(
    level: str = "INFO",
    format_string: Optional[str] = None,
    log_file: Optional[str] = None
) -> None:
    """Configure logging for teamai.

    Should be called once at application startup.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_string: Custom format string (default includes timestamp, name, level, message)
        log_file: Optional file path to append logs to (in addition to stderr)

    Raises:
        ValueError: If level is not a known logging level name
    """
    numeric_level = getattr(logging, level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level}")

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode="a"))

    logging.basicConfig(
        level=numeric_level,
        format=format_string or DEFAULT_FORMAT,
        handlers=handlers,
        force=True,
    )

    logging.getLogger("teamai").setLevel(numeric_level)

    # The dashboard server is chatty at INFO
    logging.getLogger("uvicorn").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the ``teamai`` hierarchy.

    Args:
        name: Module name (typically ``__name__``)

    Returns:
        Logger named ``teamai.<module>``
    """
    if name.startswith("teamai."):
        name = name[len("teamai."):]

    if name == "teamai":
        return logging.getLogger(name)

    return logging.getLogger(f"teamai.{name}")
