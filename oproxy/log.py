"""Logging configuration for oproxy."""

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

from config import Verbosity

ROOT_LOGGER_NAME = "oproxy"

LEVELS = {
    Verbosity.QUIET: logging.WARNING,
    Verbosity.NORMAL: logging.INFO,
    Verbosity.VERBOSE: logging.DEBUG,
    Verbosity.DEBUG: logging.DEBUG,
}


def setup_logging(
    verbosity: Verbosity = Verbosity.NORMAL,
    console: Optional[Console] = None,
) -> None:
    """
    Configure logging for the oproxy package.

    Args:
        verbosity: Output verbosity (default: NORMAL)
        console: Rich console to log to (default: stderr)
    """
    level = LEVELS[verbosity]

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=verbosity == Verbosity.DEBUG,
        rich_tracebacks=verbosity == Verbosity.DEBUG,
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    root_logger.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger under the oproxy hierarchy
    """
    return logging.getLogger(name)
