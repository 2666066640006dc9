"""
Logger factory.

Usage:
    from ragchat.logger import get_logger
    logger = get_logger(__name__)
    logger.info("Something happened")

The level comes from LOG_LEVEL (see config.settings) unless given explicitly.
"""

import logging
import sys
from typing import Optional, Union

from config.settings import get_settings

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_logger(name: str, level: Optional[Union[int, str]] = None) -> logging.Logger:
    """
    Create and return a named logger with the standard formatter.

    Args:
        name: Typically __name__ of the calling module
        level: Explicit level override (defaults to settings.logging.level)

    Returns:
        A configured logging.Logger
    """
    logger = logging.getLogger(name)

    # Loggers are cached by name, only configure them once
    if not logger.handlers:
        resolved_level = level if level is not None else get_settings().logging.level
        logger.setLevel(resolved_level)

        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(handler)

        # Avoid duplicate lines through the root logger
        logger.propagate = False

    return logger
