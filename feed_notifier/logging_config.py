"""Logging setup for feed_notifier.

Logs go to stderr because stdout carries the STDIO transport.
"""

import logging
import sys
from typing import Optional

from feed_notifier.config import ServerConfig


LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

logger = logging.getLogger("feed_notifier")


def setup_logging(config: Optional[ServerConfig] = None) -> logging.Logger:
    """Configure the package logger once."""
    level = getattr(logging, (config.log_level if config else "INFO").upper(), logging.INFO)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)

    logger.setLevel(level)
    logger.propagate = False
    return logger
