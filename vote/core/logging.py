"""Logging setup for processes that embed the persistence core."""
from __future__ import annotations

import logging

from .config import get_settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Attach a single stream handler to the ``vote`` logger.

    Calling this more than once replaces the handler instead of stacking them.
    """
    resolved = (level or get_settings().log_level).upper()
    logger = logging.getLogger("vote")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(resolved)
