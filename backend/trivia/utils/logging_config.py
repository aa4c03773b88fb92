"""Logging configuration helpers for the trivia server."""

from __future__ import annotations

import logging
from logging import Logger


def configure_logging(app) -> Logger:
    """Configure basic logging once and return the application's logger.

    The Flask application logger is named after the ``trivia`` package, so the
    module loggers of the store and the game services propagate into it.
    """
    level = str(app.config.get('LOG_LEVEL', 'INFO')).upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    logger = logging.getLogger(app.import_name)
    logger.setLevel(level)
    return logger
