"""
Logging for the insights service.

Every module logs through ``get_logger(__name__)``.  The stdout handler is
attached once, to the application root logger (``src``); module loggers
propagate to it, so the API, the scan loop and the cache share one stream
and one level (``LOG_LEVEL``).  Library loggers that are chatty at INFO are
capped at WARNING.
"""
from __future__ import annotations

import logging
import sys

from src.core.config import get_settings

_APP_ROOT = "src"
_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"
_QUIET_LIBRARIES = ("sqlalchemy.engine", "sqlalchemy.pool", "faker")


def configure_logging() -> logging.Logger:
    """Attach the stdout handler to the application root logger (idempotent)."""
    root = logging.getLogger(_APP_ROOT)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATEFMT))
        root.addHandler(handler)
        root.propagate = False
        for name in _QUIET_LIBRARIES:
            logging.getLogger(name).setLevel(logging.WARNING)
    root.setLevel(getattr(logging, get_settings().log_level.upper(), logging.INFO))
    return root


def get_logger(name: str) -> logging.Logger:
    root = configure_logging()
    logger = logging.getLogger(name)
    if name != _APP_ROOT and not name.startswith(_APP_ROOT + ".") and not logger.handlers:
        # Outside the package tree (scripts run as __main__): share the handler
        for handler in root.handlers:
            logger.addHandler(handler)
        logger.setLevel(root.level)
        logger.propagate = False
    return logger
