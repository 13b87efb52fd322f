# fleetledger/logging_utils.py
"""Process-wide logging setup.

Modules call ``get_logger(__name__)``; the root handler is installed once so
reloading modules under uvicorn's reloader does not stack handlers.
"""
from __future__ import annotations

import logging
from typing import Optional

_LOGGER_INITIALISED = False


def configure_root_logger(level: Optional[int] = None) -> None:
    global _LOGGER_INITIALISED
    if _LOGGER_INITIALISED:
        return

    if level is None:
        from fleetledger.config import settings

        level = settings.log_level_value

    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter(
            "[%(asctime)s] [%(levelname)s] %(name)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.addHandler(handler)
    _LOGGER_INITIALISED = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a module logger, making sure the root handler exists."""
    configure_root_logger()
    return logging.getLogger(name)
