"""Logging helpers for the Sasa backend.

All loggers live under the ``sasa`` hierarchy so a single handler on the
root ``sasa`` logger covers routes, services and the realtime channel.
"""

import logging
import sys

ROOT_LOGGER_NAME = "sasa"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def get_logger(name: str) -> logging.Logger:
    """Return a logger namespaced under ``sasa``."""
    if name != ROOT_LOGGER_NAME and not name.startswith(f"{ROOT_LOGGER_NAME}."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Attach a stream handler to the ``sasa`` logger.

    Safe to call more than once: the handler is only installed the first time,
    later calls just update the level.
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    if not any(getattr(h, "_sasa_handler", False) for h in logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._sasa_handler = True
        logger.addHandler(handler)

    return logger
