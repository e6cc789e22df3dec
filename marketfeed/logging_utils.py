"""Central logging configuration."""

from __future__ import annotations

import logging


def setup_logger(log_level: str = "INFO") -> logging.Logger:
    """Configure and return the ``marketfeed`` logger.

    Module loggers created with ``logging.getLogger(__name__)`` propagate here.
    """
    logger = logging.getLogger("marketfeed")
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    logger.propagate = False

    if logger.handlers:
        return logger

    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    return logger
