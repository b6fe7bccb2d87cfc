from __future__ import annotations

import logging
import os
import sys

LOGGER_NAME = "reel_build"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

_configured = False


def configure_logging(level: str | int | None = None) -> logging.Logger:
    global _configured
    logger = logging.getLogger(LOGGER_NAME)
    resolved = level if level is not None else os.getenv("REEL_BUILD_LOG_LEVEL", "INFO")
    if isinstance(resolved, str):
        resolved = logging.getLevelName(resolved.strip().upper())
        if not isinstance(resolved, int):
            resolved = logging.INFO
    if not _configured:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
        logger.propagate = False
        _configured = True
    logger.setLevel(resolved)
    return logger


def get_logger() -> logging.Logger:
    if not _configured:
        return configure_logging()
    return logging.getLogger(LOGGER_NAME)
