"""Centralized logging configuration."""

import logging
import os


def get_logger(name: str, level: str = "") -> logging.Logger:
    """Get a configured logger instance.

    Level defaults to FIRMGOV_LOG_LEVEL, then INFO.
    """
    level = level or os.getenv("FIRMGOV_LOG_LEVEL", "INFO")
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger
