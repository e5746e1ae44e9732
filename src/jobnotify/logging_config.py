"""Logging configuration for the job-notify process."""

import logging
from typing import Optional, TextIO

LOGGER_NAME = "jobnotify"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(log_level: str = "INFO", stream: Optional[TextIO] = None) -> logging.Logger:
    """
    Configure the package logger and return it.

    Calling this more than once replaces the previous handlers instead of
    stacking them.

    Args:
        log_level: Logging level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
            Unknown names fall back to INFO.
        stream: Stream for the console handler (defaults to stderr).

    Returns:
        logging.Logger: The configured "jobnotify" logger.
    """
    numeric_level = getattr(logging, str(log_level).upper(), logging.INFO)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(numeric_level)

    # Avoid duplicate records through the root logger
    logger.propagate = False

    if logger.handlers:
        logger.handlers.clear()

    console_handler = logging.StreamHandler(stream)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(console_handler)

    return logger
