"""
Centralized logging configuration.

Modules log through ``logging.getLogger(__name__)``; the CLI calls
``setup_logging`` once to attach a console handler.
"""

import logging

from rich.logging import RichHandler

LOGGER_NAME = "issue_estimator"
LOG_FORMAT = "%(name)s: %(message)s"


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Configure the package logger.

    Usage:
        from issue_estimator.config.logging_config import setup_logging
        setup_logging("DEBUG")

    Args:
        level: Log level name

    Returns:
        The configured package logger
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Avoid adding handlers multiple times
    if logger.handlers:
        return logger

    handler = RichHandler(show_path=False, rich_tracebacks=True)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    logger.propagate = False
    return logger
