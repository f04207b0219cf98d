"""Timestamped component logging shared by services and view models."""

import logging

LOGGER_NAME = "quotio_observability"

logger = logging.getLogger(LOGGER_NAME)


def log_with_timestamp(message: str, prefix: str = "", level: int = logging.INFO):
    """
    Log a message under the package logger.

    Handlers (terminal, session log file) and the timestamp format are set up
    by main.setup_file_logging() / main.setup_debug_logging().

    Args:
        message: The log message
        prefix: Optional prefix (e.g., "[StreamSession]", "[LogsViewModel]")
        level: logging level, INFO by default
    """
    if prefix:
        logger.log(level, "%s %s", prefix, message)
    else:
        logger.log(level, "%s", message)
