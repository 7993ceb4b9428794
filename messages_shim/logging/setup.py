"""Logging configuration for the shim."""

import logging
import sys

LOGGER_NAME = "messages-shim"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level: str = "info") -> logging.Logger:
    """Set up logging with proper handlers and formatters.

    Args:
        level: One of debug, info, warning, error.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(numeric_level)

    # Clear any existing handlers
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    logger.addHandler(console_handler)

    # Propagate so test log capture and host apps still see records
    logger.propagate = True

    return logger


# Global logger instance
logger = logging.getLogger(LOGGER_NAME)
