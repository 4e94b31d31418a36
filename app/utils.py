"""
Shared helpers.
"""
import logging
import os


LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)


def get_logger(name: str) -> logging.Logger:
    """Return a module logger using the application-wide format."""
    return logging.getLogger(name)
