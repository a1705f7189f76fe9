"""
Logging configuration for substrate.

Library output stays quiet by default; ``--verbose`` or SUBSTRATE_VERBOSE
turns on debug logging to stderr.
"""

import logging
import os
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%H:%M:%S"


def verbose_requested() -> bool:
    return bool(os.environ.get("SUBSTRATE_VERBOSE"))


def configure_logging(verbose: bool = False) -> None:
    """Configure the root logger for CLI use.

    Args:
        verbose: Log at DEBUG level (including HTTP traffic) instead of WARNING.
    """
    level = logging.DEBUG if verbose else logging.WARNING
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Add stderr handler if not already present
    handler = next(
        (
            h for h in root_logger.handlers
            if isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) is sys.stderr
        ),
        None,
    )
    if handler is None:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        root_logger.addHandler(handler)
    handler.setLevel(level)

    # httpx logs every request at INFO
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.DEBUG if verbose else logging.WARNING)
