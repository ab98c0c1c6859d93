"""Logging setup for the command-line tools."""
from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "firewall_normalizer"


def setup_logging(level: str = "WARNING") -> logging.Logger:
    """Send package log records to stderr through rich.

    Diagnostics go to stderr so that the canonical rule sets on stdout stay
    diffable.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper()))
    logger.handlers.clear()
    handler = RichHandler(
        console=Console(stderr=True),
        show_time=False,
        show_path=False,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    return logger
