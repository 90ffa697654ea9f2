"""Logging setup for transferwatch.

stdout carries JSON/JSONL output for pipe consumers, so diagnostics go to stderr.
Modules log through ``logging.getLogger(__name__)``; only the CLI installs a handler.
"""

from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "WARNING") -> None:
    """Install a single stderr handler on the package logger."""
    logger = logging.getLogger("transferwatch")
    logger.setLevel(getattr(logging, level.upper(), logging.WARNING))

    for handler in list(logger.handlers):
        if getattr(handler, "_transferwatch", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._transferwatch = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
