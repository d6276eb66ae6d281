"""Logging setup for the `precision_rag` namespace.

Usage:
    from precision_rag.obs.logging import setup_logging
    setup_logging("DEBUG")
"""

from __future__ import annotations

import logging
import sys

_NAMESPACE = "precision_rag"
_configured = False


def setup_logging(level: int | str = logging.INFO) -> None:
    """Attach one stderr handler to the package logger. Later calls only adjust the level."""
    global _configured
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger(_NAMESPACE)
    root.setLevel(level)
    if _configured:
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    root.addHandler(handler)
    root.propagate = False
    _configured = True
