"""
Logging helpers for the Prosopon client.
"""

from __future__ import annotations

import logging
import sys
import time
from typing import TextIO


class UTCFormatter(logging.Formatter):
    """Formatter that renders timestamps in UTC ISO-8601."""

    converter = time.gmtime

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)sZ %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )


def setup_logging(*, level: int = logging.INFO, stream: TextIO | None = None) -> logging.Logger:
    """Configure the ``prosopon`` logger with a single stderr sink."""

    root = logging.getLogger("prosopon")
    root.setLevel(level)
    root.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(UTCFormatter())
    root.addHandler(handler)

    root.debug("Logging configured at level %s", logging.getLevelName(level))
    return root
