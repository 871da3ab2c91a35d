"""
Logging helpers for the peerchat client and relay broker.

The library modules only ever call ``logging.getLogger(__name__)``; the entry
points decide how records are rendered.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

DEFAULT_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"


def configure_logging(level: int = logging.INFO, format: Optional[str] = None) -> None:
    """
    Ensure the root logger is configured exactly once.
    """

    if logging.getLogger().handlers:
        # Respect any user provided configuration.
        return

    logging.basicConfig(
        level=level,
        format=format or DEFAULT_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def parse_level(value: Optional[str], default: int = logging.INFO) -> int:
    """Translate a level name such as ``"debug"`` into its numeric value."""

    if not value:
        return default
    level = logging.getLevelName(str(value).strip().upper())
    return level if isinstance(level, int) else default
