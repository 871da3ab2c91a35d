"""Utility helpers shared by the client and the broker."""

from .logging import configure_logging, parse_level

__all__ = ["configure_logging", "parse_level"]
