"""
Logging utilities for the API process and the sync command line.

Provides a consistent logging format and keeps bearer tokens out of log lines.
"""

import logging
import sys


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging with a sensible default format."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )
    # httpx logs every request URL at INFO; the request observer already does.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def mask_secret(value: str | None, visible: int = 8) -> str:
    """Return a log-safe preview of a token or secret."""
    if not value:
        return "<empty>"
    if len(value) <= visible:
        return "***"
    return f"{value[:visible]}..."


__all__ = ["configure_logging", "mask_secret"]
