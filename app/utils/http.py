"""HTTP utilities providing retry/backoff semantics and response helpers."""

from __future__ import annotations

from typing import Any

import httpx


class RetryConfig:
    """Bounded attempts with linear backoff (``backoff_seconds * attempt``)."""

    def __init__(self, *, attempts: int = 3, backoff_seconds: float = 1.0) -> None:
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        self.attempts = attempts
        self.backoff_seconds = backoff_seconds

    def delay_for(self, attempt: int) -> float:
        return self.backoff_seconds * attempt


def is_server_error(status_code: int) -> bool:
    return status_code >= 500


def is_auth_rejection(status_code: int) -> bool:
    return status_code in (401, 403)


def remote_error_message(response: httpx.Response) -> str | None:
    """Extract the gateway's own error text from a failed response."""
    try:
        payload: Any = response.json()
    except ValueError:
        text = response.text.strip()
        return text[:500] or None
    if isinstance(payload, dict):
        for key in ("statusMessage", "error", "message"):
            value = payload.get(key)
            if value:
                return str(value)
    return None


__all__ = [
    "RetryConfig",
    "is_auth_rejection",
    "is_server_error",
    "remote_error_message",
]
