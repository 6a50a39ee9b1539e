"""
Shared cache store contract plus an in-process implementation.

The store holds bearer tokens, refresh locks and cached search pages. Every
backend must make ``set_if_absent`` and ``delete_if_equal`` atomic because
the token manager relies on them for cross-process mutual exclusion.
"""

from __future__ import annotations

import copy
import time
from typing import Any, Callable, Dict, Optional, Protocol, Tuple


class CacheStore(Protocol):
    """Key/value store with per-key expiry."""

    async def get(self, key: str) -> Optional[Any]:
        ...

    async def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...

    async def set_if_absent(self, key: str, value: Any, ttl_seconds: float) -> bool:
        ...

    async def delete_if_equal(self, key: str, value: Any) -> bool:
        """Delete ``key`` only while it still holds ``value``, atomically."""
        ...


class InMemoryCacheStore:
    """Process-local store; only coordinates callers sharing one event loop."""

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, Optional[float]]] = {}

    def _live_entry(self, key: str) -> Optional[Tuple[Any, Optional[float]]]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            self._entries.pop(key, None)
            return None
        return entry

    def _expiry(self, ttl_seconds: Optional[float]) -> Optional[float]:
        return None if ttl_seconds is None else self._clock() + ttl_seconds

    async def get(self, key: str) -> Optional[Any]:
        entry = self._live_entry(key)
        # Copies keep callers from mutating what another caller reads.
        return copy.deepcopy(entry[0]) if entry else None

    async def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        self._entries[key] = (copy.deepcopy(value), self._expiry(ttl_seconds))

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def set_if_absent(self, key: str, value: Any, ttl_seconds: float) -> bool:
        if self._live_entry(key) is not None:
            return False
        self._entries[key] = (copy.deepcopy(value), self._expiry(ttl_seconds))
        return True

    async def delete_if_equal(self, key: str, value: Any) -> bool:
        entry = self._live_entry(key)
        if entry is None or entry[0] != value:
            return False
        del self._entries[key]
        return True


__all__ = ["CacheStore", "InMemoryCacheStore"]
