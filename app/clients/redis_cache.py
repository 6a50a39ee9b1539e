"""Redis-backed shared cache, the production store for tokens and locks."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

import redis.asyncio as redis

logger = logging.getLogger(__name__)

_DELETE_IF_EQUAL = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""


class RedisCacheStore:
    """
    JSON values in Redis with millisecond expiry. Locks use ``SET NX`` and are
    released through a compare-and-delete script.
    """

    def __init__(self, redis_url: str, *, client: Optional[redis.Redis] = None) -> None:
        self._redis_url = redis_url
        self._redis = client

    def _client(self) -> redis.Redis:
        if self._redis is None:
            self._redis = redis.from_url(self._redis_url, decode_responses=True)
        return self._redis

    @staticmethod
    def _px(ttl_seconds: Optional[float]) -> Optional[int]:
        if ttl_seconds is None:
            return None
        return max(1, int(ttl_seconds * 1000))

    async def get(self, key: str) -> Optional[Any]:
        raw = await self._client().get(key)
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        await self._client().set(key, json.dumps(value), px=self._px(ttl_seconds))

    async def delete(self, key: str) -> None:
        await self._client().delete(key)

    async def set_if_absent(self, key: str, value: Any, ttl_seconds: float) -> bool:
        acquired = await self._client().set(
            key, json.dumps(value), px=self._px(ttl_seconds), nx=True
        )
        return bool(acquired)

    async def delete_if_equal(self, key: str, value: Any) -> bool:
        deleted = await self._client().eval(_DELETE_IF_EQUAL, 1, key, json.dumps(value))
        return bool(deleted)

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            logger.debug("Closed Redis connection pool")


__all__ = ["RedisCacheStore"]
