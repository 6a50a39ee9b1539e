"""
DynamoDB-backed shared cache for deployments spanning several hosts.

The table is keyed by ``cache_key`` and should have DynamoDB TTL enabled on
``expires_at``. TTL deletion lags, so reads also compare ``expires_at``.
"""

from __future__ import annotations

import asyncio
import json
import math
import time
from typing import Any, Callable, Dict, Optional

import boto3
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError

from app.core.config import CacheSettings


class DynamoDBCacheStore:
    """Cache operations on a DynamoDB table using conditional writes."""

    def __init__(
        self,
        settings: CacheSettings,
        *,
        table: Any = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings
        self._clock = clock
        if table is None:
            if not settings.dynamodb_table_name:
                raise ValueError("CACHE_DYNAMODB_TABLE must be set for the dynamodb backend.")
            resource = boto3.resource("dynamodb", region_name=settings.aws_region)
            table = resource.Table(settings.dynamodb_table_name)
        self._table = table

    def _item(self, key: str, value: Any, ttl_seconds: Optional[float]) -> Dict[str, Any]:
        item: Dict[str, Any] = {"cache_key": key, "value": json.dumps(value)}
        if ttl_seconds is not None:
            # DynamoDB numbers reject floats; TTL granularity is one second anyway.
            item["expires_at"] = math.ceil(self._clock() + ttl_seconds)
        return item

    def _get(self, key: str) -> Optional[Any]:
        response = self._table.get_item(Key={"cache_key": key}, ConsistentRead=True)
        item = response.get("Item")
        if not item:
            return None
        expires_at = item.get("expires_at")
        if expires_at is not None and float(expires_at) <= self._clock():
            return None
        return json.loads(item["value"])

    def _set(self, key: str, value: Any, ttl_seconds: Optional[float]) -> None:
        self._table.put_item(Item=self._item(key, value, ttl_seconds))

    def _delete(self, key: str) -> None:
        self._table.delete_item(Key={"cache_key": key})

    def _set_if_absent(self, key: str, value: Any, ttl_seconds: float) -> bool:
        condition = Attr("cache_key").not_exists() | Attr("expires_at").lte(
            int(self._clock())
        )
        try:
            self._table.put_item(
                Item=self._item(key, value, ttl_seconds),
                ConditionExpression=condition,
            )
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
                return False
            raise
        return True

    def _delete_if_equal(self, key: str, value: Any) -> bool:
        condition = Attr("value").eq(json.dumps(value)) & (
            Attr("expires_at").not_exists() | Attr("expires_at").gt(int(self._clock()))
        )
        try:
            self._table.delete_item(Key={"cache_key": key}, ConditionExpression=condition)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
                return False
            raise
        return True

    async def get(self, key: str) -> Optional[Any]:
        return await asyncio.to_thread(self._get, key)

    async def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        await asyncio.to_thread(self._set, key, value, ttl_seconds)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._delete, key)

    async def set_if_absent(self, key: str, value: Any, ttl_seconds: float) -> bool:
        return await asyncio.to_thread(self._set_if_absent, key, value, ttl_seconds)

    async def delete_if_equal(self, key: str, value: Any) -> bool:
        return await asyncio.to_thread(self._delete_if_equal, key, value)


__all__ = ["DynamoDBCacheStore"]
