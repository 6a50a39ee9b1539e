try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import json
from pathlib import Path
from typing import Any, Dict, Optional

import pytest
from botocore.exceptions import ClientError

from _fakes import FakeClock
from app.clients.cache_store import InMemoryCacheStore
from app.clients.dynamodb import DynamoDBCacheStore
from app.clients.redis_cache import RedisCacheStore
from app.clients.sqlite_store import SQLiteCacheStore
from app.core.config import CacheSettings


def _evaluate(condition: Any, item: Dict[str, Any]) -> bool:
    """Evaluate the subset of boto3 conditions the cache store builds."""
    expression = condition.get_expression()
    operator, values = expression["operator"], expression["values"]
    if operator == "AND":
        return all(_evaluate(value, item) for value in values)
    if operator == "OR":
        return any(_evaluate(value, item) for value in values)
    name = values[0].name
    if operator == "attribute_not_exists":
        return name not in item
    if name not in item:
        return False
    if operator == "=":
        return item[name] == values[1]
    if operator == ">":
        return item[name] > values[1]
    if operator == "<=":
        return item[name] <= values[1]
    raise AssertionError(f"Unsupported condition operator {operator}")


def _conditional_failure(operation: str) -> ClientError:
    return ClientError(
        {
            "Error": {
                "Code": "ConditionalCheckFailedException",
                "Message": "The conditional request failed",
            }
        },
        operation,
    )


class FakeTable:
    """Applies conditional writes the way DynamoDB would for these items."""

    def __init__(self, clock: FakeClock, *, error_code: Optional[str] = None) -> None:
        self.clock = clock
        self.error_code = error_code
        self.items: Dict[str, Dict[str, Any]] = {}

    def get_item(self, Key: dict, ConsistentRead: bool = False) -> dict:
        item = self.items.get(Key["cache_key"])
        return {"Item": dict(item)} if item else {}

    def put_item(self, Item: dict, ConditionExpression: Any = None) -> dict:
        if ConditionExpression is not None:
            if self.error_code:
                raise ClientError({"Error": {"Code": self.error_code, "Message": "boom"}}, "PutItem")
            if not _evaluate(ConditionExpression, self.items.get(Item["cache_key"], {})):
                raise _conditional_failure("PutItem")
        self.items[Item["cache_key"]] = dict(Item)
        return {}

    def delete_item(self, Key: dict, ConditionExpression: Any = None) -> dict:
        if ConditionExpression is not None and not _evaluate(
            ConditionExpression, self.items.get(Key["cache_key"], {})
        ):
            raise _conditional_failure("DeleteItem")
        self.items.pop(Key["cache_key"], None)
        return {}


class FakeRedis:
    def __init__(self) -> None:
        self.data: Dict[str, str] = {}
        self.expiry_ms: Dict[str, Optional[int]] = {}
        self.closed = False

    async def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def set(self, key: str, value: str, px: Optional[int] = None, nx: bool = False):
        if nx and key in self.data:
            return None
        self.data[key] = value
        self.expiry_ms[key] = px
        return True

    async def delete(self, key: str) -> int:
        return 1 if self.data.pop(key, None) is not None else 0

    async def eval(self, script: str, numkeys: int, *keys_and_args: str) -> int:
        key, expected = keys_and_args[0], keys_and_args[numkeys]
        assert "GET" in script and "DEL" in script
        if self.data.get(key) != expected:
            return 0
        return await self.delete(key)

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture(params=["memory", "sqlite", "dynamodb"])
def store_and_clock(request, tmp_path: Path):
    clock = FakeClock()
    if request.param == "memory":
        return InMemoryCacheStore(clock=clock), clock
    if request.param == "sqlite":
        return SQLiteCacheStore(str(tmp_path / "cache.db"), clock=clock), clock
    return DynamoDBCacheStore(CacheSettings(), table=FakeTable(clock), clock=clock), clock


@pytest.mark.asyncio
async def test_values_round_trip_and_expire(store_and_clock) -> None:
    store, clock = store_and_clock
    await store.set("erp:token:1", {"token": "abc", "n": 1}, 60)

    assert await store.get("erp:token:1") == {"token": "abc", "n": 1}
    clock.advance(61)
    assert await store.get("erp:token:1") is None


@pytest.mark.asyncio
async def test_entries_without_ttl_do_not_expire(store_and_clock) -> None:
    store, clock = store_and_clock
    await store.set("erp:partners:list:generation", 3)

    clock.advance(10 * 365 * 24 * 3600)
    assert await store.get("erp:partners:list:generation") == 3


@pytest.mark.asyncio
async def test_delete_removes_entry(store_and_clock) -> None:
    store, _ = store_and_clock
    await store.set("key", "value", 30)
    await store.delete("key")
    await store.delete("never-existed")

    assert await store.get("key") is None


@pytest.mark.asyncio
async def test_set_if_absent_is_exclusive_until_expiry(store_and_clock) -> None:
    store, clock = store_and_clock

    assert await store.set_if_absent("erp:token:lock:1", {"owner": "a"}, 30) is True
    assert await store.set_if_absent("erp:token:lock:1", {"owner": "b"}, 30) is False
    assert await store.get("erp:token:lock:1") == {"owner": "a"}

    clock.advance(31)
    assert await store.set_if_absent("erp:token:lock:1", {"owner": "b"}, 30) is True
    assert await store.get("erp:token:lock:1") == {"owner": "b"}


@pytest.mark.asyncio
async def test_set_if_absent_succeeds_after_delete(store_and_clock) -> None:
    store, _ = store_and_clock
    await store.set_if_absent("lock", {"owner": "a"}, 30)
    await store.delete("lock")

    assert await store.set_if_absent("lock", {"owner": "b"}, 30) is True


@pytest.mark.asyncio
async def test_memory_store_returns_copies() -> None:
    store = InMemoryCacheStore()
    await store.set("key", {"items": [1]})

    value = await store.get("key")
    value["items"].append(2)

    assert await store.get("key") == {"items": [1]}


@pytest.mark.asyncio
async def test_sqlite_store_is_shared_between_instances(tmp_path: Path) -> None:
    clock = FakeClock()
    first = SQLiteCacheStore(str(tmp_path / "shared.db"), clock=clock)
    second = SQLiteCacheStore(str(tmp_path / "shared.db"), clock=clock)

    assert await first.set_if_absent("lock", {"owner": "first"}, 30) is True
    assert await second.set_if_absent("lock", {"owner": "second"}, 30) is False
    await first.set("erp:token:1", {"token": "t"}, 60)
    assert await second.get("erp:token:1") == {"token": "t"}


@pytest.mark.asyncio
async def test_dynamodb_store_stores_json_with_whole_second_expiry() -> None:
    clock = FakeClock(1_700_000_000.25)
    table = FakeTable(clock)
    store = DynamoDBCacheStore(CacheSettings(), table=table, clock=clock)

    await store.set("erp:token:1", {"token": "abc"}, 1200)

    item = table.items["erp:token:1"]
    assert json.loads(item["value"]) == {"token": "abc"}
    assert item["expires_at"] == 1_700_001_201
    assert isinstance(item["expires_at"], int)


@pytest.mark.asyncio
async def test_dynamodb_store_propagates_unexpected_errors() -> None:
    clock = FakeClock()
    store = DynamoDBCacheStore(
        CacheSettings(),
        table=FakeTable(clock, error_code="ProvisionedThroughputExceededException"),
        clock=clock,
    )

    with pytest.raises(ClientError):
        await store.set_if_absent("lock", {"owner": "a"}, 30)


def test_dynamodb_store_requires_table_name() -> None:
    with pytest.raises(ValueError):
        DynamoDBCacheStore(CacheSettings(CACHE_DYNAMODB_TABLE=None))


@pytest.mark.asyncio
async def test_redis_store_uses_millisecond_expiry_and_nx() -> None:
    client = FakeRedis()
    store = RedisCacheStore("redis://localhost:6379/0", client=client)

    await store.set("erp:token:1", {"token": "abc"}, 1200)
    assert client.expiry_ms["erp:token:1"] == 1_200_000
    assert await store.get("erp:token:1") == {"token": "abc"}

    assert await store.set_if_absent("lock", {"owner": "a"}, 0.5) is True
    assert client.expiry_ms["lock"] == 500
    assert await store.set_if_absent("lock", {"owner": "b"}, 30) is False

    await store.delete("lock")
    assert await store.get("lock") is None

    await store.set("generation", 1)
    assert client.expiry_ms["generation"] is None

    await store.close()
    assert client.closed is True


@pytest.mark.asyncio
async def test_delete_if_equal_only_removes_matching_value(store_and_clock) -> None:
    store, _ = store_and_clock
    await store.set_if_absent("erp:token:lock:1", {"owner": "a"}, 30)

    assert await store.delete_if_equal("erp:token:lock:1", {"owner": "b"}) is False
    assert await store.get("erp:token:lock:1") == {"owner": "a"}

    assert await store.delete_if_equal("erp:token:lock:1", {"owner": "a"}) is True
    assert await store.get("erp:token:lock:1") is None
    assert await store.delete_if_equal("erp:token:lock:1", {"owner": "a"}) is False


@pytest.mark.asyncio
async def test_delete_if_equal_leaves_a_lock_taken_over_after_expiry(store_and_clock) -> None:
    store, clock = store_and_clock
    await store.set_if_absent("erp:token:lock:1", {"owner": "a"}, 30)
    clock.advance(31)
    assert await store.set_if_absent("erp:token:lock:1", {"owner": "b"}, 30) is True

    assert await store.delete_if_equal("erp:token:lock:1", {"owner": "a"}) is False
    assert await store.get("erp:token:lock:1") == {"owner": "b"}


@pytest.mark.asyncio
async def test_redis_store_compare_and_delete() -> None:
    client = FakeRedis()
    store = RedisCacheStore("redis://localhost:6379/0", client=client)
    await store.set_if_absent("lock", {"owner": "a"}, 30)

    assert await store.delete_if_equal("lock", {"owner": "b"}) is False
    assert await store.get("lock") == {"owner": "a"}
    assert await store.delete_if_equal("lock", {"owner": "a"}) is True
    assert await store.get("lock") is None
