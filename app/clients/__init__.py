"""Client wrappers for the ERP gateway, the shared cache and local storage."""

from .cache_store import CacheStore, InMemoryCacheStore
from .dynamodb import DynamoDBCacheStore
from .erp_auth import ErpAuthClient
from .erp_partners import ErpPartnerClient
from .partner_store import PartnerStoreSession, SQLitePartnerStore
from .redis_cache import RedisCacheStore
from .sqlite_store import SQLiteCacheStore
from .tenant_repository import SQLiteTenantRepository, TenantRepository

__all__ = [
    "CacheStore",
    "DynamoDBCacheStore",
    "ErpAuthClient",
    "ErpPartnerClient",
    "InMemoryCacheStore",
    "PartnerStoreSession",
    "RedisCacheStore",
    "SQLiteCacheStore",
    "SQLitePartnerStore",
    "SQLiteTenantRepository",
    "TenantRepository",
]
