"""
Factory functions to provide shared clients and services as FastAPI dependencies.
"""

from functools import lru_cache

import httpx

from app.clients import (
    CacheStore,
    DynamoDBCacheStore,
    ErpAuthClient,
    ErpPartnerClient,
    InMemoryCacheStore,
    RedisCacheStore,
    SQLiteCacheStore,
    SQLitePartnerStore,
    SQLiteTenantRepository,
)
from app.core.config import AppSettings, get_settings
from app.services import (
    CompositeRequestObserver,
    CredentialCipher,
    LoggingRequestObserver,
    PartnerSyncService,
    RequestExecutor,
    RequestLogBuffer,
    TokenManager,
)


@lru_cache()
def get_app_settings() -> AppSettings:
    """Ensure configuration is created once per process."""
    return get_settings()


@lru_cache()
def get_http_client() -> httpx.AsyncClient:
    """Shared connection pool for the ERP gateway."""
    return httpx.AsyncClient(
        limits=httpx.Limits(max_connections=50, max_keepalive_connections=10),
        timeout=httpx.Timeout(20.0),
    )


@lru_cache()
def get_cache_store() -> CacheStore:
    """Provide the shared cache selected by ``CACHE_BACKEND``."""
    settings = get_app_settings().cache
    if settings.backend == "redis":
        return RedisCacheStore(settings.redis_url)
    if settings.backend == "dynamodb":
        return DynamoDBCacheStore(settings)
    if settings.backend == "memory":
        return InMemoryCacheStore()
    return SQLiteCacheStore(settings.sqlite_path)


@lru_cache()
def get_credential_cipher() -> CredentialCipher:
    """Provide symmetric encryption helper for stored ERP credentials."""
    return CredentialCipher(secret=get_app_settings().security.credential_encryption_secret)


@lru_cache()
def get_tenant_repository() -> SQLiteTenantRepository:
    return SQLiteTenantRepository(get_app_settings().database.path, get_credential_cipher())


@lru_cache()
def get_partner_store() -> SQLitePartnerStore:
    return SQLitePartnerStore(get_app_settings().database.path)


@lru_cache()
def get_erp_auth_client() -> ErpAuthClient:
    return ErpAuthClient(get_app_settings().erp, get_http_client())


@lru_cache()
def get_token_manager() -> TokenManager:
    """One manager per process so in-flight refreshes are shared."""
    settings = get_app_settings()
    return TokenManager(
        cache=get_cache_store(),
        tenants=get_tenant_repository(),
        auth_client=get_erp_auth_client(),
        settings=settings.token,
        key_prefix=settings.cache.key_prefix,
    )


@lru_cache()
def get_request_log_buffer() -> RequestLogBuffer:
    return RequestLogBuffer(max_entries=get_app_settings().request.log_buffer_size)


@lru_cache()
def get_request_executor() -> RequestExecutor:
    settings = get_app_settings()
    return RequestExecutor(
        token_manager=get_token_manager(),
        tenants=get_tenant_repository(),
        http_client=get_http_client(),
        erp_settings=settings.erp,
        settings=settings.request,
        observer=CompositeRequestObserver(
            [LoggingRequestObserver(), get_request_log_buffer()]
        ),
    )


@lru_cache()
def get_partner_client() -> ErpPartnerClient:
    settings = get_app_settings()
    return ErpPartnerClient(
        executor=get_request_executor(),
        cache=get_cache_store(),
        erp_settings=settings.erp,
        sync_settings=settings.sync,
        key_prefix=settings.cache.key_prefix,
    )


def get_partner_sync_service() -> PartnerSyncService:
    """Build a partner sync service using configured clients."""
    return PartnerSyncService(
        token_manager=get_token_manager(),
        partner_client=get_partner_client(),
        partner_store=get_partner_store(),
        tenants=get_tenant_repository(),
        settings=get_app_settings().sync,
    )


async def close_shared_clients() -> None:
    """Release pooled connections created by the factories above."""
    if get_http_client.cache_info().currsize:
        await get_http_client().aclose()
        get_http_client.cache_clear()
    if get_cache_store.cache_info().currsize:
        store = get_cache_store()
        if isinstance(store, RedisCacheStore):
            await store.close()


__all__ = [
    "close_shared_clients",
    "get_app_settings",
    "get_cache_store",
    "get_credential_cipher",
    "get_erp_auth_client",
    "get_http_client",
    "get_partner_client",
    "get_partner_store",
    "get_partner_sync_service",
    "get_request_executor",
    "get_request_log_buffer",
    "get_tenant_repository",
    "get_token_manager",
]
