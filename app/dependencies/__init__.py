"""Expose dependency helpers for FastAPI routers."""

from .clients import (
    close_shared_clients,
    get_app_settings,
    get_cache_store,
    get_credential_cipher,
    get_erp_auth_client,
    get_http_client,
    get_partner_client,
    get_partner_store,
    get_partner_sync_service,
    get_request_executor,
    get_request_log_buffer,
    get_tenant_repository,
    get_token_manager,
)

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
