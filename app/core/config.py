"""
Application configuration models and helpers.

Centralizes settings management so the FastAPI app, the sync command line and
the background services share a consistent configuration surface.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

import os

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_env_file(path: str = ".env") -> None:
    """Best-effort load key=value pairs from a .env file without extra deps."""
    env_path = Path(path)
    if not env_path.exists():
        return
    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        if not key or key in os.environ:
            continue
        cleaned = value.strip().strip('"').strip("'")
        os.environ[key] = cleaned


_load_env_file()


class ErpSettings(BaseSettings):
    """Endpoints and timeouts for the remote ERP gateway."""

    base_url: AnyHttpUrl = Field(
        "https://api.sandbox.sankhya.com.br", validation_alias="ERP_BASE_URL"
    )
    login_path: str = Field("/login", validation_alias="ERP_LOGIN_PATH")
    load_records_path: str = Field(
        "/gateway/v1/mge/service.sbr"
        "?serviceName=CRUDServiceProvider.loadRecords&outputType=json",
        validation_alias="ERP_LOAD_RECORDS_PATH",
    )
    save_path: str = Field(
        "/gateway/v1/mge/service.sbr?serviceName=DatasetSP.save&outputType=json",
        validation_alias="ERP_SAVE_PATH",
    )
    # Three attempts of this plus backoff must fit in TOKEN_LOCK_TTL_SECONDS.
    login_timeout_seconds: float = Field(
        8.0, validation_alias="ERP_LOGIN_TIMEOUT_SECONDS"
    )
    request_timeout_seconds: float = Field(
        15.0, validation_alias="ERP_REQUEST_TIMEOUT_SECONDS"
    )

    def url_for(self, path: str) -> str:
        """Join a gateway path onto the configured base URL."""
        return f"{str(self.base_url).rstrip('/')}/{path.lstrip('/')}"

    @property
    def login_url(self) -> str:
        return self.url_for(self.login_path)

    @property
    def load_records_url(self) -> str:
        return self.url_for(self.load_records_path)

    @property
    def save_url(self) -> str:
        return self.url_for(self.save_path)


class TokenSettings(BaseSettings):
    """Bearer token lifetime and refresh coordination policy."""

    ttl_seconds: int = Field(20 * 60, validation_alias="TOKEN_TTL_SECONDS")
    lock_ttl_seconds: float = Field(30.0, validation_alias="TOKEN_LOCK_TTL_SECONDS")
    lock_wait_seconds: float = Field(
        25.0, validation_alias="TOKEN_LOCK_WAIT_SECONDS"
    )
    lock_poll_seconds: float = Field(
        0.5, validation_alias="TOKEN_LOCK_POLL_SECONDS"
    )
    auth_max_attempts: int = Field(3, validation_alias="TOKEN_AUTH_MAX_ATTEMPTS")
    auth_backoff_seconds: float = Field(
        1.0, validation_alias="TOKEN_AUTH_BACKOFF_SECONDS"
    )

    def login_budget_seconds(self, login_timeout_seconds: float) -> float:
        """Longest a refresh can spend logging in, retries and backoff included."""
        backoff = sum(
            self.auth_backoff_seconds * attempt for attempt in range(1, self.auth_max_attempts)
        )
        return self.auth_max_attempts * login_timeout_seconds + backoff


class RequestSettings(BaseSettings):
    """Retry policy for authenticated business calls."""

    max_retries: int = Field(2, validation_alias="REQUEST_MAX_RETRIES")
    backoff_seconds: float = Field(1.0, validation_alias="REQUEST_BACKOFF_SECONDS")
    session_retry_delay_seconds: float = Field(
        0.5, validation_alias="REQUEST_SESSION_RETRY_DELAY_SECONDS"
    )
    log_buffer_size: int = Field(500, validation_alias="REQUEST_LOG_BUFFER_SIZE")


class SyncSettings(BaseSettings):
    """Reconciliation batch sizing and pacing."""

    batch_size: int = Field(100, validation_alias="SYNC_BATCH_SIZE")
    tenant_delay_seconds: float = Field(
        3.0, validation_alias="SYNC_TENANT_DELAY_SECONDS"
    )
    partner_search_cache_ttl_seconds: int = Field(
        600, validation_alias="PARTNER_SEARCH_CACHE_TTL_SECONDS"
    )

    @field_validator("batch_size")
    @classmethod
    def _positive_batch(cls, value: int) -> int:
        if value < 1:
            raise ValueError("SYNC_BATCH_SIZE must be at least 1")
        return value


class CacheSettings(BaseSettings):
    """Shared cache store used for tokens, locks and search results."""

    backend: Literal["memory", "sqlite", "redis", "dynamodb"] = Field(
        "sqlite", validation_alias="CACHE_BACKEND"
    )
    sqlite_path: str = Field("data/cache.db", validation_alias="CACHE_SQLITE_PATH")
    redis_url: str = Field("redis://localhost:6379/0", validation_alias="REDIS_URL")
    key_prefix: str = Field("erp", validation_alias="CACHE_KEY_PREFIX")
    aws_region: str = Field("us-east-1", validation_alias="AWS_REGION")
    dynamodb_table_name: Optional[str] = Field(
        None,
        validation_alias="CACHE_DYNAMODB_TABLE",
        description="Table keyed by 'cache_key' with TTL on 'expires_at'.",
    )


class DatabaseSettings(BaseSettings):
    """Local relational store holding contracts and mirrored partners."""

    path: str = Field("data/erp_sync.db", validation_alias="DATABASE_PATH")


class SecuritySettings(BaseSettings):
    """Security-related configuration."""

    credential_encryption_secret: str = Field(
        ...,
        validation_alias="CREDENTIAL_ENCRYPTION_SECRET",
        description="Secret used to derive the key encrypting stored ERP credentials.",
    )


class AppSettings(BaseSettings):
    """Root settings object for the application."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    environment: str = Field("development", validation_alias="APP_ENV")
    log_level: str = Field("INFO", validation_alias="APP_LOG_LEVEL")
    erp: ErpSettings = Field(default_factory=ErpSettings)
    token: TokenSettings = Field(default_factory=TokenSettings)
    request: RequestSettings = Field(default_factory=RequestSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()  # type: ignore[call-arg]


__all__ = [
    "AppSettings",
    "CacheSettings",
    "DatabaseSettings",
    "ErpSettings",
    "RequestSettings",
    "SecuritySettings",
    "SyncSettings",
    "TokenSettings",
    "get_settings",
]
