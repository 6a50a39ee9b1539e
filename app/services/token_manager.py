"""
Per-tenant bearer token lifecycle for the ERP gateway.

Tokens are expensive to mint, so refreshes are single-flight twice over: one
``asyncio`` task per tenant inside the process, and a lock record in the
shared cache store across processes. Waiters on the distributed lock keep
re-reading the token cache because another process may finish first.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Optional

from pydantic import ValidationError

from app.core.config import TokenSettings
from app.core.errors import (
    AuthFailedError,
    AuthServiceUnavailableError,
    LockTimeoutError,
)
from app.core.logging import mask_secret
from app.schemas.auth import LockRecord, TokenRecord, TokenStatus, utc_from_timestamp
from app.utils.http import RetryConfig

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from app.clients.cache_store import CacheStore
    from app.clients.erp_auth import ErpAuthClient
    from app.clients.tenant_repository import TenantRepository

logger = logging.getLogger(__name__)


class TokenManager:
    """Owns one cached ``TokenRecord`` per tenant."""

    def __init__(
        self,
        *,
        cache: "CacheStore",
        tenants: "TenantRepository",
        auth_client: "ErpAuthClient",
        settings: TokenSettings,
        key_prefix: str = "erp",
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._cache = cache
        self._tenants = tenants
        self._auth = auth_client
        self._settings = settings
        self._prefix = key_prefix
        self._clock = clock
        self._sleep = sleep
        self._auth_retry = RetryConfig(
            attempts=settings.auth_max_attempts,
            backoff_seconds=settings.auth_backoff_seconds,
        )
        self._inflight: Dict[int, asyncio.Task[str]] = {}
        self._held_locks: Dict[int, Dict[str, Any]] = {}

    def _token_key(self, tenant_id: int) -> str:
        return f"{self._prefix}:token:{tenant_id}"

    def _lock_key(self, tenant_id: int) -> str:
        return f"{self._prefix}:token:lock:{tenant_id}"

    async def get_token(self, tenant_id: int, *, force_refresh: bool = False) -> str:
        """Return a valid bearer token for ``tenant_id``, refreshing when needed."""
        if force_refresh:
            await self._cache.delete(self._token_key(tenant_id))
            logger.info("Forcing token refresh for tenant %s", tenant_id)
        else:
            record = await self._read_valid_record(tenant_id)
            if record is not None:
                return record.token

        task = self._inflight.get(tenant_id)
        # A finished task lingers until its done callback runs; never join it.
        if task is None or task.done():
            task = asyncio.ensure_future(self._refresh(tenant_id))
            self._inflight[tenant_id] = task
            task.add_done_callback(
                lambda done, tid=tenant_id: self._forget_inflight(tid, done)
            )
        else:
            logger.debug("Joining in-flight token refresh for tenant %s", tenant_id)
        # One cancelled caller must not cancel the refresh for everyone else.
        return await asyncio.shield(task)

    async def invalidate_token(self, tenant_id: int) -> None:
        """
        Drop the cached token for the tenant.

        The refresh lock is only cleared when it is stale. A live lock belongs
        to a login still in progress somewhere, and removing it would let a
        second login start next to it.
        """
        await self._cache.delete(self._token_key(tenant_id))
        await self._clear_stale_lock(tenant_id)
        logger.info("Invalidated cached token for tenant %s", tenant_id)

    async def token_status(self, tenant_id: int) -> Optional[TokenStatus]:
        """Describe the cached token without minting a new one."""
        record = await self._read_record(tenant_id)
        if record is None:
            return None
        return TokenStatus.from_record(tenant_id, record, utc_from_timestamp(self._clock()))

    def _forget_inflight(self, tenant_id: int, task: asyncio.Task[str]) -> None:
        if self._inflight.get(tenant_id) is task:
            del self._inflight[tenant_id]
        if not task.cancelled():
            # Mark the exception retrieved when every awaiting caller went away.
            task.exception()

    async def _read_record(self, tenant_id: int) -> Optional[TokenRecord]:
        raw = await self._cache.get(self._token_key(tenant_id))
        if not raw:
            return None
        try:
            return TokenRecord.model_validate(raw)
        except ValidationError:
            logger.warning("Discarding malformed cached token for tenant %s", tenant_id)
            await self._cache.delete(self._token_key(tenant_id))
            return None

    async def _read_valid_record(self, tenant_id: int) -> Optional[TokenRecord]:
        record = await self._read_record(tenant_id)
        if record is not None and record.is_valid(utc_from_timestamp(self._clock())):
            return record
        return None

    async def _refresh(self, tenant_id: int) -> str:
        owner = uuid.uuid4().hex
        existing = await self._acquire_lock(tenant_id, owner)
        if existing is not None:
            logger.info("Tenant %s token was refreshed by another process", tenant_id)
            return existing.token

        logger.debug("Acquired token refresh lock for tenant %s", tenant_id)
        try:
            # The previous holder may have stored a token just before releasing.
            record = await self._read_valid_record(tenant_id)
            if record is not None:
                return record.token

            tenant = await self._tenants.get_by_id(tenant_id)
            if tenant is None:
                raise AuthFailedError(f"Contract {tenant_id} not found.")

            token = await self._login_with_retry(tenant_id, tenant.credentials)
            issued_at = utc_from_timestamp(self._clock())
            record = TokenRecord(
                token=token,
                issued_at=issued_at,
                expires_at=issued_at + timedelta(seconds=self._settings.ttl_seconds),
            )
            await self._cache.set(
                self._token_key(tenant_id),
                record.model_dump(mode="json"),
                self._settings.ttl_seconds,
            )
            logger.info(
                "Stored new token %s for tenant %s (valid until %s)",
                mask_secret(token),
                tenant_id,
                record.expires_at.isoformat(),
            )
            return token
        except AuthFailedError:
            await self._cache.delete(self._token_key(tenant_id))
            raise
        finally:
            await self._release_lock(tenant_id, owner)

    async def _acquire_lock(self, tenant_id: int, owner: str) -> Optional[TokenRecord]:
        """
        Take the distributed refresh lock.

        Returns ``None`` once the lock is held, or the token another process
        stored while this one waited. Raises ``LockTimeoutError`` when neither
        happens within the wait budget.
        """
        lock_key = self._lock_key(tenant_id)
        deadline = self._clock() + self._settings.lock_wait_seconds
        while True:
            lock = LockRecord(owner=owner, acquired_at=utc_from_timestamp(self._clock()))
            lock_value = lock.model_dump(mode="json")
            if await self._cache.set_if_absent(
                lock_key, lock_value, self._settings.lock_ttl_seconds
            ):
                self._held_locks[tenant_id] = lock_value
                return None

            await self._sleep(self._settings.lock_poll_seconds)

            record = await self._read_valid_record(tenant_id)
            if record is not None:
                return record
            if self._clock() >= deadline:
                raise LockTimeoutError(
                    f"Timed out after {self._settings.lock_wait_seconds}s waiting "
                    f"for the token refresh lock of tenant {tenant_id}."
                )

    async def _clear_stale_lock(self, tenant_id: int) -> None:
        lock_key = self._lock_key(tenant_id)
        raw = await self._cache.get(lock_key)
        if not raw:
            return
        try:
            lock = LockRecord.model_validate(raw)
        except ValidationError:
            logger.warning("Discarding malformed refresh lock for tenant %s", tenant_id)
        else:
            stale_at = lock.acquired_at + timedelta(seconds=self._settings.lock_ttl_seconds)
            if stale_at > utc_from_timestamp(self._clock()):
                logger.debug(
                    "Keeping live token refresh lock of tenant %s held by %s",
                    tenant_id,
                    lock.owner,
                )
                return
        # Compare-and-delete so a lock taken over in the meantime survives.
        if await self._cache.delete_if_equal(lock_key, raw):
            logger.info("Cleared stale token refresh lock for tenant %s", tenant_id)

    async def _release_lock(self, tenant_id: int, owner: str) -> None:
        lock_value = self._held_locks.pop(tenant_id, None)
        if lock_value is None or lock_value.get("owner") != owner:
            return
        try:
            if await self._cache.delete_if_equal(self._lock_key(tenant_id), lock_value):
                logger.debug("Released token refresh lock for tenant %s", tenant_id)
            else:
                logger.warning(
                    "Token refresh lock for tenant %s expired before release", tenant_id
                )
        except Exception:  # pylint: disable=broad-except
            # Lock expiry covers a failed release.
            logger.warning(
                "Could not release token refresh lock for tenant %s", tenant_id, exc_info=True
            )

    async def _login_with_retry(self, tenant_id: int, credentials) -> str:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._auth.login(credentials)
            except AuthServiceUnavailableError as exc:
                if attempt >= self._auth_retry.attempts:
                    logger.error(
                        "ERP login for tenant %s still unavailable after %s attempts",
                        tenant_id,
                        attempt,
                    )
                    raise
                delay = self._auth_retry.delay_for(attempt)
                logger.warning(
                    "ERP login for tenant %s failed (%s); retrying in %.1fs (%s/%s)",
                    tenant_id,
                    exc,
                    delay,
                    attempt,
                    self._auth_retry.attempts,
                )
                await self._sleep(delay)


__all__ = ["TokenManager"]
