"""
Authenticated calls to the ERP gateway.

Every business query or command goes through ``RequestExecutor.execute``,
which attaches the tenant's bearer token, recovers once from an expired
session, and retries transport failures and 5xx answers with linear backoff.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

import httpx

from app.core.config import ErpSettings, RequestSettings
from app.core.errors import (
    NoActiveTenantError,
    RequestFailedError,
    SessionExpiredError,
    UpstreamUnavailableError,
)
from app.schemas.sync import RequestLogEvent
from app.utils.http import (
    RetryConfig,
    is_auth_rejection,
    is_server_error,
    remote_error_message,
)

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from app.clients.tenant_repository import TenantRepository
    from app.services.request_log import RequestObserver
    from app.services.token_manager import TokenManager

logger = logging.getLogger(__name__)


class RequestExecutor:
    """Issue bearer-authenticated requests on behalf of a tenant."""

    def __init__(
        self,
        *,
        token_manager: "TokenManager",
        tenants: "TenantRepository",
        http_client: httpx.AsyncClient,
        erp_settings: ErpSettings,
        settings: RequestSettings,
        observer: Optional["RequestObserver"] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._tokens = token_manager
        self._tenants = tenants
        self._http = http_client
        self._erp = erp_settings
        self._settings = settings
        self._observer = observer
        self._clock = clock
        self._sleep = sleep
        # ``max_retries`` counts extra attempts after the first one.
        self._retry = RetryConfig(
            attempts=settings.max_retries + 1,
            backoff_seconds=settings.backoff_seconds,
        )

    async def resolve_default_tenant(self) -> int:
        tenant = await self._tenants.get_active()
        if tenant is None:
            raise NoActiveTenantError("No active contract found.")
        return tenant.id

    async def execute(
        self,
        url: str,
        method: str = "POST",
        body: Any = None,
        *,
        tenant_id: Optional[int] = None,
    ) -> Any:
        """Send the request and return the decoded JSON body."""
        if tenant_id is None:
            tenant_id = await self.resolve_default_tenant()
        method = method.upper()

        force_refresh = False
        session_retried = False
        transient_failures = 0

        while True:
            token = await self._tokens.get_token(tenant_id, force_refresh=force_refresh)
            force_refresh = False
            started = self._clock()
            try:
                response = await self._http.request(
                    method,
                    url,
                    json=body if method != "GET" else None,
                    headers={
                        "Authorization": f"Bearer {token}",
                        "Content-Type": "application/json",
                    },
                    timeout=self._erp.request_timeout_seconds,
                )
            except httpx.TransportError as exc:
                self._emit(method, url, None, started, "transport_error", tenant_id, repr(exc))
                transient_failures += 1
                if transient_failures >= self._retry.attempts:
                    raise UpstreamUnavailableError(
                        f"ERP unreachable after {transient_failures} attempts: {exc!r}"
                    ) from exc
                await self._backoff(transient_failures, url)
                continue

            status = response.status_code
            if is_auth_rejection(status):
                self._emit(method, url, status, started, "unauthorized", tenant_id,
                           remote_error_message(response))
                await self._tokens.invalidate_token(tenant_id)
                if session_retried:
                    raise SessionExpiredError(
                        "ERP session expired and the refreshed token was rejected too."
                    )
                session_retried = True
                force_refresh = True
                logger.info("Token rejected for tenant %s; retrying with a new token", tenant_id)
                await self._sleep(self._settings.session_retry_delay_seconds)
                continue

            if is_server_error(status):
                message = remote_error_message(response)
                self._emit(method, url, status, started, "upstream_error", tenant_id, message)
                transient_failures += 1
                if transient_failures >= self._retry.attempts:
                    raise UpstreamUnavailableError(
                        f"ERP service temporarily unavailable (HTTP {status})."
                    )
                await self._backoff(transient_failures, url)
                continue

            if not response.is_success:
                message = remote_error_message(response) or f"ERP request failed with HTTP {status}."
                self._emit(method, url, status, started, "failed", tenant_id, message)
                raise RequestFailedError(message, status_code=status)

            self._emit(method, url, status, started, "success", tenant_id, None)
            if not response.content:
                return None
            try:
                return response.json()
            except ValueError as exc:
                raise RequestFailedError(
                    "ERP returned a non-JSON response body.", status_code=status
                ) from exc

    async def _backoff(self, failures: int, url: str) -> None:
        delay = self._retry.delay_for(failures)
        logger.warning(
            "Retrying ERP request %s in %.1fs (%s/%s)",
            url,
            delay,
            failures,
            self._retry.attempts - 1,
        )
        await self._sleep(delay)

    def _emit(
        self,
        method: str,
        url: str,
        status: Optional[int],
        started: float,
        outcome: str,
        tenant_id: int,
        error: Optional[str],
    ) -> None:
        if self._observer is None:
            return
        try:
            event = RequestLogEvent(
                method=method,
                url=url,
                status=status,
                duration_ms=int((self._clock() - started) * 1000),
                outcome=outcome,
                tenant_id=tenant_id,
                error=error,
                timestamp=datetime.now(timezone.utc),
            )
            self._observer.record(event)
        except Exception:  # pylint: disable=broad-except
            logger.debug("Request log observer failed", exc_info=True)


__all__ = ["RequestExecutor"]
