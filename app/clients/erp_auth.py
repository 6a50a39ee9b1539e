"""
ERP gateway login.

Exchanges a contract's four credential headers for a bearer token and
classifies failures so the token manager knows which ones to retry.
"""

from __future__ import annotations

import httpx

from app.core.config import ErpSettings
from app.core.errors import AuthFailedError, AuthServiceUnavailableError
from app.schemas.tenant import TenantCredentials
from app.utils.http import is_server_error, remote_error_message

# The gateway has answered with either name depending on its version.
_TOKEN_FIELDS = ("bearerToken", "token")


class ErpAuthClient:
    """Perform the login round-trip against the ERP gateway."""

    def __init__(self, settings: ErpSettings, http_client: httpx.AsyncClient) -> None:
        self._settings = settings
        self._http = http_client

    async def login(self, credentials: TenantCredentials) -> str:
        """
        Return a fresh bearer token.

        Raises ``AuthServiceUnavailableError`` for 5xx answers and transport
        failures, ``AuthFailedError`` for everything else. Counting connection
        errors and timeouts as unavailable is deliberate, not just 5xx: the
        token manager retries them the same way.
        """
        try:
            response = await self._http.post(
                self._settings.login_url,
                json={},
                headers=credentials.as_login_headers(),
                timeout=self._settings.login_timeout_seconds,
            )
        except httpx.TransportError as exc:
            raise AuthServiceUnavailableError(
                f"ERP login endpoint unreachable: {exc!r}"
            ) from exc

        if is_server_error(response.status_code):
            raise AuthServiceUnavailableError(
                f"ERP login service temporarily unavailable (HTTP {response.status_code})."
            )
        if response.status_code >= 400:
            detail = remote_error_message(response) or "no detail"
            raise AuthFailedError(
                f"ERP login rejected (HTTP {response.status_code}): {detail}"
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise AuthFailedError("ERP login returned a non-JSON body.") from exc

        token = None
        if isinstance(payload, dict):
            token = next((payload[f] for f in _TOKEN_FIELDS if payload.get(f)), None)
        if not token:
            raise AuthFailedError("ERP login response did not contain a bearer token.")
        return str(token)


__all__ = ["ErpAuthClient"]
