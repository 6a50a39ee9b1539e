"""
Typed failures raised by the token manager and the request executor.

The sync engine catches all of them per tenant; the HTTP layer maps them to
status codes.
"""

from __future__ import annotations


class ErpIntegrationError(Exception):
    """Base class for failures talking to the remote ERP."""


class AuthError(ErpIntegrationError):
    """Raised when a bearer token cannot be produced for a tenant."""


class AuthFailedError(AuthError):
    """Credentials were rejected or the login response carried no token."""


class AuthServiceUnavailableError(AuthError):
    """The login endpoint kept failing with a server-side error."""


class LockTimeoutError(AuthError):
    """The distributed refresh lock could not be obtained in time."""


class NoActiveTenantError(AuthError):
    """No active contract is configured to resolve a default tenant."""


class RequestError(ErpIntegrationError):
    """Raised when an authenticated business call does not succeed."""


class SessionExpiredError(RequestError):
    """The remote kept rejecting the bearer token after a forced refresh."""


class UpstreamUnavailableError(RequestError):
    """Transport failures or 5xx responses outlasted the retry budget."""


class RequestFailedError(RequestError):
    """The remote answered with a non-retryable error status."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


__all__ = [
    "AuthError",
    "AuthFailedError",
    "AuthServiceUnavailableError",
    "ErpIntegrationError",
    "LockTimeoutError",
    "NoActiveTenantError",
    "RequestError",
    "RequestFailedError",
    "SessionExpiredError",
    "UpstreamUnavailableError",
]
