"""Service layer for token management, authenticated requests and sync."""

from .credential_cipher import CredentialCipher
from .partner_sync import PartnerSyncService
from .request_executor import RequestExecutor
from .request_log import (
    CompositeRequestObserver,
    LoggingRequestObserver,
    RequestLogBuffer,
    RequestObserver,
)
from .token_manager import TokenManager

__all__ = [
    "CompositeRequestObserver",
    "CredentialCipher",
    "LoggingRequestObserver",
    "PartnerSyncService",
    "RequestExecutor",
    "RequestLogBuffer",
    "RequestObserver",
    "TokenManager",
]
