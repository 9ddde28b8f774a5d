"""
Platform Integration - Error Taxonomy.

============================================================
PURPOSE
============================================================
Typed errors for every failure the integration layer can
produce, plus mapping from raw venue responses.

============================================================
ERROR TYPES
============================================================
1. RegistrySeedError  - Fatal, raised at startup
2. ConnectorError     - Per-call venue failure (auth, fetch)
3. SyncError          - Wraps a connector failure for one
                        connection id
4. PersistenceError   - Store unavailable; retried with
                        backoff at the facade boundary
5. Lookup errors      - Platform / connection not found
6. CredentialVaultError

CONNECTOR CATEGORIES:
- AUTHENTICATION      - Bad credentials, expired token
- RATE_LIMIT          - Venue throttled us
- MALFORMED_RESPONSE  - Missing or non-numeric fields
- TIMEOUT             - Request exceeded its timeout
- NETWORK             - Connection refused/reset
- VENUE_ERROR         - Anything else the venue rejected

============================================================
"""

import logging
from enum import Enum
from typing import Any, Dict, Optional


logger = logging.getLogger(__name__)


# ============================================================
# ENUMS
# ============================================================

class ConnectorPhase(Enum):
    """Connector call that failed."""

    AUTH = "auth"
    FETCH_ACCOUNT = "fetch_account"
    FETCH_TRADES = "fetch_trades"
    REFRESH = "refresh"


class ErrorCategory(Enum):
    """Normalized connector failure categories."""

    AUTHENTICATION = "AUTHENTICATION"
    RATE_LIMIT = "RATE_LIMIT"
    MALFORMED_RESPONSE = "MALFORMED_RESPONSE"
    TIMEOUT = "TIMEOUT"
    NETWORK = "NETWORK"
    VENUE_ERROR = "VENUE_ERROR"


RETRYABLE_CATEGORIES = {
    ErrorCategory.RATE_LIMIT,
    ErrorCategory.TIMEOUT,
    ErrorCategory.NETWORK,
}


# ============================================================
# BASE
# ============================================================

class IntegrationError(Exception):
    """Base class for all integration layer errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class RegistrySeedError(IntegrationError):
    """Seeding the platform table failed. Startup must abort."""


class PersistenceError(IntegrationError):
    """
    The local store is unavailable or rejected a write.

    Raised by the repository; the facade retries with
    exponential backoff before surfacing it.
    """

    def __init__(self, operation: str, original_error: str) -> None:
        super().__init__(
            f"Persistence failure in {operation}: {original_error}",
            details={"operation": operation},
        )
        self.operation = operation
        self.original_error = original_error


class PlatformNotFoundError(IntegrationError):
    def __init__(self, platform_id: Any) -> None:
        super().__init__(f"Platform {platform_id} not found", details={"platform_id": platform_id})
        self.platform_id = platform_id


class ConnectionNotFoundError(IntegrationError):
    def __init__(self, connection_id: Any) -> None:
        super().__init__(f"Connection {connection_id} not found", details={"connection_id": connection_id})
        self.connection_id = connection_id


class CredentialVaultError(IntegrationError):
    """Storing, resolving or revoking a secret failed."""


# ============================================================
# CONNECTOR ERROR
# ============================================================

class ConnectorError(IntegrationError):
    """
    A venue call failed.

    Carries the venue, the phase that failed and a normalized
    category so callers can log and report it uniformly.
    """

    def __init__(
        self,
        venue: str,
        phase: ConnectorPhase,
        category: ErrorCategory,
        cause: str,
        http_status: Optional[int] = None,
    ) -> None:
        self.venue = venue
        self.phase = phase
        self.category = category
        self.cause = cause
        self.http_status = http_status
        super().__init__(
            f"[{venue}] {phase.value} failed ({category.value}): {cause}",
            details=self.to_dict(),
        )

    @property
    def is_retryable(self) -> bool:
        if self.category in RETRYABLE_CATEGORIES:
            return True
        return self.http_status is not None and self.http_status >= 500

    def to_dict(self) -> Dict[str, Any]:
        return {
            "venue": self.venue,
            "phase": self.phase.value,
            "category": self.category.value,
            "cause": self.cause,
            "http_status": self.http_status,
        }


class SyncError(IntegrationError):
    """Synchronizing one connection failed."""

    def __init__(self, connection_id: int, cause: Exception) -> None:
        self.connection_id = connection_id
        self.cause = cause
        details: Dict[str, Any] = {"connection_id": connection_id}
        if isinstance(cause, ConnectorError):
            details.update(cause.to_dict())
        super().__init__(f"Sync failed for connection {connection_id}: {cause}", details=details)

    @property
    def connector_error(self) -> Optional[ConnectorError]:
        return self.cause if isinstance(self.cause, ConnectorError) else None


# ============================================================
# HTTP STATUS MAPPING
# ============================================================

def map_http_error(
    venue: str,
    phase: ConnectorPhase,
    http_status: int,
    message: str,
) -> ConnectorError:
    """
    Map a non-success HTTP response to a ConnectorError.

    Args:
        venue: Venue slug
        phase: Connector phase
        http_status: HTTP status code
        message: Venue message or body excerpt

    Returns:
        ConnectorError with a normalized category
    """
    if http_status in (401, 403):
        category = ErrorCategory.AUTHENTICATION
    elif http_status in (418, 429):
        category = ErrorCategory.RATE_LIMIT
    elif http_status in (408, 504):
        category = ErrorCategory.TIMEOUT
    else:
        category = ErrorCategory.VENUE_ERROR

    return ConnectorError(
        venue=venue,
        phase=phase,
        category=category,
        cause=message or f"HTTP {http_status}",
        http_status=http_status,
    )


def malformed(venue: str, phase: ConnectorPhase, cause: str) -> ConnectorError:
    """Create a malformed-response error."""
    return ConnectorError(venue, phase, ErrorCategory.MALFORMED_RESPONSE, cause)


def describe_error(error: Exception) -> str:
    """One-line description suitable for a user-visible message."""
    if isinstance(error, SyncError) and error.connector_error is not None:
        ce = error.connector_error
        return f"{ce.venue} {ce.phase.value} failed: {ce.cause}"
    if isinstance(error, ConnectorError):
        return f"{error.venue} {error.phase.value} failed: {error.cause}"
    if isinstance(error, IntegrationError):
        return error.message
    return str(error)
