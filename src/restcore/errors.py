"""
Error taxonomy for the REST client core.

Every failure that leaves the client is one of a closed set of variants.
The variant is carried as a discriminant (`ErrorKind`) so retryability is
decided from `kind` and `status` alone:

- API: remote returned a non-success status or an in-band `errors` payload
- AUTH: 401/403-class API error
- RATE_LIMIT: HTTP 429, carries the computed retry-after duration
- NETWORK: transport failure unrelated to timeout/abort
- TIMEOUT: the attempt's own timeout fired
- CANCELLED: caller-initiated abort (cancel_request, caller signal, reset)
- SCOPE / VALIDATION: raised by higher layers, same base contract
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Discriminant for the error taxonomy."""

    API = "API"
    AUTH = "AUTH"
    RATE_LIMIT = "RATE_LIMIT"
    NETWORK = "NETWORK"
    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"
    SCOPE = "SCOPE"
    VALIDATION = "VALIDATION"


# Client errors that are still worth retrying (408 Request Timeout).
RETRYABLE_CLIENT_STATUSES: frozenset[int] = frozenset({408})

_ALWAYS_RETRYABLE: frozenset[ErrorKind] = frozenset(
    {ErrorKind.NETWORK, ErrorKind.TIMEOUT, ErrorKind.RATE_LIMIT}
)


class RestCoreError(Exception):
    """Base class for every error raised by restcore."""

    kind: ErrorKind = ErrorKind.API

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause

    @property
    def status(self) -> int | None:
        """HTTP status for API-originated variants, None otherwise."""
        return None

    def to_dict(self) -> dict[str, Any]:
        """Serializable error details."""
        return {
            "name": type(self).__name__,
            "kind": self.kind.value,
            "message": self.message,
            "cause": str(self.cause) if self.cause is not None else None,
        }


class ApiError(RestCoreError):
    """Remote returned a non-success status or an in-band error payload."""

    kind = ErrorKind.API

    def __init__(self, message: str, status: int, body: Any = None) -> None:
        super().__init__(message)
        self._status = status
        self.body = body

    @property
    def status(self) -> int:
        return self._status

    @property
    def is_client_error(self) -> bool:
        """4xx, excluding 429 which has its own variant."""
        return 400 <= self._status < 500 and self._status != 429

    @property
    def is_server_error(self) -> bool:
        return 500 <= self._status < 600

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "status": self._status, "body": self.body}


class AuthError(ApiError):
    """Authentication/authorization failure (401/403)."""

    kind = ErrorKind.AUTH

    def __init__(self, message: str, status: int = 401, body: Any = None) -> None:
        super().__init__(message, status, body)


class RateLimitError(ApiError):
    """HTTP 429 from the remote API."""

    kind = ErrorKind.RATE_LIMIT

    def __init__(
        self,
        message: str,
        retry_after_ms: int | None = None,
        body: Any = None,
    ) -> None:
        super().__init__(message, 429, body)
        self.retry_after_ms = retry_after_ms

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "retry_after_ms": self.retry_after_ms}


class NetworkError(RestCoreError):
    """Transport-level failure (DNS, connection reset, ...)."""

    kind = ErrorKind.NETWORK


class RequestTimeoutError(RestCoreError):
    """The attempt's own timeout fired."""

    kind = ErrorKind.TIMEOUT


class RequestCancelledError(RestCoreError):
    """The request was aborted by its caller."""

    kind = ErrorKind.CANCELLED


class ScopeError(RestCoreError):
    """A required OAuth scope is missing."""

    kind = ErrorKind.SCOPE

    def __init__(
        self,
        required_scopes: str | list[str],
        available_scopes: list[str] | None = None,
    ) -> None:
        scopes = [required_scopes] if isinstance(required_scopes, str) else list(required_scopes)
        super().__init__(f"Missing required scope(s): {', '.join(scopes)}")
        self.required_scopes = scopes
        self.available_scopes = list(available_scopes or [])

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "required_scopes": self.required_scopes,
            "available_scopes": self.available_scopes,
        }


class ValidationError(RestCoreError):
    """Invalid input detected before anything is sent."""

    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, errors: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.errors = dict(errors or {})

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "errors": self.errors}


def api_error_for_status(message: str, status: int, body: Any = None) -> ApiError:
    """Build the API variant matching an HTTP status."""
    if status in (401, 403):
        return AuthError(message, status, body)
    if status == 429:
        return RateLimitError(message, body=body)
    return ApiError(message, status, body)


def is_retryable(error: BaseException) -> bool:
    """
    Decide whether a failed attempt may be retried.

    Retryable: NETWORK, TIMEOUT, RATE_LIMIT, and API/AUTH errors with a 5xx
    status or status 408. Everything else, including cancellations and
    exceptions outside the taxonomy, is terminal.
    """
    kind = getattr(error, "kind", None)
    if not isinstance(kind, ErrorKind):
        return False
    if kind in _ALWAYS_RETRYABLE:
        return True
    if kind in (ErrorKind.API, ErrorKind.AUTH):
        status = getattr(error, "status", None)
        if status is None:
            return False
        return 500 <= status < 600 or status in RETRYABLE_CLIENT_STATUSES
    return False


def user_friendly_message(error: BaseException) -> str:
    """Short human-readable description for presentation layers."""
    kind = getattr(error, "kind", None)
    status = getattr(error, "status", None)

    if kind == ErrorKind.RATE_LIMIT:
        retry_after_ms = getattr(error, "retry_after_ms", None) or 0
        seconds = math.ceil(retry_after_ms / 1000)
        return f"Too many requests. Please wait {seconds} seconds before trying again."
    if kind == ErrorKind.AUTH and status != 403:
        return "Authentication failed. Please check your API key or OAuth token."
    if kind == ErrorKind.SCOPE:
        scopes = getattr(error, "required_scopes", [])
        return f"Missing required permissions: {', '.join(scopes)}"
    if kind == ErrorKind.TIMEOUT:
        return "Request timed out. Please check your internet connection and try again."
    if kind == ErrorKind.NETWORK:
        return "Network error occurred. Please check your internet connection."
    if kind == ErrorKind.CANCELLED:
        return "Request was cancelled."
    if kind in (ErrorKind.API, ErrorKind.AUTH) and status is not None:
        if status == 404:
            return "The requested resource was not found."
        if status == 403:
            return "You do not have permission to access this resource."
        if 500 <= status < 600:
            return "Server error occurred. Please try again later."

    message = str(error)
    return message or "An unexpected error occurred."
