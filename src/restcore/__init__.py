"""restcore: rate-limited, retrying REST client core."""

from restcore.auth import AuthProvider, AuthType, StaticCredentialAuth
from restcore.client import HttpMethod, RestClient, parse_retry_after
from restcore.config import ClientConfig, LoggingConfig, RateLimitConfig
from restcore.errors import (
    ApiError,
    AuthError,
    ErrorKind,
    NetworkError,
    RateLimitError,
    RequestCancelledError,
    RequestTimeoutError,
    RestCoreError,
    ScopeError,
    ValidationError,
    is_retryable,
    user_friendly_message,
)
from restcore.limiter import LimiterStats, TokenBucketLimiter, create_rate_limiter
from restcore.metrics import ClientMetrics
from restcore.signals import AbortController, AbortReason, AbortSignal, merge_signals
from restcore.transport import AiohttpTransport, Transport, TransportRequest, TransportResponse

__version__ = "0.1.0"

__all__ = [
    "AbortController",
    "AbortReason",
    "AbortSignal",
    "AiohttpTransport",
    "ApiError",
    "AuthError",
    "AuthProvider",
    "AuthType",
    "ClientConfig",
    "ClientMetrics",
    "ErrorKind",
    "HttpMethod",
    "LimiterStats",
    "LoggingConfig",
    "NetworkError",
    "RateLimitConfig",
    "RateLimitError",
    "RequestCancelledError",
    "RequestTimeoutError",
    "RestClient",
    "RestCoreError",
    "ScopeError",
    "StaticCredentialAuth",
    "TokenBucketLimiter",
    "Transport",
    "TransportRequest",
    "TransportResponse",
    "ValidationError",
    "__version__",
    "create_rate_limiter",
    "is_retryable",
    "merge_signals",
    "parse_retry_after",
    "user_friendly_message",
]
