"""
Client configuration.

Dataclasses validated in __post_init__. Defaults follow the remote API's
published limits (60 requests/minute). `ClientConfig.from_mapping` also
accepts the camelCase option names used by existing callers.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import TYPE_CHECKING, Any

from restcore.limiter import RATE_LIMIT_PRESETS

if TYPE_CHECKING:
    from collections.abc import Mapping

DEFAULT_BASE_URL = "https://itch.io/api/1"

# camelCase option name -> field name
_CLIENT_ALIASES: dict[str, str] = {
    "baseUrl": "base_url",
    "timeout": "timeout_ms",
    "maxRetries": "max_retries",
    "retryDelay": "retry_delay_ms",
    "retryMultiplier": "retry_multiplier",
    "maxRetryDelay": "max_retry_delay_ms",
    "rateLimit": "rate_limit",
}
_RATE_LIMIT_ALIASES: dict[str, str] = {
    "maxRequests": "max_requests",
    "windowMs": "window_ms",
}
_LOGGING_ALIASES: dict[str, str] = {
    "logRequests": "log_requests",
    "logResponses": "log_responses",
    "logErrors": "log_errors",
}


@dataclass
class RateLimitConfig:
    """Token bucket capacity and window."""

    max_requests: int = 60
    window_ms: int = 60000

    def __post_init__(self) -> None:
        if self.max_requests < 1:
            raise ValueError(f"max_requests must be >= 1, got {self.max_requests}")
        if self.window_ms <= 0:
            raise ValueError(f"window_ms must be > 0, got {self.window_ms}")

    @classmethod
    def from_preset(cls, name: str) -> RateLimitConfig:
        if name not in RATE_LIMIT_PRESETS:
            available = ", ".join(RATE_LIMIT_PRESETS)
            raise ValueError(f"Unknown preset: {name}. Available: {available}")
        max_requests, window_ms = RATE_LIMIT_PRESETS[name]
        return cls(max_requests=max_requests, window_ms=window_ms)


@dataclass
class LoggingConfig:
    """Request tracing switches. Observational only."""

    enabled: bool = False
    log_requests: bool = True
    log_responses: bool = True
    log_errors: bool = True


@dataclass
class ClientConfig:
    """
    Configuration for RestClient.

    Attributes:
        base_url: Root used by the auth collaborator when building URLs.
        timeout_ms: Per-attempt abort deadline.
        max_retries: Additional attempts after the first.
        retry_delay_ms: Initial backoff delay.
        retry_multiplier: Backoff growth factor per retry.
        max_retry_delay_ms: Backoff ceiling.
        rate_limit: Token bucket settings.
        logging: Request tracing settings.
    """

    base_url: str = DEFAULT_BASE_URL
    timeout_ms: int = 30000
    max_retries: int = 3
    retry_delay_ms: int = 1000
    retry_multiplier: float = 2.0
    max_retry_delay_ms: int = 32000
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def __post_init__(self) -> None:
        if not self.base_url:
            raise ValueError("base_url must not be empty")
        if self.timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be > 0, got {self.timeout_ms}")
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.retry_delay_ms < 0:
            raise ValueError(f"retry_delay_ms must be >= 0, got {self.retry_delay_ms}")
        if self.retry_multiplier < 1:
            raise ValueError(f"retry_multiplier must be >= 1, got {self.retry_multiplier}")
        if self.max_retry_delay_ms < self.retry_delay_ms:
            raise ValueError(
                f"max_retry_delay_ms ({self.max_retry_delay_ms}) must be >= "
                f"retry_delay_ms ({self.retry_delay_ms})"
            )

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> ClientConfig:
        """
        Build a config from a plain mapping.

        Keys may be field names or their camelCase aliases; nested
        `rateLimit`/`rate_limit` and `logging` mappings are accepted.

        Raises:
            ValueError: Unknown key or invalid value.
        """
        kwargs = _translate(options, _CLIENT_ALIASES, cls)
        if isinstance(kwargs.get("rate_limit"), dict):
            kwargs["rate_limit"] = RateLimitConfig(
                **_translate(kwargs["rate_limit"], _RATE_LIMIT_ALIASES, RateLimitConfig)
            )
        if isinstance(kwargs.get("logging"), dict):
            kwargs["logging"] = LoggingConfig(
                **_translate(kwargs["logging"], _LOGGING_ALIASES, LoggingConfig)
            )
        return cls(**kwargs)


def _translate(options: Mapping[str, Any], aliases: dict[str, str], target: type) -> dict[str, Any]:
    known = {f.name for f in fields(target)}
    result: dict[str, Any] = {}
    for key, value in options.items():
        name = aliases.get(key, key)
        if name not in known:
            raise ValueError(f"Unknown {target.__name__} option: {key}")
        result[name] = dict(value) if isinstance(value, dict) else value
    return result
