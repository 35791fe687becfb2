"""
Resilient REST client.

Turns one logical (method, path, options) call into exactly one parsed
response or one typed error:

- one rate limiter token per logical request (retries reuse it)
- per-attempt timeout, merged with caller and registry cancellation
- 429: sleep for Retry-After (seconds or HTTP date) without growing backoff
- other retryable failures: exponential backoff capped at max_retry_delay_ms
- every attempt clears its timer and signal listeners on every exit path
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, TypeVar
from urllib.parse import urlencode

import orjson
from multidict import CIMultiDict

from restcore.auth import AuthType, StaticCredentialAuth
from restcore.config import ClientConfig
from restcore.errors import (
    NetworkError,
    RateLimitError,
    RequestCancelledError,
    RequestTimeoutError,
    RestCoreError,
    ValidationError,
    api_error_for_status,
    is_retryable,
)
from restcore.limiter import LimiterStats, TokenBucketLimiter
from restcore.metrics import ClientMetrics
from restcore.signals import AbortController, AbortReason, AbortSignal, merge_signals
from restcore.transport import AiohttpTransport, TransportRequest, TransportResponse

if TYPE_CHECKING:
    from collections.abc import Awaitable, Mapping

    from restcore.auth import AuthProvider
    from restcore.signals import MergedSignal
    from restcore.transport import Transport

logger = logging.getLogger(__name__)

T = TypeVar("T")


class HttpMethod(str, Enum):
    """HTTP methods supported by the client."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"


# event -> (LoggingConfig switch, level, message)
_LOG_EVENTS: dict[str, tuple[str, int, str]] = {
    "request": ("log_requests", logging.INFO, "Sending request"),
    "response": ("log_responses", logging.INFO, "Received response"),
    "retry": ("log_errors", logging.WARNING, "Request failed, retrying"),
    "rate_limited": ("log_errors", logging.WARNING, "Rate limit hit, waiting for retry"),
    "error": ("log_errors", logging.WARNING, "Request failed"),
}


class _Aborted(Exception):
    """An abortable operation was interrupted by its signal."""

    def __init__(self, reason: AbortReason | None) -> None:
        super().__init__(reason)
        self.reason = reason


@dataclass
class _AttemptHandle:
    """Timer and merged signal of the attempt currently in flight."""

    timer: asyncio.TimerHandle
    signal: MergedSignal

    def release(self) -> None:
        self.timer.cancel()
        self.signal.detach()


@dataclass
class _ActiveRequest:
    """Registry entry for one logical request."""

    request_id: int
    controller: AbortController = field(default_factory=AbortController)
    attempt: _AttemptHandle | None = None

    def cancel(self) -> None:
        # Abort first: the attempt's merged signal must see it before detaching.
        self.controller.abort(AbortReason.CANCELLED)
        if self.attempt is not None:
            self.attempt.release()


async def _run_until_aborted(awaitable: Awaitable[T], signal: AbortSignal) -> T:
    """
    Await `awaitable`, cancelling it as soon as `signal` fires.

    Raises:
        _Aborted: The signal fired first.
        asyncio.CancelledError: The calling task itself was cancelled.
    """
    task = asyncio.ensure_future(awaitable)
    if signal.aborted:
        task.cancel()
    remove = signal.add_listener(lambda _reason: task.cancel())
    try:
        return await task
    except asyncio.CancelledError:
        current = asyncio.current_task()
        if signal.aborted and not (current is not None and current.cancelling()):
            raise _Aborted(signal.reason) from None
        raise
    finally:
        remove()


def parse_retry_after(value: str | None, *, now: datetime | None = None) -> int | None:
    """
    Parse a Retry-After header into milliseconds.

    Accepts integer seconds or an HTTP date (clamped at 0 when in the past).

    Returns:
        Delay in ms, or None when the header is missing or unparsable.
    """
    if not value:
        return None
    value = value.strip()
    if value.isascii() and value.isdecimal():
        return int(value) * 1000
    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=UTC)
    now = now or datetime.now(UTC)
    return max(0, int((retry_at - now).total_seconds() * 1000))


def _parse_body(response: TransportResponse) -> Any:
    if "application/json" in response.content_type.lower():
        try:
            return response.json()
        except orjson.JSONDecodeError:
            return response.text()
    return response.text()


def _error_messages(data: Any) -> list[str]:
    """Messages from an `errors` field, if the body carries one."""
    if not isinstance(data, dict):
        return []
    errors = data.get("errors")
    if isinstance(errors, str):
        return [errors] if errors else []
    if isinstance(errors, list):
        return [str(e) for e in errors]
    return []


class RestClient:
    """
    Async REST client with rate limiting, retries and cancellation.

    Usage:
        async with RestClient.from_credential(api_key) as client:
            profile = await client.get("me")
            games = await client.get("my-games", params={"page": 1})
    """

    def __init__(
        self,
        auth: AuthProvider,
        config: ClientConfig | None = None,
        *,
        transport: Transport | None = None,
        limiter: TokenBucketLimiter | None = None,
        metrics: ClientMetrics | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            auth: Builds authenticated URLs and headers.
            config: Client configuration.
            transport: HTTP sender. Defaults to an owned AiohttpTransport.
            limiter: Shared rate limiter. Defaults to one built from config.rate_limit.
            metrics: Prometheus metrics. Defaults to a private registry.
        """
        self._auth = auth
        self._config = config or ClientConfig()
        self._owns_transport = transport is None
        self._transport: Transport = transport or AiohttpTransport()
        self._limiter = limiter or TokenBucketLimiter(
            self._config.rate_limit.max_requests,
            self._config.rate_limit.window_ms,
        )
        self._metrics = metrics or ClientMetrics()
        self._active: dict[int, _ActiveRequest] = {}
        self._request_counter = 0

    @classmethod
    def from_credential(
        cls,
        credential: str,
        config: ClientConfig | None = None,
        *,
        auth_type: AuthType = AuthType.API_KEY,
        **kwargs: Any,
    ) -> RestClient:
        """Build a client around a StaticCredentialAuth using config.base_url."""
        config = config or ClientConfig()
        auth = StaticCredentialAuth(credential, auth_type=auth_type, base_url=config.base_url)
        return cls(auth, config, **kwargs)

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def limiter(self) -> TokenBucketLimiter:
        return self._limiter

    @property
    def metrics(self) -> ClientMetrics:
        return self._metrics

    @property
    def last_request_id(self) -> int:
        """Id assigned to the most recently started request (0 before any)."""
        return self._request_counter

    def active_request_ids(self) -> list[int]:
        return sorted(self._active)

    async def __aenter__(self) -> RestClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Cancel outstanding requests and close an owned transport."""
        self.cancel_all_requests()
        if self._owns_transport:
            await self._transport.close()

    # -- verbs --------------------------------------------------------------

    async def get(self, path: str, **options: Any) -> Any:
        return await self.request(HttpMethod.GET, path, **options)

    async def post(self, path: str, body: Any = None, **options: Any) -> Any:
        return await self.request(HttpMethod.POST, path, body=body, **options)

    async def put(self, path: str, body: Any = None, **options: Any) -> Any:
        return await self.request(HttpMethod.PUT, path, body=body, **options)

    async def patch(self, path: str, body: Any = None, **options: Any) -> Any:
        return await self.request(HttpMethod.PATCH, path, body=body, **options)

    async def delete(self, path: str, **options: Any) -> Any:
        return await self.request(HttpMethod.DELETE, path, **options)

    # -- core ---------------------------------------------------------------

    async def request(
        self,
        method: HttpMethod | str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        body: Any = None,
        signal: AbortSignal | None = None,
    ) -> Any:
        """
        Execute one logical request.

        Args:
            method: HTTP method.
            path: Endpoint relative to the authenticated base URL.
            params: Query parameters.
            headers: Extra headers; override auth headers with the same name.
            body: JSON-serializable body (ignored for GET).
            signal: Caller cancellation signal.

        Returns:
            Parsed JSON body, or text for non-JSON responses.

        Raises:
            RestCoreError: Exactly one typed error on failure.
        """
        http_method = self._validate_method(method)

        self._request_counter += 1
        request_id = self._request_counter
        entry = _ActiveRequest(request_id)
        self._active[request_id] = entry
        self._metrics.active_requests.inc()

        request_signal = merge_signals(entry.controller.signal, signal)
        outcome = "error"
        try:
            await self._acquire_token(request_signal)

            url = self._build_url(path, params)
            transport_request = self._build_request(http_method, headers, body)
            self._log("request", request_id=request_id, method=http_method.value, url=url)

            result = await self._execute_with_retry(
                entry, url, transport_request, request_signal, signal
            )
            outcome = "success"
            return result
        except RestCoreError as e:
            outcome = e.kind.value.lower()
            self._log(
                "error",
                request_id=request_id,
                kind=e.kind.value,
                status=e.status,
                error=e.message,
            )
            raise
        finally:
            request_signal.detach()
            self._active.pop(request_id, None)
            self._metrics.active_requests.dec()
            self._metrics.requests.labels(method=http_method.value, outcome=outcome).inc()

    def _validate_method(self, method: HttpMethod | str) -> HttpMethod:
        name = method.value if isinstance(method, HttpMethod) else str(method)
        try:
            return HttpMethod(name.upper())
        except ValueError:
            allowed = ", ".join(m.value for m in HttpMethod)
            raise ValidationError(
                f"Unsupported HTTP method: {method}",
                errors={"method": f"must be one of {allowed}"},
            ) from None

    async def _acquire_token(self, signal: AbortSignal) -> None:
        """Wait for a limiter token; abortable by the request signal."""
        try:
            waited_ms = await _run_until_aborted(self._limiter.acquire(), signal)
        except _Aborted:
            raise RequestCancelledError("Request cancelled while waiting for rate limit") from None
        if waited_ms > 0:
            self._metrics.limiter_wait_ms.inc(waited_ms)

    def _build_url(self, path: str, params: Mapping[str, Any] | None) -> str:
        url = self._auth.build_authenticated_url(path)
        if params:
            separator = "&" if "?" in url else "?"
            url = f"{url}{separator}{urlencode(params, doseq=True)}"
        return url

    def _build_request(
        self,
        method: HttpMethod,
        headers: Mapping[str, str] | None,
        body: Any,
    ) -> TransportRequest:
        merged = CIMultiDict(self._auth.get_auth_headers())
        merged.update(headers or {})

        payload = None
        if body is not None and method != HttpMethod.GET:
            try:
                payload = orjson.dumps(body)
            except TypeError as e:
                raise ValidationError(
                    f"Request body is not JSON serializable: {e}",
                    errors={"body": str(e)},
                ) from e
            if "Content-Type" not in merged:
                merged["Content-Type"] = "application/json"

        return TransportRequest(method=method.value, headers=merged, body=payload)

    async def _execute_with_retry(
        self,
        entry: _ActiveRequest,
        url: str,
        request: TransportRequest,
        request_signal: AbortSignal,
        caller_signal: AbortSignal | None,
    ) -> Any:
        config = self._config
        delay_ms: float = config.retry_delay_ms

        for attempt in range(config.max_retries + 1):
            try:
                response = await self._attempt(entry, url, request, caller_signal)

                if response.status == 429:
                    retry_after_ms = parse_retry_after(response.headers.get("Retry-After"))
                    if retry_after_ms is None:
                        retry_after_ms = int(delay_ms)
                    if attempt < config.max_retries:
                        self._log(
                            "rate_limited",
                            request_id=entry.request_id,
                            attempt=attempt + 1,
                            retry_after_ms=retry_after_ms,
                        )
                        self._metrics.retries.labels(reason="rate_limit").inc()
                        await self._sleep(retry_after_ms, request_signal)
                        continue
                    raise RateLimitError(
                        "Rate limit exceeded",
                        retry_after_ms=retry_after_ms,
                        body=_parse_body(response),
                    )

                data = self._parse_response(response)
                self._log(
                    "response",
                    request_id=entry.request_id,
                    status=response.status,
                    attempt=attempt + 1,
                )
                return data

            except RestCoreError as e:
                if not is_retryable(e) or attempt >= config.max_retries:
                    raise
                self._log(
                    "retry",
                    request_id=entry.request_id,
                    attempt=attempt + 1,
                    max_retries=config.max_retries,
                    delay_ms=delay_ms,
                    error=e.message,
                )
                self._metrics.retries.labels(reason="backoff").inc()
                await self._sleep(delay_ms, request_signal)
                delay_ms = min(delay_ms * config.retry_multiplier, config.max_retry_delay_ms)

        # The loop always returns or raises on its final attempt.
        raise AssertionError("retry loop exited without a result")

    async def _attempt(
        self,
        entry: _ActiveRequest,
        url: str,
        request: TransportRequest,
        caller_signal: AbortSignal | None,
    ) -> TransportResponse:
        """One transport call with its own timeout and cancellation handle."""
        timeout_ms = self._config.timeout_ms
        timeout_controller = AbortController()
        signal = merge_signals(entry.controller.signal, timeout_controller.signal, caller_signal)
        timer = asyncio.get_running_loop().call_later(
            timeout_ms / 1000, timeout_controller.abort, AbortReason.TIMEOUT
        )
        entry.attempt = _AttemptHandle(timer, signal)
        self._metrics.attempts.inc()

        try:
            return await _run_until_aborted(self._transport.send(url, request, signal), signal)
        except _Aborted as e:
            if e.reason == AbortReason.TIMEOUT and timeout_controller.signal.aborted:
                raise RequestTimeoutError(
                    f"Request timed out after {timeout_ms}ms",
                    cause=TimeoutError(f"attempt exceeded {timeout_ms}ms"),
                ) from None
            raise RequestCancelledError("Request cancelled") from None
        except RestCoreError:
            raise
        except Exception as e:
            # Transport seam: anything else is a network-level failure.
            raise NetworkError(str(e) or type(e).__name__, cause=e) from e
        finally:
            timer.cancel()
            signal.detach()
            entry.attempt = None

    def _parse_response(self, response: TransportResponse) -> Any:
        """
        Parse the body and surface API errors.

        A 2xx response whose body carries a non-empty `errors` list is a
        failure too; the remote API reports some errors with status 200.
        """
        data = _parse_body(response)
        messages = _error_messages(data)
        if not response.ok:
            message = ", ".join(messages) if messages else f"HTTP {response.status}"
            raise api_error_for_status(message, response.status, data)
        if messages:
            raise api_error_for_status(", ".join(messages), response.status, data)
        return data

    async def _sleep(self, delay_ms: float, signal: AbortSignal) -> None:
        """Sleep between attempts; an abort ends the request."""
        try:
            await _run_until_aborted(asyncio.sleep(delay_ms / 1000), signal)
        except _Aborted:
            raise RequestCancelledError("Request cancelled while waiting to retry") from None

    def _log(self, event: str, **fields: Any) -> None:
        logging_config = self._config.logging
        switch, level, message = _LOG_EVENTS[event]
        if not logging_config.enabled or not getattr(logging_config, switch):
            return
        logger.log(level, message, extra={"event": event, **fields})

    # -- cancellation & limiter passthrough -----------------------------------

    def cancel_request(self, request_id: int) -> bool:
        """
        Abort one in-flight request.

        Returns:
            True if the request was active.
        """
        entry = self._active.pop(request_id, None)
        if entry is None:
            return False
        entry.cancel()
        self._metrics.cancellations.inc()
        return True

    def cancel_all_requests(self) -> int:
        """
        Abort every in-flight request.

        Returns:
            Number of requests cancelled.
        """
        entries = list(self._active.values())
        self._active.clear()
        for entry in entries:
            entry.cancel()
        self._metrics.cancellations.inc(len(entries))
        return len(entries)

    def get_rate_limiter_stats(self) -> LimiterStats:
        stats = self._limiter.get_stats()
        self._metrics.update_limiter(stats)
        return stats

    def reset_rate_limiter(self) -> None:
        self._limiter.reset()
