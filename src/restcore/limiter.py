"""
Token bucket rate limiter.

Tokens refill continuously (fractional, not stepped) at
`max_requests / window_ms` tokens per ms, capped at `max_requests`.
Each granted acquisition consumes exactly one token.

Waiters are served FIFO. Every waiter owns an independent timer computed
for the instant the bucket holds enough tokens for it and everyone queued
ahead of it, so a burst of N waiters is released at N staggered instants
rather than on a shared tick. `reset()` cancels every timer.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections import deque
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

from restcore.errors import RequestCancelledError

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

RATE_LIMIT_PRESETS: dict[str, tuple[int, int]] = {
    "strict": (30, 60000),  # 30 req/min
    "moderate": (60, 60000),  # 60 req/min
    "relaxed": (120, 60000),  # 120 req/min
}


@dataclass(frozen=True)
class LimiterStats:
    """Read-only snapshot of limiter state."""

    available_tokens: int
    max_tokens: int
    queue_length: int
    total_requests: int
    avg_wait_time_ms: float
    max_wait_time_ms: float
    rejected_requests: int
    utilization_rate: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class _Waiter:
    """A pending acquire() call."""

    future: asyncio.Future[float]
    enqueued_ms: float
    handle: asyncio.TimerHandle | None = None


@dataclass
class _Counters:
    total_requests: int = 0
    total_wait_ms: float = 0.0
    max_wait_ms: float = 0.0
    rejected_requests: int = 0


class TokenBucketLimiter:
    """
    Continuous-refill token bucket shared by concurrent callers.

    State is owned by the instance and mutated only through its methods.

    Usage:
        limiter = TokenBucketLimiter(60, 60000)  # 60 requests per minute
        await limiter.acquire()
        # ... make request ...
    """

    def __init__(
        self,
        max_requests: int,
        window_ms: int,
        *,
        time_fn: Callable[[], float] | None = None,
    ) -> None:
        """
        Args:
            max_requests: Bucket capacity (requests per window).
            window_ms: Window length in milliseconds.
            time_fn: Optional clock in milliseconds, for deterministic tests.
        """
        if max_requests <= 0:
            raise ValueError(f"max_requests must be > 0, got {max_requests}")
        if window_ms <= 0:
            raise ValueError(f"window_ms must be > 0, got {window_ms}")

        self.max_tokens = max_requests
        self.window_ms = window_ms
        self.refill_rate = max_requests / window_ms  # tokens per ms
        self._time_fn = time_fn

        self._tokens = float(max_requests)
        self._last_refill_ms = self._now_ms()
        self._waiters: deque[_Waiter] = deque()
        self._counters = _Counters()

    def _now_ms(self) -> float:
        if self._time_fn is not None:
            return self._time_fn()
        return time.monotonic() * 1000

    def _refill(self) -> None:
        now_ms = self._now_ms()
        elapsed_ms = now_ms - self._last_refill_ms
        if elapsed_ms <= 0:
            return
        self._tokens = min(float(self.max_tokens), self._tokens + elapsed_ms * self.refill_rate)
        self._last_refill_ms = now_ms

    def _record_grant(self, waited_ms: float) -> None:
        self._counters.total_requests += 1
        self._counters.total_wait_ms += waited_ms
        self._counters.max_wait_ms = max(self._counters.max_wait_ms, waited_ms)

    async def acquire(self) -> float:
        """
        Wait until one token is committed to the caller.

        Returns:
            Milliseconds spent waiting (0 when granted immediately).

        Raises:
            RequestCancelledError: If reset() runs while waiting.
        """
        self._drain()
        if not self._waiters and self._tokens >= 1:
            self._tokens -= 1
            self._record_grant(0.0)
            return 0.0

        loop = asyncio.get_running_loop()
        waiter = _Waiter(future=loop.create_future(), enqueued_ms=self._now_ms())
        self._waiters.append(waiter)
        self._schedule(waiter, len(self._waiters))
        logger.debug(
            "Waiting for rate limit token",
            extra={"queue_length": len(self._waiters), "bucket_level": round(self._tokens, 3)},
        )

        try:
            return await waiter.future
        except asyncio.CancelledError:
            granted = (
                waiter.future.done()
                and not waiter.future.cancelled()
                and waiter.future.exception() is None
            )
            if granted:
                # Token was committed but the caller is gone; give it back.
                self._tokens = min(float(self.max_tokens), self._tokens + 1)
                self._counters.total_requests -= 1
            else:
                self._withdraw(waiter)
            raise

    def try_acquire(self) -> bool:
        """Take a token without waiting. Never jumps ahead of queued waiters."""
        self._drain()
        if not self._waiters and self._tokens >= 1:
            self._tokens -= 1
            self._record_grant(0.0)
            return True
        self._counters.rejected_requests += 1
        return False

    def _delay_ms(self, position: int) -> int:
        """Time until the bucket holds `position` tokens."""
        needed = position - self._tokens
        if needed <= 0:
            return 0
        return math.ceil(needed / self.refill_rate)

    def _schedule(self, waiter: _Waiter, position: int) -> None:
        if waiter.handle is not None:
            waiter.handle.cancel()
        loop = asyncio.get_running_loop()
        delay_ms = self._delay_ms(position)
        waiter.handle = loop.call_later(delay_ms / 1000, self._on_timer, waiter)

    def _on_timer(self, waiter: _Waiter) -> None:
        waiter.handle = None
        self._drain()
        if waiter in self._waiters:
            # Fired before its token was available; wait out the remainder.
            self._schedule(waiter, self._waiters.index(waiter) + 1)

    def _drain(self) -> None:
        """Refill, then grant queued waiters from the head while tokens last."""
        self._refill()
        while self._waiters and self._tokens >= 1:
            waiter = self._waiters.popleft()
            if waiter.handle is not None:
                waiter.handle.cancel()
                waiter.handle = None
            if waiter.future.done():
                continue
            self._tokens -= 1
            waited_ms = max(0.0, self._now_ms() - waiter.enqueued_ms)
            self._record_grant(waited_ms)
            waiter.future.set_result(waited_ms)

    def _withdraw(self, waiter: _Waiter) -> None:
        if waiter.handle is not None:
            waiter.handle.cancel()
            waiter.handle = None
        if waiter not in self._waiters:
            return
        index = self._waiters.index(waiter)
        del self._waiters[index]
        # Everyone behind it now needs one token less.
        self._refill()
        for position, behind in enumerate(list(self._waiters)[index:], start=index + 1):
            self._schedule(behind, position)

    def reset(self) -> None:
        """
        Cancel all pending waiters and refill the bucket.

        Pending acquire() calls fail with RequestCancelledError; none of the
        previously scheduled grants will fire.
        """
        waiters, self._waiters = self._waiters, deque()
        for waiter in waiters:
            if waiter.handle is not None:
                waiter.handle.cancel()
                waiter.handle = None
            if not waiter.future.done():
                waiter.future.set_exception(RequestCancelledError("Rate limiter reset"))

        self._tokens = float(self.max_tokens)
        self._last_refill_ms = self._now_ms()
        self._counters = _Counters()
        if waiters:
            logger.info("Rate limiter reset", extra={"cancelled_waiters": len(waiters)})

    def get_stats(self) -> LimiterStats:
        """Snapshot of the limiter. Refills before reporting available tokens."""
        self._refill()
        counters = self._counters
        total = counters.total_requests
        return LimiterStats(
            available_tokens=math.floor(self._tokens),
            max_tokens=self.max_tokens,
            queue_length=len(self._waiters),
            total_requests=total,
            avg_wait_time_ms=counters.total_wait_ms / total if total > 0 else 0.0,
            max_wait_time_ms=counters.max_wait_ms,
            rejected_requests=counters.rejected_requests,
            utilization_rate=(
                (self.max_tokens - self._tokens) / self.max_tokens * 100 if total > 0 else 0.0
            ),
        )

    def is_throttling(self) -> bool:
        """True when a caller would have to wait right now."""
        self._refill()
        return self._tokens < 1 or len(self._waiters) > 0

    def get_time_until_refill(self) -> float:
        """Milliseconds left in the window since the last refill check."""
        since_refill_ms = self._now_ms() - self._last_refill_ms
        return max(0.0, self.window_ms - since_refill_ms)

    @property
    def queue_length(self) -> int:
        return len(self._waiters)


def create_rate_limiter(
    preset: str = "moderate",
    *,
    time_fn: Callable[[], float] | None = None,
) -> TokenBucketLimiter:
    """
    Build a limiter from a named preset.

    Args:
        preset: One of "strict" (30/min), "moderate" (60/min), "relaxed" (120/min).

    Raises:
        ValueError: Unknown preset.
    """
    if preset not in RATE_LIMIT_PRESETS:
        available = ", ".join(RATE_LIMIT_PRESETS)
        raise ValueError(f"Unknown preset: {preset}. Available: {available}")
    max_requests, window_ms = RATE_LIMIT_PRESETS[preset]
    return TokenBucketLimiter(max_requests, window_ms, time_fn=time_fn)

