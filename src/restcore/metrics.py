"""
Prometheus metrics for the REST client.

Low-cardinality labels only: no path, endpoint, query or request id.
Purely observational; nothing in the request path reads these values.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from prometheus_client import Counter, Gauge
from prometheus_client.registry import CollectorRegistry

if TYPE_CHECKING:
    from restcore.limiter import LimiterStats

# Labels that would cause cardinality explosion
FORBIDDEN_LABELS = frozenset(
    {
        "path",
        "endpoint",
        "url",
        "query",
        "request_id",
        "user_id",
        "token",
    }
)


class ClientMetrics:
    """
    Counters and gauges for one client.

    Usage:
        registry = CollectorRegistry()
        metrics = ClientMetrics(registry=registry)
        client = RestClient(auth, metrics=metrics)
        # generate_latest(registry) -> bytes for a /metrics endpoint
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        """
        Args:
            registry: Prometheus CollectorRegistry. If None, a private registry is created.
        """
        self.registry = registry or CollectorRegistry()

        self.requests = Counter(
            "restcore_requests",
            "Logical requests by final outcome",
            ["method", "outcome"],
            registry=self.registry,
        )
        self.attempts = Counter(
            "restcore_attempts",
            "Transport attempts, including retries",
            registry=self.registry,
        )
        self.retries = Counter(
            "restcore_retries",
            "Retries scheduled, by delay source",
            ["reason"],
            registry=self.registry,
        )
        self.cancellations = Counter(
            "restcore_cancellations",
            "Requests aborted through cancel_request/cancel_all_requests",
            registry=self.registry,
        )
        self.limiter_wait_ms = Counter(
            "restcore_limiter_wait_ms",
            "Cumulative milliseconds spent waiting for rate limit tokens",
            registry=self.registry,
        )
        self.active_requests = Gauge(
            "restcore_active_requests",
            "Logical requests currently in flight",
            registry=self.registry,
        )
        self.limiter_available_tokens = Gauge(
            "restcore_limiter_available_tokens",
            "Whole tokens currently available in the rate limiter",
            registry=self.registry,
        )
        self.limiter_queue_length = Gauge(
            "restcore_limiter_queue_length",
            "Callers waiting for a rate limit token",
            registry=self.registry,
        )

    def update_limiter(self, stats: LimiterStats) -> None:
        """Refresh limiter gauges from a stats snapshot."""
        self.limiter_available_tokens.set(stats.available_tokens)
        self.limiter_queue_length.set(stats.queue_length)

    def get_sample(self, name: str, labels: dict[str, str] | None = None) -> float:
        """Read a sample value from this registry (0.0 if absent)."""
        value = self.registry.get_sample_value(name, labels or {})
        return value if value is not None else 0.0
