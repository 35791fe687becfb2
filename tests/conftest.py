"""Shared fixtures: scripted transport and client factory."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import orjson
import pytest

from restcore.auth import StaticCredentialAuth
from restcore.client import RestClient
from restcore.config import ClientConfig, RateLimitConfig
from restcore.signals import AbortSignal
from restcore.transport import TransportRequest, TransportResponse

BASE_URL = "https://api.example.test/api/1"

Step = TransportResponse | BaseException | Callable[..., Awaitable[TransportResponse]]


def json_response(
    status: int = 200,
    data: Any = None,
    headers: dict[str, str] | None = None,
) -> TransportResponse:
    """Build a JSON TransportResponse."""
    return TransportResponse(
        status=status,
        headers={"Content-Type": "application/json", **(headers or {})},
        body=orjson.dumps(data if data is not None else {}),
    )


def text_response(status: int = 200, text: str = "") -> TransportResponse:
    return TransportResponse(
        status=status,
        headers={"Content-Type": "text/plain; charset=utf-8"},
        body=text.encode(),
    )


class ScriptedTransport:
    """
    Transport replaying a script of steps.

    Each step is a response, an exception to raise, or an async callable
    taking (url, request, signal). The last step repeats once the script
    runs out.
    """

    def __init__(self, *steps: Step) -> None:
        self.steps: list[Step] = list(steps)
        self.calls: list[tuple[str, TransportRequest, AbortSignal | None]] = []
        self.called = asyncio.Event()
        self.closed = False

    async def send(
        self,
        url: str,
        request: TransportRequest,
        signal: AbortSignal | None = None,
    ) -> TransportResponse:
        self.calls.append((url, request, signal))
        self.called.set()
        step = self.steps.pop(0) if len(self.steps) > 1 else self.steps[0]
        if isinstance(step, BaseException):
            raise step
        if callable(step):
            return await step(url, request, signal)
        return step

    async def close(self) -> None:
        self.closed = True

    @property
    def attempts(self) -> int:
        return len(self.calls)


async def hang_forever(*_args: Any) -> TransportResponse:
    """Transport step that never completes on its own."""
    await asyncio.Event().wait()
    raise AssertionError("unreachable")


@pytest.fixture
def auth() -> StaticCredentialAuth:
    return StaticCredentialAuth("test-key", base_url=BASE_URL)


@pytest.fixture
def make_client(
    auth: StaticCredentialAuth,
) -> Callable[..., RestClient]:
    """Factory: make_client(transport, **config_overrides)."""

    def factory(transport: ScriptedTransport, **overrides: Any) -> RestClient:
        overrides.setdefault("rate_limit", RateLimitConfig(max_requests=100, window_ms=1000))
        config = ClientConfig(base_url=BASE_URL, **overrides)
        return RestClient(auth, config, transport=transport)

    return factory
