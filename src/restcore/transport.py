"""
HTTP transport collaborator.

The executor talks to the network through the `Transport` protocol so tests
and callers can substitute their own sender. `AiohttpTransport` is the
default implementation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

import aiohttp
import orjson
from multidict import CIMultiDict, CIMultiDictProxy

if TYPE_CHECKING:
    from collections.abc import Mapping

    from restcore.signals import AbortSignal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransportRequest:
    """Method, headers and serialized body of one attempt."""

    method: str
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes | None = None


@dataclass
class TransportResponse:
    """A fully-read HTTP response."""

    status: int
    headers: CIMultiDictProxy[str] | CIMultiDict[str] = field(default_factory=CIMultiDict)
    body: bytes = b""

    def __post_init__(self) -> None:
        if not isinstance(self.headers, (CIMultiDict, CIMultiDictProxy)):
            self.headers = CIMultiDict(self.headers)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def content_type(self) -> str:
        return self.headers.get("Content-Type", "")

    def json(self) -> Any:
        return orjson.loads(self.body)

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


class Transport(Protocol):
    """Sends one HTTP request. Raises on network failure."""

    async def send(
        self,
        url: str,
        request: TransportRequest,
        signal: AbortSignal | None = None,
    ) -> TransportResponse: ...

    async def close(self) -> None: ...


class AiohttpTransport:
    """
    Transport backed by a lazily created aiohttp session.

    Timeouts are enforced per attempt by the executor, so the session itself
    has no total timeout.
    """

    def __init__(self, session: aiohttp.ClientSession | None = None) -> None:
        """
        Args:
            session: Optional externally managed session. It is not closed by close().
        """
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=None))
            self._owns_session = True
        return self._session

    async def send(
        self,
        url: str,
        request: TransportRequest,
        signal: AbortSignal | None = None,
    ) -> TransportResponse:
        """
        Send a request and read the whole body.

        Raises:
            aiohttp.ClientError: On network errors.
        """
        session = await self._get_session()
        async with session.request(
            request.method,
            url,
            headers=dict(request.headers),
            data=request.body,
        ) as response:
            body = await response.read()
            return TransportResponse(
                status=response.status,
                headers=CIMultiDict(response.headers),
                body=body,
            )

    async def close(self) -> None:
        """Close the HTTP session if this transport created it."""
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        if self._owns_session:
            self._session = None
