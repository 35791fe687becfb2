"""
Abort signals for cooperative cancellation.

An `AbortController` owns one `AbortSignal` and fires it at most once.
`merge_signals` derives a signal that fires when the first of its sources
fires, carrying that source's reason. Listeners are one-shot.
"""

from __future__ import annotations

import asyncio
import contextlib
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

    Listener = Callable[["AbortReason"], None]


class AbortReason(str, Enum):
    """Why a signal fired."""

    CANCELLED = "CANCELLED"  # caller or registry initiated
    TIMEOUT = "TIMEOUT"  # attempt deadline elapsed


class AbortSignal:
    """Read side of an abort controller."""

    def __init__(self) -> None:
        self._reason: AbortReason | None = None
        self._listeners: list[Listener] = []
        self._waiters: list[asyncio.Future[AbortReason]] = []

    @property
    def aborted(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> AbortReason | None:
        return self._reason

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """
        Register a one-shot listener.

        Called immediately if the signal already fired.

        Returns:
            Callable that detaches the listener (no-op once fired).
        """
        if self._reason is not None:
            listener(self._reason)
            return _noop

        self._listeners.append(listener)

        def remove() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return remove

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    async def wait(self) -> AbortReason:
        """Suspend until the signal fires."""
        if self._reason is not None:
            return self._reason
        future: asyncio.Future[AbortReason] = asyncio.get_running_loop().create_future()
        self._waiters.append(future)
        try:
            return await future
        finally:
            with contextlib.suppress(ValueError):
                self._waiters.remove(future)

    def _fire(self, reason: AbortReason) -> bool:
        if self._reason is not None:
            return False
        self._reason = reason
        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            listener(reason)
        for future in self._waiters:
            if not future.done():
                future.set_result(reason)
        return True


class AbortController:
    """Write side: fires its signal once."""

    def __init__(self) -> None:
        self.signal = AbortSignal()

    def abort(self, reason: AbortReason = AbortReason.CANCELLED) -> bool:
        """Fire the signal. Returns False if it had already fired."""
        return self.signal._fire(reason)


def merge_signals(*signals: AbortSignal | None) -> MergedSignal:
    """
    Derive a signal that fires when the first source fires.

    If a source already fired, the merged signal is aborted immediately with
    that source's reason. With no sources the result never fires.
    """
    return MergedSignal([s for s in signals if s is not None])


class MergedSignal(AbortSignal):
    """Signal forwarding the first abort of its sources."""

    def __init__(self, sources: list[AbortSignal]) -> None:
        super().__init__()
        self._detach: list[Callable[[], None]] = []

        for source in sources:
            if source.aborted:
                assert source.reason is not None
                self._fire(source.reason)
                return

        for source in sources:
            self._detach.append(source.add_listener(self._forward))

    def _forward(self, reason: AbortReason) -> None:
        if self._fire(reason):
            self.detach()

    def detach(self) -> None:
        """Stop listening to the sources."""
        detach, self._detach = self._detach, []
        for remove in detach:
            remove()


def _noop() -> None:
    return None
