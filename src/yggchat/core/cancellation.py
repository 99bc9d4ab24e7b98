"""Cooperative cancellation for orchestration runs.

A ``CancellationToken`` is the handle given to the outside world (an HTTP
stop button, a CLI Ctrl-C).  Inside a run, ``CancellationController``
mirrors the token into a plain bool through a listener registered at step
start, and the step loop checks that bool at every suspension point.
Stream reads are raced against the token, so a stalled provider cannot
hold an abort back until its next chunk.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable, TypeVar

from yggchat.errors import GenerationAborted
from yggchat.types import RunState

_logger = logging.getLogger(__name__)

Listener = Callable[[], None]
T = TypeVar("T")


async def _next_item(iterator: AsyncIterator[T]) -> T:
    return await iterator.__anext__()


class CancellationToken:
    """External cancellation handle, safe to share with a UI layer."""

    def __init__(self) -> None:
        self._cancelled = False
        self._listeners: list[Listener] = []
        self._event: asyncio.Event | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Request cancellation.  Idempotent."""
        if self._cancelled:
            return
        self._cancelled = True
        if self._event is not None:
            self._event.set()
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                _logger.exception("Cancellation listener failed")

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)
        if self._cancelled:
            listener()

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def wait(self) -> None:
        """Block until the token is cancelled."""
        if self._cancelled:
            return
        if self._event is None:
            self._event = asyncio.Event()
        await self._event.wait()


class CancellationController:
    """Per-run view of a ``CancellationToken``."""

    def __init__(self, token: CancellationToken | None = None) -> None:
        self._token = token
        self._requested = False

    def _on_cancel(self) -> None:
        self._requested = True

    def arm(self) -> None:
        """Register the flag listener; call at the start of each step."""
        if self._token is not None:
            self._token.remove_listener(self._on_cancel)
            self._token.add_listener(self._on_cancel)

    def disarm(self) -> None:
        if self._token is not None:
            self._token.remove_listener(self._on_cancel)

    @property
    def is_set(self) -> bool:
        return self._requested or (self._token is not None and self._token.cancelled)

    def check(self) -> None:
        """Raise ``GenerationAborted`` if cancellation was requested."""
        if self._requested:
            raise GenerationAborted()

    async def next_chunk(self, iterator: AsyncIterator[T]) -> T:
        """Await the next item of *iterator*, or abort as soon as the token fires.

        A provider that stalls mid-stream never delays an abort: the pending
        read is cancelled and ``GenerationAborted`` raised.  Raises
        ``StopAsyncIteration`` when the stream ends.
        """
        if self._token is None:
            return await iterator.__anext__()
        self.check()

        read = asyncio.ensure_future(_next_item(iterator))
        stop = asyncio.ensure_future(self._token.wait())
        try:
            await asyncio.wait({read, stop}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            pending = [t for t in (read, stop) if not t.done()]
            for task in pending:
                task.cancel()
            # The iterator must be idle again before anyone closes it
            await asyncio.gather(*pending, return_exceptions=True)

        if read.done() and not read.cancelled():
            return read.result()
        self._requested = True
        raise GenerationAborted()

    async def flush_once(self, state: RunState, flush: Callable[[], Awaitable[None]]) -> bool:
        """Run *flush* unless this step's usage was already logged.

        Returns True if *flush* ran.  The guard is set before awaiting so a
        nested finally path cannot log twice.
        """
        if state.cost_already_logged:
            return False
        state.cost_already_logged = True
        await flush()
        return True
