"""Run-scoped event bus.

Every event carries the ``run_id`` of the generation that produced it (the
message id when the caller supplies one).  Subscribers either follow one
run, which is how a chat UI or a billing hook tracks a single reply, or
listen globally with ``run_id=None``.  History is kept per run so a late
subscriber can replay what a generation has done so far.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable

from yggchat.types import EventType, GenerationEvent

_logger = logging.getLogger(__name__)

WILDCARD = "*"

Handler = Callable[[GenerationEvent], Any]


@dataclass(frozen=True)
class Subscription:
    key: str
    handler: Handler
    run_id: str | None = None

    def matches(self, event: GenerationEvent) -> bool:
        if self.key not in (WILDCARD, event.type.value):
            return False
        return self.run_id is None or self.run_id == event.run_id


class EventBus:
    """Async pub/sub with per-run filtering and history.

    Handlers may be sync or async.  A failing handler is logged and never
    breaks the run that emitted the event.

    Parameters
    ----------
    max_history:
        Events kept per run.
    max_runs:
        Runs whose history is retained; the oldest run is forgotten first.
    """

    def __init__(self, max_history: int = 200, max_runs: int = 64) -> None:
        self._subscriptions: list[Subscription] = []
        self._runs: OrderedDict[str | None, list[GenerationEvent]] = OrderedDict()
        self._max_history = max_history
        self._max_runs = max_runs

    def subscribe(
        self,
        event_type: EventType | str,
        handler: Handler,
        run_id: str | None = None,
    ) -> Callable[[], None]:
        """Register *handler*; returns a callable that removes it again."""
        sub = Subscription(_key(event_type), handler, run_id)
        self._subscriptions.append(sub)
        return lambda: self._remove(sub)

    def unsubscribe(
        self,
        event_type: EventType | str,
        handler: Handler,
        run_id: str | None = None,
    ) -> None:
        self._remove(Subscription(_key(event_type), handler, run_id))

    async def emit(self, event: GenerationEvent) -> None:
        self._record(event)
        targets = [s.handler for s in self._subscriptions if s.matches(event)]
        if targets:
            await asyncio.gather(
                *(_call_handler(h, event) for h in targets),
                return_exceptions=True,
            )

    def history_for(self, run_id: str | None) -> list[GenerationEvent]:
        """Events recorded for one run, oldest first."""
        return list(self._runs.get(run_id, []))

    @property
    def history(self) -> list[GenerationEvent]:
        """Recorded events of every retained run, in emission order."""
        merged = [e for events in self._runs.values() for e in events]
        merged.sort(key=lambda e: e.seq)
        return merged

    def drop_run(self, run_id: str | None) -> None:
        """Forget a finished run: its history and its scoped subscriptions."""
        self._runs.pop(run_id, None)
        self._subscriptions = [
            s for s in self._subscriptions if s.run_id is None or s.run_id != run_id
        ]

    def clear(self) -> None:
        self._subscriptions.clear()
        self._runs.clear()

    def _remove(self, sub: Subscription) -> None:
        if sub in self._subscriptions:
            self._subscriptions.remove(sub)

    def _record(self, event: GenerationEvent) -> None:
        events = self._runs.get(event.run_id)
        if events is None:
            events = self._runs[event.run_id] = []
            while len(self._runs) > self._max_runs:
                self._runs.popitem(last=False)
        else:
            self._runs.move_to_end(event.run_id)
        events.append(event)
        if len(events) > self._max_history:
            del events[: len(events) - self._max_history]


def _key(event_type: EventType | str) -> str:
    if isinstance(event_type, EventType):
        return event_type.value
    return str(event_type)


async def _call_handler(handler: Handler, event: GenerationEvent) -> None:
    try:
        result = handler(event)
        if inspect.isawaitable(result):
            await result
    except Exception:
        _logger.exception(
            "Event handler %s raised for %s (run %s)",
            getattr(handler, "__name__", handler), event.type.value, event.run_id,
        )
