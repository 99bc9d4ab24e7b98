"""Persistence boundary for final run usage."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol

from yggchat.types import UsageSnapshot

_logger = logging.getLogger(__name__)


class CostSink(Protocol):
    """Receives the final usage snapshot of a run."""

    async def save(self, user_id: str, message_id: str, snapshot: UsageSnapshot) -> None:
        ...


class LoggingCostSink:
    """Writes the final snapshot to the log.  Default when nothing else is wired."""

    def __init__(self, level: int = logging.INFO) -> None:
        self._level = level

    async def save(self, user_id: str, message_id: str, snapshot: UsageSnapshot) -> None:
        _logger.log(
            self._level,
            "Usage for user=%s message=%s: prompt=%d completion=%d reasoning=%d "
            "cost=$%.6f credits=%.6f%s",
            user_id, message_id, snapshot.prompt_tokens, snapshot.completion_tokens,
            snapshot.reasoning_tokens, snapshot.cost_usd, snapshot.provider_credits,
            " (estimated)" if snapshot.estimated else "",
        )


@dataclass
class MemoryCostSink:
    """Keeps every saved snapshot in memory."""

    saved: list[tuple[str, str, UsageSnapshot]] = field(default_factory=list)

    async def save(self, user_id: str, message_id: str, snapshot: UsageSnapshot) -> None:
        self.saved.append((user_id, message_id, snapshot))

    def for_message(self, message_id: str) -> list[UsageSnapshot]:
        return [snap for _, mid, snap in self.saved if mid == message_id]
