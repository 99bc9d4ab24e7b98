"""Token usage and cost accounting across the steps of a run."""

from __future__ import annotations

import logging
import math
from typing import Any, Iterable, Mapping

from yggchat.llm.pricing import PricingCache
from yggchat.types import PricingEntry, UsageSnapshot

_logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4

# Fields that may carry provider-reported credits, first match wins
_CREDIT_FIELDS = ("cost", "credits", "openrouter_credits", "total_cost")


def estimate_tokens(text: str) -> int:
    """Rough token count: one token per four characters, rounded up."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def _message_text(content: Any) -> Iterable[str]:
    if isinstance(content, str):
        yield content
    elif isinstance(content, list):
        for part in content:
            if isinstance(part, Mapping) and part.get("type") == "text" and part.get("text"):
                yield part["text"]


def estimate_usage(messages: Iterable[Mapping[str, Any]], completion_text: str) -> UsageSnapshot:
    """Synthesize usage when the provider never reported any.

    Prompt tokens cover string contents and the text parts of structured
    contents (image parts are not counted).
    """
    prompt_tokens = sum(
        estimate_tokens(text)
        for msg in messages
        for text in _message_text(msg.get("content"))
    )
    return UsageSnapshot(
        prompt_tokens=prompt_tokens,
        completion_tokens=estimate_tokens(completion_text),
        estimated=True,
    )


def _as_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def usage_from_provider(usage: Mapping[str, Any]) -> UsageSnapshot:
    """Convert a provider usage report into a snapshot (cost not yet priced)."""
    reasoning = usage.get("reasoning_tokens")
    if reasoning is None:
        details = usage.get("completion_tokens_details") or {}
        reasoning = details.get("reasoning_tokens", 0)

    credits = 0.0
    for key in _CREDIT_FIELDS:
        if usage.get(key):
            credits = _as_float(usage[key])
            break

    return UsageSnapshot(
        prompt_tokens=int(usage.get("prompt_tokens") or 0),
        completion_tokens=int(usage.get("completion_tokens") or 0),
        reasoning_tokens=int(reasoning or 0),
        provider_credits=credits,
        estimated=bool(usage.get("estimated", False)),
    )


def compute_cost(usage: UsageSnapshot, pricing: PricingEntry | None) -> float:
    """USD cost of *usage*; reasoning falls back to the completion rate."""
    if pricing is None:
        return 0.0
    reasoning_rate = pricing.reasoning_rate_per_1k
    if reasoning_rate is None:
        reasoning_rate = pricing.completion_rate_per_1k
    return (
        (usage.prompt_tokens / 1000) * pricing.prompt_rate_per_1k
        + (usage.completion_tokens / 1000) * pricing.completion_rate_per_1k
        + (usage.reasoning_tokens / 1000) * reasoning_rate
    )


class UsageAccountant:
    """Folds per-step usage into running totals for one run.

    Parameters
    ----------
    model:
        Model id used to look up pricing.
    pricing:
        Shared ``PricingCache``; ``None`` disables cost computation.
    """

    def __init__(self, model: str, pricing: PricingCache | None = None) -> None:
        self._model = model
        self._pricing = pricing
        self._totals = UsageSnapshot()
        self.records = 0

    @property
    def totals(self) -> UsageSnapshot:
        return self._totals

    async def get_pricing(self, model: str | None = None) -> PricingEntry | None:
        if self._pricing is None:
            return None
        return await self._pricing.get(model or self._model)

    async def record(self, step_usage: UsageSnapshot) -> UsageSnapshot:
        """Price *step_usage*, add it to the totals and return the totals.

        Tokens are always counted; a missing price only skips the USD cost.
        """
        pricing = await self.get_pricing()
        cost = compute_cost(step_usage, pricing)
        priced = UsageSnapshot(
            prompt_tokens=step_usage.prompt_tokens,
            completion_tokens=step_usage.completion_tokens,
            reasoning_tokens=step_usage.reasoning_tokens,
            cost_usd=step_usage.cost_usd + cost,
            provider_credits=step_usage.provider_credits,
            estimated=step_usage.estimated,
        )
        self._totals = self._totals + priced
        self.records += 1
        _logger.debug(
            "Step usage for %s: prompt=%d completion=%d reasoning=%d cost=$%.6f "
            "credits=%.6f estimated=%s",
            self._model, priced.prompt_tokens, priced.completion_tokens,
            priced.reasoning_tokens, priced.cost_usd, priced.provider_credits,
            priced.estimated,
        )
        return self._totals
