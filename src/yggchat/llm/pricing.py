"""Per-model pricing catalog with a TTL cache.

One ``PricingCache`` is built per process and handed to every
``UsageAccountant``.  The whole catalog is refreshed lazily when empty or
older than the TTL.  Concurrent refreshes may race; the last one to finish
replaces the catalog, which is fine because entries are immutable
snapshots of the same external price list.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Protocol

from yggchat.types import PricingEntry

_logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 60 * 60


class PricingCatalogFetcher(Protocol):
    """Anything that can return the full ``{model_id: PricingEntry}`` catalog."""

    async def fetch(self) -> dict[str, PricingEntry]:
        ...


def _rate(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def parse_catalog(models: list[dict[str, Any]], now: float | None = None) -> dict[str, PricingEntry]:
    """Build catalog entries from an OpenRouter-style ``/models`` listing."""
    cached_at = time.time() if now is None else now
    catalog: dict[str, PricingEntry] = {}
    for info in models:
        pricing = info.get("pricing")
        model_id = info.get("id") or info.get("name")
        if not pricing or not model_id:
            continue
        reasoning = _rate(pricing.get("internal_reasoning"))
        catalog[model_id] = PricingEntry(
            prompt_rate_per_1k=_rate(pricing.get("prompt")),
            completion_rate_per_1k=_rate(pricing.get("completion")),
            reasoning_rate_per_1k=reasoning or None,
            cached_at=cached_at,
        )
    return catalog


class ProviderPricingFetcher:
    """Fetch the catalog through a provider client's ``list_models()``."""

    def __init__(self, client: Any) -> None:  # client: AsyncProviderClient
        self._client = client

    async def fetch(self) -> dict[str, PricingEntry]:
        models = await self._client.list_models()
        catalog = parse_catalog(models)
        _logger.info("Fetched pricing for %d of %d models", len(catalog), len(models))
        return catalog


class StaticPricingFetcher:
    """Fixed catalog, for offline use and tests."""

    def __init__(self, catalog: dict[str, PricingEntry]) -> None:
        self._catalog = dict(catalog)
        self.calls = 0

    async def fetch(self) -> dict[str, PricingEntry]:
        self.calls += 1
        return dict(self._catalog)


class PricingCache:
    """TTL cache over a ``PricingCatalogFetcher``."""

    def __init__(
        self,
        fetcher: PricingCatalogFetcher,
        ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._fetcher = fetcher
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[str, PricingEntry] = {}
        self._fetched_at: float | None = None

    @property
    def is_stale(self) -> bool:
        if not self._entries or self._fetched_at is None:
            return True
        return self._clock() - self._fetched_at > self._ttl

    async def refresh(self) -> None:
        """Fetch the catalog and swap it in.  Failures keep the old catalog."""
        try:
            entries = await self._fetcher.fetch()
        except Exception as e:
            _logger.warning("Failed to fetch pricing catalog: %s", e)
            return
        self._entries = dict(entries)
        self._fetched_at = self._clock()

    async def get(self, model: str) -> PricingEntry | None:
        """Pricing for *model*, or ``None`` when the catalog does not list it."""
        if self.is_stale:
            await self.refresh()
        entry = self._entries.get(model)
        if entry is None:
            _logger.debug("No pricing found for model: %s", model)
        return entry
