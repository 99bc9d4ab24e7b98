"""Provider client, delta classification and pricing for yggchat."""

from yggchat.llm.client import AsyncProviderClient, ProviderStream
from yggchat.llm.deltas import OpenAIChunkAdapter, classify_delta
from yggchat.llm.pricing import PricingCache, ProviderPricingFetcher, StaticPricingFetcher

__all__ = [
    "AsyncProviderClient",
    "OpenAIChunkAdapter",
    "PricingCache",
    "ProviderPricingFetcher",
    "ProviderStream",
    "StaticPricingFetcher",
    "classify_delta",
]
