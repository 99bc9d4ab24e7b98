"""Web search tool backed by the Brave Search API."""

from __future__ import annotations

import logging
import os
from typing import Any

import httpx

from yggchat.tools.base import Tool, ToolResult
from yggchat.tools.schema import integer, object_of, string

_logger = logging.getLogger(__name__)

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"


class BraveSearchTool(Tool):
    """Search the web and return the top results."""

    name = "brave_search"
    description = (
        "Search the web using Brave Search. Returns titles, URLs and snippets of the "
        "top results."
    )
    parameters = object_of(
        query=string("The search query"),
        count=integer(
            "Number of results to return (1-20)", required=False, default=10,
            minimum=1, maximum=20,
        ),
    )

    def __init__(
        self,
        api_key: str | None = None,
        api_key_env: str = "BRAVE_API_KEY",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._api_key_env = api_key_env
        self._client = client

    def _resolve_key(self) -> str:
        return self._api_key or os.environ.get(self._api_key_env, "")

    async def execute(self, **kwargs: Any) -> ToolResult:
        query = str(kwargs.get("query") or "").strip()
        if not query:
            return ToolResult(success=False, error="No query provided")
        count = max(1, min(int(kwargs.get("count") or 10), 20))
        api_key = self._resolve_key()
        if not api_key:
            return ToolResult(
                success=False, error=f"Brave API key not configured ({self._api_key_env})",
            )

        client = self._client or httpx.AsyncClient(timeout=httpx.Timeout(20, connect=10))
        try:
            resp = await client.get(
                BRAVE_SEARCH_URL,
                params={"q": query, "count": count},
                headers={
                    "Accept": "application/json",
                    "X-Subscription-Token": api_key,
                },
            )
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as e:
            _logger.warning("Brave search failed for %r: %s", query, e)
            return ToolResult(success=False, error=f"Search failed: {e}")
        finally:
            if self._client is None:
                await client.aclose()

        results = [
            {
                "title": item.get("title", ""),
                "url": item.get("url", ""),
                "description": item.get("description", ""),
            }
            for item in (data.get("web") or {}).get("results", [])[:count]
        ]
        lines = [f"{i}. {r['title']}\n   {r['url']}\n   {r['description']}"
                 for i, r in enumerate(results, start=1)]
        return ToolResult(
            success=True,
            output="\n".join(lines) if lines else "No results found.",
            metadata={"query": query, "results": results},
        )
