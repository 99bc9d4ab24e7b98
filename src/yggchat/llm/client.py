"""Async streaming client for OpenAI-compatible providers.

Talks to OpenRouter, OpenAI, LM Studio and anything else that serves
``/chat/completions`` with SSE streaming.  Yields provider-neutral
``RawChunk`` objects; the engine never sees the wire format.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Protocol

import httpx

from yggchat.config import ProfileSpec
from yggchat.errors import ProviderError
from yggchat.llm.deltas import OpenAIChunkAdapter
from yggchat.types import RawChunk

_logger = logging.getLogger(__name__)

# Retry configuration
_MAX_RETRIES = 3
_BACKOFF_BASE = 1  # seconds -- exponential: 1, 2, 4
_RETRY_STATUSES = (429, 500, 502, 503, 504)


class ProviderStream(Protocol):
    """Boundary contract for streaming providers."""

    def stream(
        self,
        messages: list[dict[str, Any]],
        model: str,
        tools: list[dict[str, Any]] | None = None,
        max_tokens: int | None = None,
        reasoning_max_tokens: int | None = None,
    ) -> AsyncIterator[RawChunk]:
        ...


def _error_message(body: str, resp: httpx.Response) -> str:
    """Pull the human-readable message out of an error body."""
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, ValueError):
        return body.strip() or resp.reason_phrase or f"HTTP {resp.status_code}"
    err = data.get("error") if isinstance(data, dict) else None
    if isinstance(err, dict) and err.get("message"):
        return str(err["message"])
    if isinstance(err, str):
        return err
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return body.strip()


class AsyncProviderClient:
    """httpx-based client for OpenAI-compatible chat completion APIs."""

    def __init__(self, profile: ProfileSpec, timeout: float = 120) -> None:
        self.profile = profile
        headers = {
            "Authorization": f"Bearer {profile.resolve_api_key()}",
            "Content-Type": "application/json",
        }
        if profile.referer:
            headers["HTTP-Referer"] = profile.referer
        if profile.title:
            headers["X-Title"] = profile.title

        self._client = httpx.AsyncClient(
            base_url=profile.url,
            headers=headers,
            timeout=httpx.Timeout(timeout, connect=30, read=300),
        )

    async def stream(
        self,
        messages: list[dict[str, Any]],
        model: str,
        tools: list[dict[str, Any]] | None = None,
        max_tokens: int | None = None,
        reasoning_max_tokens: int | None = None,
    ) -> AsyncIterator[RawChunk]:
        """Stream a chat completion as ``RawChunk`` objects.

        Retries 429/5xx and transport errors with exponential backoff as long
        as nothing has been yielded yet.  Other failures raise
        ``ProviderError`` carrying the HTTP status.
        """
        payload: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "stream": True,
            "usage": {"include": True},
        }
        if max_tokens:
            payload["max_tokens"] = max_tokens
        if tools:
            payload["tools"] = tools
        if reasoning_max_tokens:
            payload["reasoning"] = {"max_tokens": reasoning_max_tokens}
        if self.profile.extra_params:
            payload.update(self.profile.extra_params)

        chunks_yielded = False
        for attempt in range(_MAX_RETRIES):
            last_attempt = attempt == _MAX_RETRIES - 1
            adapter = OpenAIChunkAdapter()
            try:
                async with self._client.stream(
                    "POST", "/chat/completions", json=payload,
                ) as resp:
                    if resp.status_code in _RETRY_STATUSES and not last_attempt:
                        _logger.warning(
                            "Provider stream returned %d (attempt %d/%d), retrying...",
                            resp.status_code, attempt + 1, _MAX_RETRIES,
                        )
                        await asyncio.sleep(_BACKOFF_BASE * (2 ** attempt))
                        continue
                    if resp.status_code >= 400:
                        body = (await resp.aread()).decode(errors="replace")
                        raise ProviderError(
                            _error_message(body, resp), status=resp.status_code,
                        )

                    async for raw_line in resp.aiter_lines():
                        if not raw_line.startswith("data:"):
                            continue
                        data_str = raw_line[5:].strip()
                        if data_str == "[DONE]":
                            break
                        try:
                            data = json.loads(data_str)
                        except json.JSONDecodeError:
                            continue
                        chunks_yielded = True
                        yield adapter.adapt(data)
                return
            except (httpx.TimeoutException, httpx.TransportError) as e:
                if chunks_yielded:
                    raise ProviderError(f"stream interrupted: {e}") from e
                if last_attempt:
                    raise ProviderError(str(e) or type(e).__name__) from e
                _logger.warning(
                    "Provider stream error (attempt %d/%d): %s",
                    attempt + 1, _MAX_RETRIES, e,
                )
                await asyncio.sleep(_BACKOFF_BASE * (2 ** attempt))

    async def list_models(self) -> list[dict[str, Any]]:
        """Return the provider's ``/models`` listing."""
        resp = await self._client.get("/models")
        resp.raise_for_status()
        data = resp.json()
        return data.get("data", []) if isinstance(data, dict) else []

    async def close(self) -> None:
        await self._client.aclose()
