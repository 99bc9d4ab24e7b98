"""Tests for AsyncProviderClient with mocked httpx transports."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from yggchat.config import ProfileSpec
from yggchat.errors import ProviderError
from yggchat.llm.client import AsyncProviderClient
from yggchat.llm.pricing import ProviderPricingFetcher


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def profile() -> ProfileSpec:
    return ProfileSpec(
        provider="openrouter",
        url="https://openrouter.test/api/v1",
        api_key="test-key",
        referer="https://chat.example",
        title="Test Chat",
    )


@pytest.fixture(autouse=True)
def no_backoff():
    with patch("yggchat.llm.client.asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep


def _sse(*payloads: dict) -> bytes:
    lines = [f"data: {json.dumps(p)}\n\n" for p in payloads]
    lines.append("data: [DONE]\n\n")
    return "".join(lines).encode()


def _install(client: AsyncProviderClient, handler) -> None:
    client._client = httpx.AsyncClient(
        base_url=client.profile.url,
        headers=client._client.headers,
        transport=httpx.MockTransport(handler),
    )


async def _collect(client: AsyncProviderClient, **kwargs):
    kwargs.setdefault("messages", [{"role": "user", "content": "Hi"}])
    kwargs.setdefault("model", "test/model")
    return [chunk async for chunk in client.stream(**kwargs)]


class BrokenStream(httpx.AsyncByteStream):
    async def __aiter__(self):
        yield b'data: {"choices": [{"delta": {"content": "Hi"}}]}\n\n'
        raise httpx.ReadError("connection reset")


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------

class TestStream:
    async def test_chunks_adapted(self, profile):
        body = _sse(
            {"choices": [{"delta": {"content": "Hel"}}]},
            {"choices": [{"delta": {"content": "lo"}, "finish_reason": "stop"}]},
            {"choices": [], "usage": {"prompt_tokens": 3, "completion_tokens": 2, "cost": 0.001}},
        )
        client = AsyncProviderClient(profile)
        _install(client, lambda request: httpx.Response(200, content=body))

        chunks = await _collect(client)

        assert [c.fragments for c in chunks[:2]] == [
            [{"type": "text-delta", "delta": "Hel"}],
            [{"type": "text-delta", "delta": "lo"}],
        ]
        assert chunks[1].finish_reason == "stop"
        assert chunks[2].usage["cost"] == 0.001
        await client.close()

    async def test_request_payload_and_headers(self, profile):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, content=_sse())

        client = AsyncProviderClient(profile)
        _install(client, handler)
        tools = [{"type": "function", "function": {"name": "echo", "parameters": {}}}]

        await _collect(client, tools=tools, max_tokens=100, reasoning_max_tokens=50)

        assert seen["path"] == "/api/v1/chat/completions"
        assert seen["headers"]["Authorization"] == "Bearer test-key"
        assert seen["headers"]["HTTP-Referer"] == "https://chat.example"
        assert seen["headers"]["X-Title"] == "Test Chat"
        body = seen["body"]
        assert body["stream"] is True
        assert body["usage"] == {"include": True}
        assert body["tools"] == tools
        assert body["max_tokens"] == 100
        assert body["reasoning"] == {"max_tokens": 50}
        await client.close()

    async def test_optional_fields_omitted(self, profile):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, content=_sse())

        client = AsyncProviderClient(profile)
        _install(client, handler)
        await _collect(client)

        assert "tools" not in seen["body"]
        assert "reasoning" not in seen["body"]
        assert "max_tokens" not in seen["body"]
        await client.close()

    async def test_extra_params_merged(self, profile):
        profile.extra_params = {"temperature": 0.2}
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, content=_sse())

        client = AsyncProviderClient(profile)
        _install(client, handler)
        await _collect(client)

        assert seen["body"]["temperature"] == 0.2
        await client.close()

    async def test_garbage_lines_skipped(self, profile):
        body = b": keep-alive\n\ndata: not-json\n\n" + _sse({"choices": [{"delta": {"content": "ok"}}]})
        client = AsyncProviderClient(profile)
        _install(client, lambda request: httpx.Response(200, content=body))

        chunks = await _collect(client)

        assert len(chunks) == 1
        await client.close()


class TestErrors:
    async def test_retry_on_503(self, profile, no_backoff):
        calls = []

        def handler(request):
            calls.append(1)
            if len(calls) == 1:
                return httpx.Response(503, text="busy")
            return httpx.Response(200, content=_sse({"choices": [{"delta": {"content": "ok"}}]}))

        client = AsyncProviderClient(profile)
        _install(client, handler)
        chunks = await _collect(client)

        assert len(calls) == 2
        assert len(chunks) == 1
        no_backoff.assert_awaited_once_with(1)
        await client.close()

    async def test_retries_exhausted(self, profile):
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(429, json={"error": {"message": "Rate limit exceeded"}})

        client = AsyncProviderClient(profile)
        _install(client, handler)

        with pytest.raises(ProviderError) as exc_info:
            await _collect(client)

        assert len(calls) == 3
        assert exc_info.value.status == 429
        assert str(exc_info.value) == "Rate limit exceeded"
        await client.close()

    async def test_tool_unsupported_not_retried(self, profile):
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(404, json={
                "error": {"message": "No endpoints found that support tool use."},
            })

        client = AsyncProviderClient(profile)
        _install(client, handler)

        with pytest.raises(ProviderError) as exc_info:
            await _collect(client)

        assert len(calls) == 1
        assert exc_info.value.is_tool_unsupported
        await client.close()

    async def test_plain_text_error_body(self, profile):
        client = AsyncProviderClient(profile)
        _install(client, lambda request: httpx.Response(401, text="bad key"))

        with pytest.raises(ProviderError, match="bad key") as exc_info:
            await _collect(client)

        assert exc_info.value.status == 401
        await client.close()

    async def test_transport_error_retried(self, profile):
        calls = []

        def handler(request):
            calls.append(1)
            raise httpx.ConnectError("refused")

        client = AsyncProviderClient(profile)
        _install(client, handler)

        with pytest.raises(ProviderError, match="refused"):
            await _collect(client)

        assert len(calls) == 3
        await client.close()

    async def test_interrupted_stream_not_retried(self, profile):
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(200, stream=BrokenStream())

        client = AsyncProviderClient(profile)
        _install(client, handler)
        received = []

        with pytest.raises(ProviderError, match="stream interrupted"):
            async for chunk in client.stream([{"role": "user", "content": "Hi"}], "m"):
                received.append(chunk)

        assert len(calls) == 1
        assert len(received) == 1
        await client.close()


class TestToolUnsupportedSignature:
    @pytest.mark.parametrize("message,status,expected", [
        ("This model does not support tool use", 404, True),
        ("tool use not available", 400, False),
        ("Provider returned error", 400, True),
        ("Provider returned error", 500, False),
        ("No endpoints found that support tool use", None, True),
        ("No endpoints found that support tool use", 503, True),
        ("Rate limited", 429, False),
    ])
    def test_signatures(self, message, status, expected):
        assert ProviderError(message, status=status).is_tool_unsupported is expected


class TestModels:
    async def test_list_models_and_pricing(self, profile):
        models = {"data": [
            {"id": "a/m", "pricing": {"prompt": "0.001", "completion": "0.002"}},
            {"id": "b/m"},
        ]}
        client = AsyncProviderClient(profile)
        _install(client, lambda request: httpx.Response(200, json=models))

        listing = await client.list_models()
        catalog = await ProviderPricingFetcher(client).fetch()

        assert len(listing) == 2
        assert list(catalog) == ["a/m"]
        assert catalog["a/m"].completion_rate_per_1k == pytest.approx(0.002)
        await client.close()

    async def test_api_key_from_env(self, monkeypatch):
        monkeypatch.setenv("MY_KEY", "from-env")
        client = AsyncProviderClient(ProfileSpec(api_key_env="MY_KEY"))
        assert client._client.headers["Authorization"] == "Bearer from-env"
        await client.close()
