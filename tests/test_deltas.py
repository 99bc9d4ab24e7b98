"""Tests for delta classification and the OpenAI chunk adapter."""

import pytest

from yggchat.llm.deltas import OpenAIChunkAdapter, classify_delta, extract_payload
from yggchat.types import DeltaKind


class TestExtractPayload:
    def test_priority_order(self):
        assert extract_payload({"delta": "a", "textDelta": "b", "text": "c"}) == "a"
        assert extract_payload({"delta": "", "textDelta": "b", "text": "c"}) == "b"
        assert extract_payload({"text": "c"}) == "c"

    def test_plain_string(self):
        assert extract_payload("raw") == "raw"

    def test_non_string_fields_skipped(self):
        assert extract_payload({"delta": {"nested": 1}, "text": "t"}) == "t"


class TestClassifyDelta:
    @pytest.mark.parametrize("type_tag", ["reasoning-delta", "reasoning", "thinking", "Thinking_Delta"])
    def test_reasoning(self, type_tag):
        delta = classify_delta({"type": type_tag, "delta": "hmm"})
        assert delta.kind == DeltaKind.REASONING
        assert delta.text == "hmm"

    @pytest.mark.parametrize("type_tag", ["tool-call-delta", "tool_call", "tool-use", "tool_use_delta"])
    def test_tool_call(self, type_tag):
        delta = classify_delta({"type": type_tag, "id": "c1", "name": "echo", "delta": "{}"})
        assert delta.kind == DeltaKind.TOOL_CALL
        assert delta.tool_call_id == "c1"
        assert delta.tool_name == "echo"

    def test_tool_call_alternate_field_names(self):
        delta = classify_delta({
            "type": "tool-call", "toolCallId": "c9", "toolName": "search", "textDelta": '{"q"',
        })
        assert delta.tool_call_id == "c9"
        assert delta.tool_name == "search"
        assert delta.text == '{"q"'

    def test_tool_call_opening_fragment_kept(self):
        delta = classify_delta({"type": "tool-call-delta", "id": "c1", "name": "echo", "delta": ""})
        assert delta is not None
        assert delta.text == ""

    def test_tool_call_without_id_or_payload_dropped(self):
        assert classify_delta({"type": "tool-call-delta", "delta": ""}) is None

    def test_text_default(self):
        delta = classify_delta({"type": "text-delta", "textDelta": "hello"})
        assert delta.kind == DeltaKind.TEXT
        assert delta.text == "hello"

    def test_untyped_fragment_is_text(self):
        assert classify_delta({"text": "hi"}).kind == DeltaKind.TEXT

    def test_error(self):
        delta = classify_delta({"type": "error", "delta": "overloaded"})
        assert delta.kind == DeltaKind.ERROR

    def test_empty_payload_dropped(self):
        assert classify_delta({"type": "text-delta", "delta": ""}) is None
        assert classify_delta({"type": "reasoning-delta"}) is None
        assert classify_delta("") is None

    def test_plain_string_is_text(self):
        delta = classify_delta("abc")
        assert delta.kind == DeltaKind.TEXT
        assert delta.text == "abc"


class TestOpenAIChunkAdapter:
    def test_content(self):
        chunk = OpenAIChunkAdapter().adapt({
            "choices": [{"delta": {"content": "Hi"}, "finish_reason": None}],
        })
        assert chunk.fragments == [{"type": "text-delta", "delta": "Hi"}]
        assert chunk.finish_reason is None
        assert chunk.usage is None

    def test_reasoning_fields(self):
        adapter = OpenAIChunkAdapter()
        a = adapter.adapt({"choices": [{"delta": {"reasoning": "r1"}}]})
        b = adapter.adapt({"choices": [{"delta": {"reasoning_content": "r2"}}]})
        assert a.fragments == [{"type": "reasoning-delta", "delta": "r1"}]
        assert b.fragments == [{"type": "reasoning-delta", "delta": "r2"}]

    def test_tool_call_ids_tracked_by_index(self):
        adapter = OpenAIChunkAdapter()
        first = adapter.adapt({"choices": [{"delta": {"tool_calls": [{
            "index": 0, "id": "call_abc",
            "function": {"name": "echo", "arguments": ""},
        }]}}]})
        second = adapter.adapt({"choices": [{"delta": {"tool_calls": [{
            "index": 0, "function": {"arguments": '{"x": 1}'},
        }]}}]})

        assert first.fragments == [
            {"type": "tool-call-delta", "id": "call_abc", "delta": "", "name": "echo"},
        ]
        assert second.fragments == [
            {"type": "tool-call-delta", "id": "call_abc", "delta": '{"x": 1}'},
        ]

    def test_tool_call_without_id(self):
        chunk = OpenAIChunkAdapter().adapt({"choices": [{"delta": {"tool_calls": [{
            "index": 2, "function": {"name": "echo", "arguments": "{}"},
        }]}}]})
        assert chunk.fragments[0]["id"] == "call_2"

    def test_usage_and_finish(self):
        chunk = OpenAIChunkAdapter().adapt({
            "choices": [{"delta": {}, "finish_reason": "stop"}],
            "usage": {"prompt_tokens": 3, "completion_tokens": 4},
        })
        assert chunk.fragments == []
        assert chunk.finish_reason == "stop"
        assert chunk.usage == {"prompt_tokens": 3, "completion_tokens": 4}

    def test_usage_only_chunk(self):
        chunk = OpenAIChunkAdapter().adapt({"choices": [], "usage": {"cost": 0.1}})
        assert chunk.fragments == []
        assert chunk.usage == {"cost": 0.1}

    def test_error_payload(self):
        chunk = OpenAIChunkAdapter().adapt({"error": {"message": "overloaded", "code": 502}})
        assert chunk.fragments == [{"type": "error", "delta": "overloaded"}]
        assert chunk.finish_reason == "error"

    def test_adapted_fragments_classify(self):
        chunk = OpenAIChunkAdapter().adapt({"choices": [{"delta": {
            "reasoning": "think", "content": "say",
        }}]})
        kinds = [classify_delta(f).kind for f in chunk.fragments]
        assert kinds == [DeltaKind.REASONING, DeltaKind.TEXT]
