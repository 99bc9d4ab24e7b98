"""Delta classification and provider chunk adapters.

Upstream SDKs disagree on field names for streamed fragments.  Provider
adapters turn a provider payload into neutral fragments
(``{"type": ..., "delta": ...}``) and ``classify_delta`` turns any
fragment, including ones shaped like other SDKs' parts
(``textDelta``, ``text``), into a ``ClassifiedDelta``.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from yggchat.types import ClassifiedDelta, DeltaKind, RawChunk

_logger = logging.getLogger(__name__)

# Priority order for the text payload of a fragment
_PAYLOAD_FIELDS = ("delta", "textDelta", "text")

_REASONING_MARKERS = ("reason", "thinking")
_TOOL_CALL_MARKERS = ("tool-call", "tool_call", "tool-use", "tool_use")


def extract_payload(fragment: Mapping[str, Any] | str) -> str:
    """Return the first non-empty text field of *fragment*."""
    if isinstance(fragment, str):
        return fragment
    for key in _PAYLOAD_FIELDS:
        value = fragment.get(key)
        if isinstance(value, str) and value:
            return value
    return ""


def _kind_for(type_tag: str) -> DeltaKind:
    tag = type_tag.lower()
    if any(m in tag for m in _REASONING_MARKERS):
        return DeltaKind.REASONING
    if any(m in tag for m in _TOOL_CALL_MARKERS):
        return DeltaKind.TOOL_CALL
    if "error" in tag:
        return DeltaKind.ERROR
    return DeltaKind.TEXT


def classify_delta(fragment: Mapping[str, Any] | str) -> ClassifiedDelta | None:
    """Normalize one streamed fragment.

    Returns ``None`` for fragments with nothing to route: an empty payload,
    unless it is a tool-call fragment that names a call id (the opening
    fragment of a call often carries only the id and name).
    """
    if isinstance(fragment, str):
        return ClassifiedDelta(DeltaKind.TEXT, fragment) if fragment else None

    kind = _kind_for(str(fragment.get("type") or ""))
    text = extract_payload(fragment)

    if kind is DeltaKind.TOOL_CALL:
        call_id = fragment.get("id") or fragment.get("toolCallId")
        name = fragment.get("name") or fragment.get("toolName")
        if not text and not call_id:
            return None
        return ClassifiedDelta(
            kind, text,
            tool_call_id=str(call_id) if call_id else None,
            tool_name=name or None,
        )

    if not text:
        return None
    return ClassifiedDelta(kind, text)


# ---------------------------------------------------------------------------
# Provider adapters
# ---------------------------------------------------------------------------

class OpenAIChunkAdapter:
    """Adapter for OpenAI-compatible SSE chunks (OpenAI, OpenRouter, LM Studio).

    Stateful per stream: continuation tool-call deltas carry only their
    ``index``, so the adapter remembers which call id each index opened.
    """

    def __init__(self) -> None:
        self._ids_by_index: dict[int, str] = {}

    def adapt(self, payload: Mapping[str, Any]) -> RawChunk:
        usage = payload.get("usage") or None

        error = payload.get("error")
        if error:
            message = error.get("message") if isinstance(error, Mapping) else str(error)
            return RawChunk(
                fragments=[{"type": "error", "delta": message or "Provider error"}],
                usage=usage,
                finish_reason="error",
            )

        choices = payload.get("choices") or []
        if not choices:
            return RawChunk(usage=usage)
        choice = choices[0]
        delta = choice.get("delta") or {}
        fragments: list[dict[str, Any]] = []

        reasoning = delta.get("reasoning") or delta.get("reasoning_content")
        if reasoning:
            fragments.append({"type": "reasoning-delta", "delta": reasoning})

        for tc in delta.get("tool_calls") or []:
            idx = tc.get("index", 0)
            func = tc.get("function") or {}
            call_id = tc.get("id")
            if call_id:
                self._ids_by_index[idx] = call_id
            else:
                call_id = self._ids_by_index.setdefault(idx, f"call_{idx}")
            frag: dict[str, Any] = {
                "type": "tool-call-delta",
                "id": call_id,
                "delta": func.get("arguments") or "",
            }
            if func.get("name"):
                frag["name"] = func["name"]
            fragments.append(frag)

        content = delta.get("content")
        if content:
            fragments.append({"type": "text-delta", "delta": content})

        return RawChunk(
            fragments=fragments,
            usage=usage,
            finish_reason=choice.get("finish_reason"),
        )
