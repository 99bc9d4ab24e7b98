"""Reassembly of tool-call arguments from fragmented stream deltas."""

from __future__ import annotations

import json
import logging
import re
from typing import Iterable

from yggchat.types import ToolCallRecord

_logger = logging.getLogger(__name__)

_PARAMETER_RE = re.compile(r'<parameter name="([^"]+)">([^<]*)</parameter>')
_TAG_RE = re.compile(r"<[^>]*>")

DEFAULT_SEARCH_TOOLS = ("brave_search",)


def _parses_to_object(text: str) -> bool:
    try:
        return isinstance(json.loads(text), dict)
    except (json.JSONDecodeError, ValueError):
        return False


def _is_empty_arguments(text: str) -> bool:
    return not text.strip() or text.strip() == "{}"


def extract_parameters_from_content(
    text: str,
    tool_name: str,
    search_tools: Iterable[str] = DEFAULT_SEARCH_TOOLS,
) -> str:
    """Recover tool arguments from prose when the model sent none.

    Looks for ``<parameter name="x">value</parameter>`` tags first.  For
    search tools it then takes the first line that mentions "query" or is
    longer than 10 characters as the query.  Returns ``"{}"`` when nothing
    usable is found.
    """
    params = {name: value.strip() for name, value in _PARAMETER_RE.findall(text)}
    if params:
        return json.dumps(params)

    if tool_name in search_tools:
        for line in text.splitlines():
            if not line.strip():
                continue
            if "query" in line or len(line) > 10:
                clean = _TAG_RE.sub("", line).strip()
                if len(clean) > 3:
                    return json.dumps({"query": clean, "count": 10})

    return "{}"


def deduplicate(records: Iterable[ToolCallRecord]) -> list[ToolCallRecord]:
    """Keep the first record of each ``(name, arguments)`` pair."""
    seen: set[tuple[str, str]] = set()
    unique: list[ToolCallRecord] = []
    for record in records:
        key = (record.name, record.arguments)
        if key in seen:
            _logger.debug("Dropping duplicate tool call %s(%s)", record.name, record.arguments)
            continue
        seen.add(key)
        unique.append(record)
    return unique


class ToolCallAccumulator:
    """Per-step buffer of tool calls keyed by call id."""

    def __init__(self) -> None:
        self._records: dict[str, ToolCallRecord] = {}
        self._last_id: str | None = None

    def __len__(self) -> int:
        return len(self._records)

    def feed(self, call_id: str | None, name: str | None, fragment: str) -> ToolCallRecord | None:
        """Add *fragment* to the call identified by *call_id*.

        A new id needs a *name* to open a record; an unknown id without one
        is treated as a continuation of the most recent record.  Returns the
        record when its buffer parses as a JSON object, ``None`` otherwise.
        """
        record = self._records.get(call_id) if call_id else None

        if record is None:
            if call_id and name:
                record = ToolCallRecord(id=call_id, name=name, order=len(self._records))
                self._records[call_id] = record
                self._last_id = call_id
            elif self._last_id is not None:
                record = self._records[self._last_id]
            else:
                _logger.debug("Tool call fragment with no open call, ignoring: %r", fragment)
                return None

        if record.resolved:
            return record

        if fragment:
            record.arguments_buffer += fragment
            if _parses_to_object(record.arguments_buffer):
                record.resolved = True
                return record
        return None

    def resolved_records(self) -> list[ToolCallRecord]:
        """Resolved records in discovery order."""
        return sorted(
            (r for r in self._records.values() if r.resolved),
            key=lambda r: r.order,
        )

    def finalize(
        self,
        step_text: str,
        search_tools: Iterable[str] = DEFAULT_SEARCH_TOOLS,
    ) -> list[ToolCallRecord]:
        """Records to execute at the end of a step, in discovery order.

        Calls with empty arguments get them from *step_text* when there is
        any, else ``{}``.  Calls whose arguments never became valid JSON are
        dropped.
        """
        final: list[ToolCallRecord] = []
        for record in sorted(self._records.values(), key=lambda r: r.order):
            if _is_empty_arguments(record.arguments_buffer):
                if step_text:
                    record.arguments_buffer = extract_parameters_from_content(
                        step_text, record.name, search_tools,
                    )
                else:
                    record.arguments_buffer = "{}"
                record.resolved = True
            if not record.resolved:
                _logger.warning(
                    "Dropping unresolved tool call %s (%s): %r",
                    record.name, record.id, record.arguments_buffer[:200],
                )
                continue
            final.append(record)
        return final
