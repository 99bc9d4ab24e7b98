"""Tests for ToolCallAccumulator and the prose parameter fallback."""

import json

from yggchat.core.accumulator import (
    ToolCallAccumulator,
    deduplicate,
    extract_parameters_from_content,
)
from yggchat.types import ToolCallRecord


class TestFeed:
    def test_empty_accumulator(self):
        acc = ToolCallAccumulator()
        assert len(acc) == 0
        assert acc.resolved_records() == []
        assert acc.finalize("") == []

    def test_single_fragment_resolves(self):
        acc = ToolCallAccumulator()
        record = acc.feed("c1", "read_file", '{"path": "a.py"}')

        assert record is not None
        assert record.resolved
        assert record.name == "read_file"
        assert json.loads(record.arguments) == {"path": "a.py"}

    def test_fragments_accumulate(self):
        acc = ToolCallAccumulator()
        assert acc.feed("c1", "shell", '{"comma') is None
        assert acc.feed("c1", None, 'nd": ') is None
        record = acc.feed("c1", None, '"ls"}')

        assert record is not None
        assert record.arguments == '{"command": "ls"}'

    def test_opening_fragment_without_arguments(self):
        acc = ToolCallAccumulator()
        assert acc.feed("c1", "echo", "") is None
        assert len(acc) == 1
        assert acc.feed("c1", None, "{}") is not None

    def test_unknown_id_continues_latest_record(self):
        acc = ToolCallAccumulator()
        acc.feed("c1", "echo", '{"x"')
        record = acc.feed("other", None, ": 1}")

        assert record is not None
        assert record.id == "c1"
        assert len(acc) == 1

    def test_fragment_before_any_record_is_ignored(self):
        acc = ToolCallAccumulator()
        assert acc.feed(None, None, '{"x": 1}') is None
        assert len(acc) == 0

    def test_resolved_record_is_idempotent(self):
        acc = ToolCallAccumulator()
        first = acc.feed("c1", "echo", '{"x": 1}')
        again = acc.feed("c1", None, '{"x": 1}')
        more = acc.feed("c1", None, "garbage")

        assert first is again is more
        assert first.arguments == '{"x": 1}'

    def test_scalar_json_does_not_resolve(self):
        acc = ToolCallAccumulator()
        assert acc.feed("c1", "echo", "1") is None
        assert acc.feed("c1", None, "2") is None

    def test_multiple_calls_keep_discovery_order(self):
        acc = ToolCallAccumulator()
        acc.feed("b", "second", "{")
        acc.feed("a", "first", "{}")
        acc.feed("b", None, "}")

        records = acc.resolved_records()
        assert [r.name for r in records] == ["second", "first"]


class TestFinalize:
    def test_unresolved_dropped(self):
        acc = ToolCallAccumulator()
        acc.feed("c1", "echo", '{"x": ')
        acc.feed("c2", "echo", '{"x": 2}')

        final = acc.finalize("")
        assert [r.id for r in final] == ["c2"]

    def test_empty_arguments_without_text(self):
        acc = ToolCallAccumulator()
        acc.feed("c1", "echo", "")

        final = acc.finalize("")
        assert len(final) == 1
        assert final[0].arguments == "{}"

    def test_empty_arguments_recovered_from_parameter_tags(self):
        acc = ToolCallAccumulator()
        acc.feed("c1", "read_file", "{}")

        final = acc.finalize('<parameter name="path">/tmp/x.txt</parameter>')
        assert json.loads(final[0].arguments) == {"path": "/tmp/x.txt"}

    def test_search_fallback(self):
        acc = ToolCallAccumulator()
        acc.feed("c1", "brave_search", "")

        final = acc.finalize("\nlatest rust release notes\n")
        assert json.loads(final[0].arguments) == {"query": "latest rust release notes", "count": 10}

    def test_custom_search_tools(self):
        acc = ToolCallAccumulator()
        acc.feed("c1", "web_lookup", "")

        final = acc.finalize("weather in Oslo today", search_tools=("web_lookup",))
        assert json.loads(final[0].arguments)["query"] == "weather in Oslo today"


class TestExtractParameters:
    def test_parameter_tags(self):
        text = (
            'Calling now <parameter name="query">cats</parameter>'
            '<parameter name="count"> 5 </parameter>'
        )
        assert json.loads(extract_parameters_from_content(text, "anything")) == {
            "query": "cats", "count": "5",
        }

    def test_query_line(self):
        text = "ok\nquery: best pizza"
        assert json.loads(extract_parameters_from_content(text, "brave_search")) == {
            "query": "query: best pizza", "count": 10,
        }

    def test_tags_stripped(self):
        text = "<b>python packaging guide</b>"
        assert json.loads(extract_parameters_from_content(text, "brave_search"))["query"] == (
            "python packaging guide"
        )

    def test_short_lines_skipped(self):
        assert extract_parameters_from_content("hi\nok\nyes", "brave_search") == "{}"

    def test_non_search_tool(self):
        assert extract_parameters_from_content("a long line of prose here", "read_file") == "{}"

    def test_line_that_strips_to_nothing(self):
        assert extract_parameters_from_content("<tool_call></tool_call>", "brave_search") == "{}"


class TestDeduplicate:
    def test_identical_pairs_collapse(self):
        records = [
            ToolCallRecord("c1", "echo", '{"x": 1}', True, 0),
            ToolCallRecord("c2", "echo", '{"x": 1}', True, 1),
            ToolCallRecord("c3", "echo", '{"x": 2}', True, 2),
            ToolCallRecord("c4", "other", '{"x": 1}', True, 3),
        ]
        assert [r.id for r in deduplicate(records)] == ["c1", "c3", "c4"]

    def test_empty(self):
        assert deduplicate([]) == []
