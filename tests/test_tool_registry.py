"""Tests for the tool registry, base Tool class and schema adapters."""

from __future__ import annotations

from typing import Any, Literal, Optional
from unittest.mock import MagicMock, patch

import pytest
from pydantic import BaseModel, Field

from yggchat.tools.base import FunctionTool, Tool, ToolResult, coerce_schema
from yggchat.tools.registry import ToolRegistry
from yggchat.tools.schema import (
    SchemaNode,
    array,
    boolean,
    enum_of,
    integer,
    number,
    object_of,
    schema_from_json,
    schema_from_model,
    string,
    to_json_schema,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class EchoTool(Tool):
    """Simple mock tool for testing."""

    name = "echo"
    description = "Echoes the input message."
    parameters = object_of(
        message=string("Message to echo"),
        loud=boolean("Shout it", required=False, default=False),
    )

    async def execute(self, **kwargs: Any) -> ToolResult:
        return ToolResult(success=True, output=f"Echo: {kwargs.get('message', '')}")


class SearchParams(BaseModel):
    query: str = Field(description="Search terms")
    count: int = Field(10, ge=1, le=20, description="Result count")
    safe: Optional[bool] = None
    mode: Literal["web", "news"] = "web"
    tags: list[str] = []


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class TestRegistry:
    def test_register_and_get(self):
        reg = ToolRegistry([EchoTool()])
        assert reg.get("echo").name == "echo"
        assert reg.get("missing") is None
        assert reg.tool_names() == ["echo"]

    def test_replace_warns(self, caplog):
        reg = ToolRegistry([EchoTool()])
        reg.register(EchoTool())
        assert "Replacing already registered tool: echo" in caplog.text
        assert len(reg.list_tools()) == 1

    def test_enabled_filtering(self):
        reg = ToolRegistry([EchoTool(), FunctionTool("other", "Other", lambda: 1)])
        reg.set_enabled("other", False)

        assert [t.name for t in reg.enabled_tools()] == ["echo"]
        assert reg.get_enabled("other") is None
        assert reg.get("other") is not None

    def test_set_enabled_unknown(self):
        with pytest.raises(KeyError):
            ToolRegistry().set_enabled("nope", True)

    def test_provider_specs(self):
        reg = ToolRegistry([EchoTool()])
        openai = reg.provider_specs()
        anthropic = reg.provider_specs("anthropic")
        gemini = reg.provider_specs("gemini")

        assert openai[0]["function"]["name"] == "echo"
        assert anthropic[0]["input_schema"]["required"] == ["message"]
        assert gemini[0]["parameters"]["type"] == "OBJECT"

    def test_provider_specs_unknown_format(self):
        with pytest.raises(ValueError, match="Unknown tool format"):
            ToolRegistry().provider_specs("cobol")

    def test_discover_entry_points(self):
        good = MagicMock()
        good.name = "echo"
        good.load.return_value = EchoTool
        bad = MagicMock()
        bad.name = "bad"
        bad.load.return_value = lambda: "not a tool"
        broken = MagicMock()
        broken.name = "broken"
        broken.load.side_effect = ImportError("missing dependency")

        reg = ToolRegistry()
        with patch("yggchat.tools.registry.entry_points", return_value=[good, bad, broken]):
            reg.discover()

        assert reg.tool_names() == ["echo"]


# ---------------------------------------------------------------------------
# Tool base
# ---------------------------------------------------------------------------

class TestToolBase:
    def test_to_openai_schema(self):
        schema = EchoTool().to_openai_schema()
        assert schema["type"] == "function"
        params = schema["function"]["parameters"]
        assert params["properties"]["message"] == {"type": "string", "description": "Message to echo"}
        assert params["properties"]["loud"]["default"] is False
        assert params["required"] == ["message"]

    def test_to_anthropic_schema(self):
        schema = EchoTool().to_anthropic_schema()
        assert schema["name"] == "echo"
        assert schema["input_schema"]["type"] == "object"

    def test_to_gemini_schema(self):
        schema = EchoTool().to_gemini_schema()
        props = schema["parameters"]["properties"]
        assert props["message"]["type"] == "STRING"
        assert props["loud"]["type"] == "BOOLEAN"
        assert "default" not in props["loud"]

    def test_gemini_omits_empty_parameters(self):
        tool = FunctionTool("ping", "Ping", lambda: "pong")
        assert "parameters" not in tool.to_gemini_schema()


class TestFunctionTool:
    async def test_sync_callable(self):
        tool = FunctionTool("add", "Add", lambda a, b: a + b, object_of(a=integer(), b=integer()))
        assert await tool.execute(a=1, b=2) == 3

    async def test_async_callable(self):
        async def fetch(url):
            return {"url": url}

        tool = FunctionTool("fetch", "Fetch", fetch, {"type": "object", "properties": {
            "url": {"type": "string"},
        }, "required": ["url"]})
        assert await tool.execute(url="http://x") == {"url": "http://x"}
        assert tool.parameters.properties["url"].kind == "string"

    async def test_pydantic_parameters_validated(self):
        received = {}

        def search(**kwargs):
            received.update(kwargs)

        tool = FunctionTool("search", "Search", search, SearchParams)
        await tool.execute(query="cats", count="5")

        assert received["count"] == 5
        assert received["mode"] == "web"
        assert tool.parameters.properties["query"].required

    def test_bad_schema_type(self):
        with pytest.raises(TypeError):
            coerce_schema(42)


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

class TestSchemaNode:
    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            SchemaNode("date")

    def test_enum_needs_values(self):
        with pytest.raises(ValueError):
            SchemaNode("enum")

    def test_array_needs_items(self):
        with pytest.raises(ValueError):
            SchemaNode("array")

    def test_json_schema_rendering(self):
        node = object_of(
            "Options",
            name=string("Name", min_length=1),
            ratio=number("Ratio", minimum=0, maximum=1),
            tags=array(string(), "Tags", min_items=1, required=False),
            color=enum_of(["red", "green"], "Color"),
        )
        out = to_json_schema(node)

        assert out["description"] == "Options"
        assert out["required"] == ["name", "ratio", "color"]
        assert out["properties"]["name"]["minLength"] == 1
        assert out["properties"]["ratio"]["maximum"] == 1
        assert out["properties"]["tags"] == {
            "type": "array", "items": {"type": "string"}, "minItems": 1, "description": "Tags",
        }
        assert out["properties"]["color"]["enum"] == ["red", "green"]

    def test_gemini_enum(self):
        tool = FunctionTool("paint", "Paint", lambda color: color,
                            object_of(color=enum_of(["red", "green"])))
        color = tool.to_gemini_schema()["parameters"]["properties"]["color"]
        assert color == {"type": "STRING", "format": "enum", "enum": ["red", "green"]}


class TestSchemaFromModel:
    def test_fields(self):
        node = schema_from_model(SearchParams)
        props = node.properties

        assert node.kind == "object"
        assert props["query"].kind == "string"
        assert props["query"].description == "Search terms"
        assert props["count"].kind == "integer"
        assert props["count"].minimum == 1
        assert props["count"].maximum == 20
        assert props["count"].required is False
        assert props["safe"].kind == "boolean"
        assert props["mode"].kind == "enum"
        assert props["mode"].values == ["web", "news"]
        assert props["tags"].kind == "array"
        assert node.required_names == ["query"]

    def test_nested_model_ref(self):
        class Inner(BaseModel):
            x: int

        class Outer(BaseModel):
            inner: Inner = Field(description="Nested")

        node = schema_from_model(Outer)
        inner = node.properties["inner"]
        assert inner.kind == "object"
        assert inner.description == "Nested"
        assert inner.properties["x"].kind == "integer"

    def test_from_json_unknown_type(self):
        node = schema_from_json({"type": "object", "properties": {"when": {"type": "null"}}})
        assert node.properties["when"].kind == "string"
