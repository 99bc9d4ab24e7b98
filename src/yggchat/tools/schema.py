"""Format-agnostic tool parameter schema and per-provider adapters.

Tools describe their parameters with a small closed set of ``SchemaNode``
kinds.  Provider formats (OpenAI/OpenRouter function tools, Anthropic
``input_schema``, Gemini function declarations) are produced at the
boundary by the ``to_*`` adapters, so the registry never holds a
provider-specific shape.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pydantic import BaseModel

    from yggchat.tools.base import Tool

_logger = logging.getLogger(__name__)

SCHEMA_KINDS = ("string", "number", "integer", "boolean", "array", "enum", "object")


@dataclass
class SchemaNode:
    """One node of a tool parameter schema."""

    kind: str
    description: str = ""
    required: bool = True
    default: Any = None
    items: SchemaNode | None = None  # array
    values: list[str] | None = None  # enum
    properties: dict[str, SchemaNode] = field(default_factory=dict)  # object
    minimum: float | None = None
    maximum: float | None = None
    min_length: int | None = None
    max_length: int | None = None
    min_items: int | None = None
    max_items: int | None = None
    format: str | None = None

    def __post_init__(self) -> None:
        if self.kind not in SCHEMA_KINDS:
            raise ValueError(f"Unknown schema kind: {self.kind}")
        if self.kind == "enum" and not self.values:
            raise ValueError("enum schema needs at least one value")
        if self.kind == "array" and self.items is None:
            raise ValueError("array schema needs an items schema")

    @property
    def required_names(self) -> list[str]:
        return [name for name, node in self.properties.items() if node.required]


# ---------------------------------------------------------------------------
# Constructors
# ---------------------------------------------------------------------------

def string(description: str = "", **kwargs: Any) -> SchemaNode:
    return SchemaNode("string", description, **kwargs)


def number(description: str = "", **kwargs: Any) -> SchemaNode:
    return SchemaNode("number", description, **kwargs)


def integer(description: str = "", **kwargs: Any) -> SchemaNode:
    return SchemaNode("integer", description, **kwargs)


def boolean(description: str = "", **kwargs: Any) -> SchemaNode:
    return SchemaNode("boolean", description, **kwargs)


def array(items: SchemaNode, description: str = "", **kwargs: Any) -> SchemaNode:
    return SchemaNode("array", description, items=items, **kwargs)


def enum_of(values: list[str], description: str = "", **kwargs: Any) -> SchemaNode:
    return SchemaNode("enum", description, values=list(values), **kwargs)


def object_of(description: str = "", **properties: SchemaNode) -> SchemaNode:
    return SchemaNode("object", description, properties=dict(properties))


# ---------------------------------------------------------------------------
# Adapters: internal -> provider
# ---------------------------------------------------------------------------

def to_json_schema(node: SchemaNode) -> dict[str, Any]:
    """Render *node* as JSON Schema (OpenAI, OpenRouter, Anthropic)."""
    out: dict[str, Any]
    if node.kind == "enum":
        out = {"type": "string", "enum": list(node.values or [])}
    elif node.kind == "array":
        assert node.items is not None
        out = {"type": "array", "items": to_json_schema(node.items)}
        if node.min_items is not None:
            out["minItems"] = node.min_items
        if node.max_items is not None:
            out["maxItems"] = node.max_items
    elif node.kind == "object":
        out = {
            "type": "object",
            "properties": {
                name: to_json_schema(child) for name, child in node.properties.items()
            },
        }
        required = node.required_names
        if required:
            out["required"] = required
    else:
        out = {"type": node.kind}
        if node.min_length is not None:
            out["minLength"] = node.min_length
        if node.max_length is not None:
            out["maxLength"] = node.max_length
        if node.minimum is not None:
            out["minimum"] = node.minimum
        if node.maximum is not None:
            out["maximum"] = node.maximum
        if node.format:
            out["format"] = node.format

    if node.description:
        out["description"] = node.description
    if node.default is not None:
        out["default"] = node.default
    return out


def to_openai_tool(tool: Tool) -> dict[str, Any]:
    """OpenAI / OpenRouter ``tools[]`` entry."""
    return {
        "type": "function",
        "function": {
            "name": tool.name,
            "description": tool.description,
            "parameters": to_json_schema(tool.parameters),
        },
    }


def to_anthropic_tool(tool: Tool) -> dict[str, Any]:
    """Anthropic Messages API ``tools[]`` entry."""
    return {
        "name": tool.name,
        "description": tool.description,
        "input_schema": to_json_schema(tool.parameters),
    }


_GEMINI_TYPES = {
    "string": "STRING",
    "number": "NUMBER",
    "integer": "INTEGER",
    "boolean": "BOOLEAN",
    "array": "ARRAY",
    "object": "OBJECT",
}


def _to_gemini_schema(node: SchemaNode) -> dict[str, Any]:
    out: dict[str, Any]
    if node.kind == "enum":
        out = {"type": "STRING", "format": "enum", "enum": list(node.values or [])}
    elif node.kind == "array":
        assert node.items is not None
        out = {"type": "ARRAY", "items": _to_gemini_schema(node.items)}
    elif node.kind == "object":
        out = {
            "type": "OBJECT",
            "properties": {
                name: _to_gemini_schema(child) for name, child in node.properties.items()
            },
        }
        if node.required_names:
            out["required"] = node.required_names
    else:
        out = {"type": _GEMINI_TYPES[node.kind]}
    if node.description:
        out["description"] = node.description
    return out


def to_gemini_declaration(tool: Tool) -> dict[str, Any]:
    """Gemini ``functionDeclarations[]`` entry (no defaults, upper-case types)."""
    decl: dict[str, Any] = {"name": tool.name, "description": tool.description}
    if tool.parameters.properties:
        decl["parameters"] = _to_gemini_schema(tool.parameters)
    return decl


PROVIDER_FORMATS = {
    "openai": to_openai_tool,
    "anthropic": to_anthropic_tool,
    "gemini": to_gemini_declaration,
}


# ---------------------------------------------------------------------------
# Adapters: external schema -> internal
# ---------------------------------------------------------------------------

def schema_from_json(schema: dict[str, Any], required: bool = True) -> SchemaNode:
    """Convert a JSON Schema document into a ``SchemaNode`` tree."""
    return _from_json(schema, schema.get("$defs", {}), required)


def schema_from_model(model: type[BaseModel]) -> SchemaNode:
    """Convert a pydantic model class into a ``SchemaNode`` tree."""
    return schema_from_json(model.model_json_schema())


def _resolve(schema: dict[str, Any], defs: dict[str, Any]) -> dict[str, Any]:
    ref = schema.get("$ref")
    if ref:
        resolved = dict(defs.get(ref.rsplit("/", 1)[-1], {}))
        # Field-level description/default win over the referenced definition
        for key in ("description", "default"):
            if key in schema:
                resolved[key] = schema[key]
        return resolved
    if "allOf" in schema and len(schema["allOf"]) == 1:
        merged = {k: v for k, v in schema.items() if k != "allOf"}
        merged.update(_resolve(schema["allOf"][0], defs))
        return merged
    if "anyOf" in schema:
        # Optional[X] renders as anyOf [X, null]; keep the first real variant
        variants = [v for v in schema["anyOf"] if v.get("type") != "null"]
        if variants:
            merged = {k: v for k, v in schema.items() if k != "anyOf"}
            merged.update(_resolve(variants[0], defs))
            return merged
    return schema


def _from_json(schema: dict[str, Any], defs: dict[str, Any], required: bool) -> SchemaNode:
    schema = _resolve(schema, defs)
    description = schema.get("description", "")
    default = schema.get("default")

    if "enum" in schema:
        return SchemaNode(
            "enum", description, required=required, default=default,
            values=[str(v) for v in schema["enum"]],
        )

    kind = schema.get("type", "object" if "properties" in schema else "string")
    if kind == "object":
        required_set = set(schema.get("required", []))
        props = {
            name: _from_json(child, defs, name in required_set)
            for name, child in (schema.get("properties") or {}).items()
        }
        return SchemaNode(
            "object", description, required=required, default=default, properties=props,
        )
    if kind == "array":
        return SchemaNode(
            "array", description, required=required, default=default,
            items=_from_json(schema.get("items") or {"type": "string"}, defs, True),
            min_items=schema.get("minItems"),
            max_items=schema.get("maxItems"),
        )
    if kind in ("number", "integer"):
        return SchemaNode(
            kind, description, required=required, default=default,
            minimum=schema.get("minimum"),
            maximum=schema.get("maximum"),
        )
    if kind == "boolean":
        return SchemaNode("boolean", description, required=required, default=default)
    if kind != "string":
        _logger.debug("Unsupported schema type %r, treating as string", kind)
    return SchemaNode(
        "string", description or ("" if kind == "string" else "Unknown field type"),
        required=required, default=default,
        min_length=schema.get("minLength"),
        max_length=schema.get("maxLength"),
        format=schema.get("format"),
    )
