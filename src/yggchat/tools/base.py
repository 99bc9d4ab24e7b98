"""Tool definitions for the generation engine."""

from __future__ import annotations

import inspect
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import Any, Callable

from pydantic import BaseModel

from yggchat.tools.schema import (
    SchemaNode,
    object_of,
    schema_from_json,
    schema_from_model,
    to_anthropic_tool,
    to_gemini_declaration,
    to_openai_tool,
)


@dataclass
class ToolResult:
    """Structured result returned by the built-in tools."""

    success: bool
    output: str = ""
    error: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        if not data["metadata"]:
            del data["metadata"]
        if not data["error"]:
            del data["error"]
        return data


class Tool(ABC):
    """Base class for all tools.

    Subclasses set ``name``, ``description`` and ``parameters`` as class
    attributes and implement the async ``execute()`` method.  Whatever
    ``execute()`` returns is serialized to JSON and fed back to the model.
    """

    name: str
    description: str
    parameters: SchemaNode = object_of()
    enabled: bool = True
    max_output: int = 0  # Serialized result limit (chars), 0 = unlimited

    @abstractmethod
    async def execute(self, **kwargs: Any) -> Any:
        """Execute the tool asynchronously."""

    def to_openai_schema(self) -> dict[str, Any]:
        return to_openai_tool(self)

    def to_anthropic_schema(self) -> dict[str, Any]:
        return to_anthropic_tool(self)

    def to_gemini_schema(self) -> dict[str, Any]:
        return to_gemini_declaration(self)


def coerce_schema(parameters: SchemaNode | type[BaseModel] | dict[str, Any] | None) -> SchemaNode:
    """Accept any supported parameter description and return a ``SchemaNode``."""
    if parameters is None:
        return object_of()
    if isinstance(parameters, SchemaNode):
        return parameters
    if isinstance(parameters, type) and issubclass(parameters, BaseModel):
        return schema_from_model(parameters)
    if isinstance(parameters, dict):
        return schema_from_json(parameters)
    raise TypeError(f"Unsupported parameter schema: {type(parameters).__name__}")


class FunctionTool(Tool):
    """Wrap a plain (sync or async) callable as a tool.

    When *parameters* is a pydantic model, arguments are validated through
    it before *fn* is called.
    """

    def __init__(
        self,
        name: str,
        description: str,
        fn: Callable[..., Any],
        parameters: SchemaNode | type[BaseModel] | dict[str, Any] | None = None,
        enabled: bool = True,
        max_output: int = 0,
    ) -> None:
        self.name = name
        self.description = description
        self.parameters = coerce_schema(parameters)
        self.enabled = enabled
        self.max_output = max_output
        self._fn = fn
        self._model: type[BaseModel] | None = None
        if isinstance(parameters, type) and issubclass(parameters, BaseModel):
            self._model = parameters

    async def execute(self, **kwargs: Any) -> Any:
        if self._model is not None:
            kwargs = self._model.model_validate(kwargs).model_dump()
        result = self._fn(**kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result
