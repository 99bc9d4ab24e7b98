"""Tool system for yggchat."""

from yggchat.tools.base import FunctionTool, Tool, ToolResult
from yggchat.tools.registry import ToolRegistry
from yggchat.tools.schema import SchemaNode

__all__ = ["FunctionTool", "SchemaNode", "Tool", "ToolRegistry", "ToolResult"]
