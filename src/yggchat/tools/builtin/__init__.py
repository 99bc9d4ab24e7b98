"""Built-in tools for yggchat."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from yggchat.config import ToolsSpec
    from yggchat.tools.registry import ToolRegistry


def register_builtins(registry: ToolRegistry, spec: ToolsSpec | None = None) -> None:
    """Register the built-in tools; those not listed in *spec* start disabled."""
    from yggchat.tools.builtin.file_ops import DirectoryTool, ReadFilesTool, ReadFileTool
    from yggchat.tools.builtin.search import BraveSearchTool

    tools = [
        ReadFileTool(),
        ReadFilesTool(),
        DirectoryTool(),
        BraveSearchTool(api_key_env=spec.brave_api_key_env if spec else "BRAVE_API_KEY"),
    ]
    for tool in tools:
        if spec is not None:
            tool.enabled = tool.name in spec.enabled
        registry.register(tool)
