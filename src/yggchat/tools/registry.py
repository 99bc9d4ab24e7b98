"""Tool registry with plugin discovery."""

from __future__ import annotations

import logging
from importlib.metadata import entry_points
from typing import Any

from yggchat.tools.base import Tool
from yggchat.tools.schema import PROVIDER_FORMATS

_logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "yggchat.tools"


class ToolRegistry:
    """Registry of available tools, keyed by unique name.

    The registry is read-only while a run is in progress; register and
    toggle tools between runs.
    """

    def __init__(self, tools: list[Tool] | None = None) -> None:
        self._tools: dict[str, Tool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            _logger.warning("Replacing already registered tool: %s", tool.name)
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def get_enabled(self, name: str) -> Tool | None:
        """Look up a tool by name, ignoring disabled ones."""
        tool = self._tools.get(name)
        if tool is None or not tool.enabled:
            return None
        return tool

    def set_enabled(self, name: str, enabled: bool) -> None:
        tool = self._tools.get(name)
        if tool is None:
            raise KeyError(name)
        tool.enabled = enabled

    def list_tools(self) -> list[Tool]:
        return list(self._tools.values())

    def enabled_tools(self) -> list[Tool]:
        return [t for t in self._tools.values() if t.enabled]

    def tool_names(self) -> list[str]:
        return list(self._tools.keys())

    def provider_specs(self, fmt: str = "openai") -> list[dict[str, Any]]:
        """Tool specs of all enabled tools in a provider's format."""
        try:
            adapter = PROVIDER_FORMATS[fmt]
        except KeyError:
            raise ValueError(f"Unknown tool format: {fmt}") from None
        return [adapter(t) for t in self.enabled_tools()]

    def discover(self) -> None:
        """Load tools from the ``yggchat.tools`` entry point group.

        Each entry point may be a ``Tool`` subclass, a ``Tool`` instance or
        a factory returning one.
        """
        for ep in entry_points(group=ENTRY_POINT_GROUP):
            try:
                obj = ep.load()
                if isinstance(obj, type) and issubclass(obj, Tool):
                    tool = obj()
                elif isinstance(obj, Tool):
                    tool = obj
                elif callable(obj):
                    tool = obj()
                else:
                    tool = obj
                if not isinstance(tool, Tool):
                    _logger.warning(
                        "Entry point %s did not return a Tool: %s", ep.name, type(tool),
                    )
                    continue
                self.register(tool)
                _logger.info("Discovered plugin tool: %s", tool.name)
            except Exception:
                _logger.exception("Failed to load tool plugin: %s", ep.name)
