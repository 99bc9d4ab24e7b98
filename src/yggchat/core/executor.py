"""ToolExecutor: runs a resolved tool call and serializes its result."""

from __future__ import annotations

import dataclasses
import json
import logging
from typing import Any

from yggchat.errors import ArgumentParseError, ToolNotFound
from yggchat.events.bus import EventBus
from yggchat.tools.base import ToolResult
from yggchat.tools.registry import ToolRegistry
from yggchat.types import EventType, GenerationEvent

_logger = logging.getLogger(__name__)


def _smart_truncate(text: str, max_length: int) -> str:
    """Keep head and tail, replacing the middle with a marker."""
    if len(text) <= max_length:
        return text
    head_size = max_length // 4
    tail_size = max_length - head_size
    omitted = len(text) - max_length
    return (
        text[:head_size]
        + f"\n\n... [{omitted} chars truncated] ...\n\n"
        + text[-tail_size:]
    )


def serialize_result(result: Any) -> str:
    """JSON-encode a tool's return value."""
    if isinstance(result, ToolResult):
        result = result.to_dict()
    elif dataclasses.is_dataclass(result) and not isinstance(result, type):
        result = dataclasses.asdict(result)
    elif hasattr(result, "model_dump"):
        result = result.model_dump()
    return json.dumps(result, default=str)


def parse_arguments(name: str, args_json: str) -> dict[str, Any]:
    """Parse tool-call arguments; empty text means no arguments."""
    if not args_json or not args_json.strip():
        return {}
    try:
        args = json.loads(args_json)
    except json.JSONDecodeError as e:
        raise ArgumentParseError(name, args_json, str(e)) from e
    if not isinstance(args, dict):
        raise ArgumentParseError(name, args_json, "expected a JSON object")
    return args


class ToolExecutor:
    """Looks up enabled tools and invokes them.

    Usage::

        executor = ToolExecutor(registry)
        result_json = await executor.execute("echo", '{"x": 1}')
    """

    def __init__(
        self,
        registry: ToolRegistry,
        event_bus: EventBus | None = None,
        run_id: str | None = None,
    ) -> None:
        self._registry = registry
        self._event_bus = event_bus
        self._run_id = run_id

    async def execute(self, name: str, args_json: str) -> str:
        """Run tool *name* with JSON arguments and return the JSON result.

        Raises ``ToolNotFound`` for unknown or disabled tools and
        ``ArgumentParseError`` for malformed arguments.  Exceptions raised
        by the tool itself propagate.
        """
        tool = self._registry.get_enabled(name)
        if tool is None:
            raise ToolNotFound(name)
        args = parse_arguments(name, args_json)

        await self._emit(EventType.TOOL_EXECUTING, {"tool": name, "arguments": args})
        result = serialize_result(await tool.execute(**args))
        if tool.max_output > 0:
            result = _smart_truncate(result, tool.max_output)
        await self._emit(EventType.TOOL_EXECUTED, {
            "tool": name,
            "output_length": len(result),
        })
        return result

    async def execute_safely(self, name: str, args_json: str) -> str:
        """Like ``execute`` but every failure becomes an inline error string."""
        try:
            return await self.execute(name, args_json)
        except (ToolNotFound, ArgumentParseError) as e:
            _logger.warning("Tool call rejected: %s", e)
            return f"Error: {e}"
        except Exception as e:
            _logger.warning("Tool '%s' raised: %s: %s", name, type(e).__name__, e)
            await self._emit(EventType.TOOL_EXECUTED, {"tool": name, "error": str(e)})
            return f"Error executing tool: {e}"

    async def _emit(self, event_type: EventType, data: dict[str, Any]) -> None:
        if self._event_bus:
            await self._event_bus.emit(
                GenerationEvent(type=event_type, data=data, run_id=self._run_id),
            )


# ---------------------------------------------------------------------------
# User-facing descriptions of tool calls
# ---------------------------------------------------------------------------

def describe_tool_call(name: str, args_json: str) -> str:
    """One-line description of a tool call for the chat UI."""
    try:
        args = json.loads(args_json) if args_json.strip() else {}
    except json.JSONDecodeError:
        return f"🔧 Using tool: {name}"
    if not isinstance(args, dict):
        return f"🔧 Using tool: {name}"

    if name == "brave_search":
        return f"🔍 Searching the web for: {args.get('query') or 'unknown'}"
    if name == "browse_web":
        return f"🌐 Surfing the web to: {args.get('url') or 'unknown URL'}"
    if name == "read_file":
        return f"📄 Reading file: {args.get('path') or 'unknown file'}"
    if name == "read_files":
        count = len(args.get("paths") or [])
        return f"📚 Reading {count} file{'' if count == 1 else 's'}"
    if name == "directory":
        return f"📁 Exploring directory: {args.get('path') or 'unknown path'}"
    if name == "search_history":
        return f"🔎 Searching chat history for: {args.get('query') or 'unknown'}"
    return f"🔧 Using tool: {name}"
