"""Exception types raised by the generation engine."""

from __future__ import annotations


class YggChatError(Exception):
    """Base class for engine errors."""


class GenerationAborted(YggChatError):
    """Raised inside a step when the cancellation flag is observed."""

    def __init__(self, message: str = "Generation aborted by user") -> None:
        super().__init__(message)


class GenerationError(YggChatError):
    """Terminal failure of a run, raised after the error chunk is emitted."""


class ProviderError(YggChatError):
    """Error reported by a provider for a streaming request."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status

    @property
    def is_tool_unsupported(self) -> bool:
        """True when the provider rejected the request because the model
        cannot use tools."""
        msg = self.message
        if self.status == 404 and "tool use" in msg:
            return True
        if self.status == 400 and "Provider returned error" in msg:
            return True
        return "No endpoints found that support tool use" in msg


class ToolNotFound(YggChatError):
    """No enabled tool is registered under the requested name."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Tool '{name}' not found or not enabled")
        self.name = name


class ArgumentParseError(YggChatError):
    """Tool-call arguments are not valid JSON."""

    def __init__(self, name: str, raw: str, reason: str) -> None:
        super().__init__(f"Invalid arguments for tool '{name}': {reason}")
        self.name = name
        self.raw = raw
