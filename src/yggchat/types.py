"""Shared data types for the yggchat generation engine."""

from __future__ import annotations

import enum
import itertools
import json
import time
from dataclasses import dataclass, field
from typing import Any


# ---------------------------------------------------------------------------
# Conversation types
# ---------------------------------------------------------------------------

@dataclass
class ConversationMessage:
    """One message of the history sent to the provider."""

    role: str  # user, assistant, system
    content: str

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role, "content": self.content}


@dataclass
class Attachment:
    """Image attachment added to the last user message of the first step."""

    file_path: str
    mime_type: str = "image/jpeg"


# ---------------------------------------------------------------------------
# Stream types
# ---------------------------------------------------------------------------

class DeltaKind(enum.Enum):
    """Normalized kind of a streamed fragment."""

    TEXT = "text"
    REASONING = "reasoning"
    TOOL_CALL = "tool_call"
    ERROR = "error"


@dataclass
class ClassifiedDelta:
    """A streamed fragment after provider-specific fields are stripped."""

    kind: DeltaKind
    text: str = ""
    tool_call_id: str | None = None
    tool_name: str | None = None


@dataclass
class RawChunk:
    """Provider-neutral unit yielded by a provider stream.

    ``fragments`` hold the content deltas of the chunk in a neutral shape
    (``{"type": ..., "delta": ...}``), ``usage`` the provider's usage report
    when the chunk carried one.
    """

    fragments: list[dict[str, Any]] = field(default_factory=list)
    usage: dict[str, Any] | None = None
    finish_reason: str | None = None


@dataclass
class StreamChunk:
    """Payload handed to the output callback."""

    part: str  # text, reasoning, tool_call, error
    delta: str

    def to_json(self) -> str:
        return json.dumps({"part": self.part, "delta": self.delta})


# ---------------------------------------------------------------------------
# Tool call types
# ---------------------------------------------------------------------------

@dataclass
class ToolCallRecord:
    """A tool invocation being reassembled from stream deltas."""

    id: str
    name: str
    arguments_buffer: str = ""
    resolved: bool = False
    order: int = 0

    @property
    def arguments(self) -> str:
        return self.arguments_buffer

    def to_json(self) -> str:
        return json.dumps({
            "id": self.id,
            "name": self.name,
            "arguments": self.arguments_buffer,
        })


# ---------------------------------------------------------------------------
# Usage types
# ---------------------------------------------------------------------------

@dataclass
class UsageSnapshot:
    """Token counts and derived cost for one step or a running total."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    reasoning_tokens: int = 0
    cost_usd: float = 0.0
    provider_credits: float = 0.0
    estimated: bool = False

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens + self.reasoning_tokens

    def __add__(self, other: UsageSnapshot) -> UsageSnapshot:
        return UsageSnapshot(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            reasoning_tokens=self.reasoning_tokens + other.reasoning_tokens,
            cost_usd=self.cost_usd + other.cost_usd,
            provider_credits=self.provider_credits + other.provider_credits,
            estimated=self.estimated or other.estimated,
        )


@dataclass(frozen=True)
class PricingEntry:
    """Per-model rates, immutable so cache swaps are atomic."""

    prompt_rate_per_1k: float
    completion_rate_per_1k: float
    reasoning_rate_per_1k: float | None = None
    cached_at: float = field(default_factory=time.time)


# ---------------------------------------------------------------------------
# Run types
# ---------------------------------------------------------------------------

class RunPhase(enum.Enum):
    """States of one orchestration run."""

    IDLE = "idle"
    STREAMING = "streaming"
    TOOL_EXECUTION = "tool_execution"
    RETRYING = "retrying"
    DONE = "done"
    ABORTED = "aborted"
    FAILED = "failed"


@dataclass
class RunState:
    """Mutable state of exactly one orchestration invocation."""

    run_id: str = ""
    conversation_messages: list[ConversationMessage] = field(default_factory=list)
    step_count: int = 0
    totals: UsageSnapshot = field(default_factory=UsageSnapshot)
    cost_already_logged: bool = False
    aborted: bool = False
    phase: RunPhase = RunPhase.IDLE
    # Per-step scratch, reset at the start of each step
    step_usage: UsageSnapshot | None = None
    step_text: str = ""

    def begin_step(self) -> None:
        self.step_usage = None
        self.step_text = ""
        self.cost_already_logged = False


@dataclass
class RunResult:
    """Out-of-band result of a run."""

    usage: UsageSnapshot
    phase: RunPhase
    steps: int
    conversation_messages: list[ConversationMessage] = field(default_factory=list)
    run_id: str = ""


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------

_EVENT_SEQ = itertools.count()


class EventType(enum.Enum):
    """Lifecycle events emitted by the engine."""

    RUN_STARTED = "run.started"
    RUN_DONE = "run.done"
    RUN_ABORTED = "run.aborted"
    RUN_FAILED = "run.failed"

    STEP_STARTED = "step.started"
    STEP_RETRY_WITHOUT_TOOLS = "step.retry_without_tools"

    TOOL_EXECUTING = "tool.executing"
    TOOL_EXECUTED = "tool.executed"

    USAGE_RECORDED = "usage.recorded"


@dataclass
class GenerationEvent:
    """Event emitted through the EventBus."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
    run_id: str | None = None
    seq: int = field(default_factory=lambda: next(_EVENT_SEQ))
