"""StepLoopController: drives one generation run to completion.

    request -> stream -> classify -> (tool calls -> execute -> request) | done

Each step is one streaming request.  Text and reasoning deltas go to the
output callback as they arrive, tool-call deltas are reassembled by the
``ToolCallAccumulator``, and resolved calls are executed before the next
step.  Usage is flushed once per step.  Cancellation is checked before
each request, and every stream read is raced against the cancel token.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Mapping

from yggchat.accounting import UsageAccountant, estimate_usage, usage_from_provider
from yggchat.config import GenerationSpec
from yggchat.core.accumulator import DEFAULT_SEARCH_TOOLS, ToolCallAccumulator, deduplicate
from yggchat.core.attachments import with_image_attachments
from yggchat.core.cancellation import CancellationController, CancellationToken
from yggchat.core.executor import ToolExecutor, describe_tool_call
from yggchat.errors import GenerationAborted, GenerationError, ProviderError
from yggchat.events.bus import EventBus
from yggchat.llm.client import ProviderStream
from yggchat.llm.deltas import classify_delta
from yggchat.llm.pricing import PricingCache
from yggchat.sinks import CostSink, LoggingCostSink
from yggchat.tools.registry import ToolRegistry
from yggchat.types import (
    Attachment,
    ConversationMessage,
    DeltaKind,
    EventType,
    GenerationEvent,
    RawChunk,
    RunPhase,
    RunResult,
    RunState,
    StreamChunk,
    ToolCallRecord,
)

_logger = logging.getLogger(__name__)

Emit = Callable[[StreamChunk], "Awaitable[None] | None"]

TOOL_PLACEHOLDER = "I need to use some tools to help you."
MAX_STEPS_MESSAGE = "Maximum steps reached"
_FINISH_REASONS = ("stop", "length")


@dataclass
class GenerationOptions:
    """Per-run options."""

    model: str
    max_steps: int = 400
    thinking_enabled: bool = False
    cancel_token: CancellationToken | None = None
    attachments: list[Attachment] = field(default_factory=list)
    tool_detail: bool = False
    max_tokens: int | None = 100000
    reasoning_max_tokens: int | None = 30000
    retry_max_tokens: int | None = 4000
    retry_reasoning_max_tokens: int | None = 10000
    user_id: str | None = None
    message_id: str | None = None
    tool_format: str = "openai"
    search_tools: tuple[str, ...] = DEFAULT_SEARCH_TOOLS

    @classmethod
    def from_spec(cls, model: str, spec: GenerationSpec, **overrides: Any) -> GenerationOptions:
        """Build options from the ``generation`` config section."""
        values: dict[str, Any] = {
            "model": model,
            "max_steps": spec.max_steps,
            "thinking_enabled": spec.thinking,
            "tool_detail": spec.tool_detail,
            "max_tokens": spec.max_tokens,
            "reasoning_max_tokens": spec.reasoning_max_tokens,
            "retry_max_tokens": spec.retry_max_tokens,
            "retry_reasoning_max_tokens": spec.retry_reasoning_max_tokens,
        }
        values.update(overrides)
        return cls(**values)


def _to_message(msg: ConversationMessage | Mapping[str, Any]) -> ConversationMessage:
    if isinstance(msg, ConversationMessage):
        return ConversationMessage(msg.role, msg.content)
    return ConversationMessage(str(msg["role"]), str(msg.get("content") or ""))


class StepLoopController:
    """Orchestrates the multi-step generation loop.

    Parameters
    ----------
    provider:
        Streaming provider yielding ``RawChunk`` objects.
    pricing:
        Shared pricing cache (optional).  Without it tokens are counted but
        no USD cost is computed.
    cost_sink:
        Receives the final usage of runs that carry a user and message id.
    event_bus:
        Event bus for lifecycle events (optional).
    attachment_dir:
        Base directory for relative attachment paths.
    """

    def __init__(
        self,
        provider: ProviderStream,
        pricing: PricingCache | None = None,
        cost_sink: CostSink | None = None,
        event_bus: EventBus | None = None,
        attachment_dir: str | None = None,
    ) -> None:
        self._provider = provider
        self._pricing = pricing
        self._cost_sink = cost_sink or LoggingCostSink()
        self._event_bus = event_bus or EventBus()
        self._attachment_dir = attachment_dir

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    async def run(
        self,
        messages: Iterable[ConversationMessage | Mapping[str, Any]],
        registry: ToolRegistry | None,
        emit: Emit,
        options: GenerationOptions,
    ) -> RunResult:
        """Run the step loop until done, aborted or failed.

        Raises
        ------
        GenerationError
            When the provider fails with anything other than a
            tool-unsupported rejection, or when the retry without tools
            fails.  An ``error`` chunk has already been emitted.
        asyncio.CancelledError
            When the task running the loop is cancelled.  Usage of the
            interrupted step is flushed first.  A token abort returns
            normally with phase ``ABORTED``.
        """
        registry = registry or ToolRegistry()
        state = RunState(
            conversation_messages=[_to_message(m) for m in messages],
            run_id=options.message_id or uuid.uuid4().hex,
        )
        cancel = CancellationController(options.cancel_token)
        accountant = UsageAccountant(options.model, self._pricing)
        executor = ToolExecutor(registry, self._event_bus, state.run_id)
        tools = registry.provider_specs(options.tool_format) if registry.enabled_tools() else None

        await self._emit_event(state, EventType.RUN_STARTED, {
            "model": options.model,
            "messages": len(state.conversation_messages),
            "tools": len(tools or []),
        })

        try:
            while True:
                if cancel.is_set:
                    raise GenerationAborted()
                if state.step_count >= options.max_steps:
                    _logger.warning("Run stopped after %d steps", state.step_count)
                    await self._emit_chunk(emit, "error", MAX_STEPS_MESSAGE)
                    state.phase = RunPhase.FAILED
                    break

                state.step_count += 1
                state.begin_step()
                state.phase = RunPhase.STREAMING
                cancel.arm()
                await self._emit_event(state, EventType.STEP_STARTED, {"step": state.step_count})

                request_messages = [m.to_dict() for m in state.conversation_messages]
                if state.step_count == 1:
                    request_messages = with_image_attachments(
                        request_messages, options.attachments, self._attachment_dir,
                    )

                records, retried = await self._run_step(
                    state, request_messages, tools, options, cancel, accountant, emit,
                )

                if retried or not records:
                    if state.step_text:
                        state.conversation_messages.append(
                            ConversationMessage("assistant", state.step_text),
                        )
                    state.phase = RunPhase.DONE
                    break

                state.phase = RunPhase.TOOL_EXECUTION
                await self._execute_tools(state, records, executor, cancel)

        except GenerationAborted:
            state.aborted = True
            state.phase = RunPhase.ABORTED
            _logger.info("Generation aborted after %d step(s)", state.step_count)
        except asyncio.CancelledError:
            # Step usage was flushed in _run_step; the cancellation propagates
            state.aborted = True
            state.phase = RunPhase.ABORTED
            _logger.info("Generation task cancelled after %d step(s)", state.step_count)
            raise
        except Exception as e:
            state.phase = RunPhase.FAILED
            if not isinstance(e, ProviderError):
                _logger.exception("Generation error")
            else:
                _logger.error("Provider error (status=%s): %s", e.status, e)
            await self._emit_chunk(emit, "error", str(e) or type(e).__name__)
            raise GenerationError(str(e) or type(e).__name__) from e
        finally:
            cancel.disarm()
            await self._finish(state, options)

        return RunResult(
            usage=state.totals,
            phase=state.phase,
            steps=state.step_count,
            conversation_messages=state.conversation_messages,
            run_id=state.run_id,
        )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _run_step(
        self,
        state: RunState,
        request_messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None,
        options: GenerationOptions,
        cancel: CancellationController,
        accountant: UsageAccountant,
        emit: Emit,
    ) -> tuple[list[ToolCallRecord], bool]:
        """Stream one step and flush its usage.

        Returns the tool calls to execute and whether the step had to be
        retried without tools.
        """
        async def flush() -> None:
            await self._flush_usage(state, request_messages, accountant)

        try:
            try:
                records = await self._stream(state, request_messages, tools, options, cancel, emit)
                return records, False
            except ProviderError as e:
                if not (tools and e.is_tool_unsupported):
                    raise
                _logger.warning(
                    "Model %s rejected tool use (status=%s), retrying without tools: %s",
                    options.model, e.status, e,
                )
                await self._retry_without_tools(state, request_messages, options, cancel, emit, e)
                return [], True
        except (GenerationAborted, asyncio.CancelledError):
            state.aborted = True
            await cancel.flush_once(state, flush)
            raise
        finally:
            await cancel.flush_once(state, flush)

    async def _stream(
        self,
        state: RunState,
        request_messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None,
        options: GenerationOptions,
        cancel: CancellationController,
        emit: Emit,
    ) -> list[ToolCallRecord]:
        accumulator = ToolCallAccumulator()
        announced: set[str] = set()

        cancel.check()
        stream = self._provider.stream(
            request_messages,
            options.model,
            tools=tools,
            max_tokens=options.max_tokens,
            reasoning_max_tokens=options.reasoning_max_tokens if options.thinking_enabled else None,
        )
        try:
            iterator = stream.__aiter__()
            while True:
                try:
                    chunk = await cancel.next_chunk(iterator)
                except StopAsyncIteration:
                    break
                cancel.check()
                self._record_chunk_usage(state, chunk)

                for fragment in chunk.fragments:
                    delta = classify_delta(fragment)
                    if delta is None:
                        continue
                    if delta.kind is DeltaKind.TEXT:
                        state.step_text += delta.text
                        await self._emit_chunk(emit, "text", delta.text)
                    elif delta.kind is DeltaKind.REASONING:
                        if options.thinking_enabled:
                            await self._emit_chunk(emit, "reasoning", delta.text)
                    elif delta.kind is DeltaKind.TOOL_CALL:
                        record = accumulator.feed(delta.tool_call_id, delta.tool_name, delta.text)
                        if record is not None and record.id not in announced:
                            announced.add(record.id)
                            await self._announce(emit, record, options.tool_detail)
                    else:
                        raise ProviderError(delta.text)

                if chunk.finish_reason in _FINISH_REASONS:
                    break
        finally:
            await _aclose(stream)

        records = accumulator.finalize(state.step_text, options.search_tools)
        for record in records:
            if record.id not in announced:
                announced.add(record.id)
                await self._announce(emit, record, options.tool_detail)
        return records

    async def _retry_without_tools(
        self,
        state: RunState,
        request_messages: list[dict[str, Any]],
        options: GenerationOptions,
        cancel: CancellationController,
        emit: Emit,
        error: ProviderError,
    ) -> None:
        """Reissue the current step without tools; its text ends the run."""
        state.phase = RunPhase.RETRYING
        await self._emit_event(state, EventType.STEP_RETRY_WITHOUT_TOOLS, {
            "step": state.step_count,
            "error": str(error),
        })

        state.step_text = ""
        cancel.check()
        stream = self._provider.stream(
            request_messages,
            options.model,
            tools=None,
            max_tokens=options.retry_max_tokens,
            reasoning_max_tokens=(
                options.retry_reasoning_max_tokens if options.thinking_enabled else None
            ),
        )
        try:
            iterator = stream.__aiter__()
            while True:
                try:
                    chunk = await cancel.next_chunk(iterator)
                except StopAsyncIteration:
                    break
                cancel.check()
                self._record_chunk_usage(state, chunk)
                for fragment in chunk.fragments:
                    delta = classify_delta(fragment)
                    if delta is None:
                        continue
                    if delta.kind is DeltaKind.TEXT:
                        state.step_text += delta.text
                        await self._emit_chunk(emit, "text", delta.text)
                    elif delta.kind is DeltaKind.ERROR:
                        raise ProviderError(delta.text)
                if chunk.finish_reason in _FINISH_REASONS:
                    break
        finally:
            await _aclose(stream)

    async def _execute_tools(
        self,
        state: RunState,
        records: list[ToolCallRecord],
        executor: ToolExecutor,
        cancel: CancellationController,
    ) -> None:
        unique = deduplicate(records)
        _logger.info(
            "Step %d: executing %d unique tool call(s): %s",
            state.step_count, len(unique), ", ".join(r.name for r in unique),
        )
        state.conversation_messages.append(
            ConversationMessage("assistant", state.step_text or TOOL_PLACEHOLDER),
        )
        for record in unique:
            cancel.check()
            result = await executor.execute_safely(record.name, record.arguments)
            _logger.debug("Tool %s result: %s", record.name, result[:200])
            state.conversation_messages.append(
                ConversationMessage("user", f"Tool {record.name} result: {result}"),
            )

    # ------------------------------------------------------------------
    # Usage
    # ------------------------------------------------------------------

    @staticmethod
    def _record_chunk_usage(state: RunState, chunk: RawChunk) -> None:
        if chunk.usage:
            state.step_usage = usage_from_provider(chunk.usage)

    async def _flush_usage(
        self,
        state: RunState,
        request_messages: list[dict[str, Any]],
        accountant: UsageAccountant,
    ) -> None:
        usage = state.step_usage
        if usage is None and (state.step_text or state.aborted):
            usage = estimate_usage(request_messages, state.step_text)
            _logger.info("No usage reported for step %d, using estimate", state.step_count)
        if usage is None:
            return
        try:
            state.totals = await accountant.record(usage)
        except Exception:
            _logger.exception("Error recording usage for step %d", state.step_count)
            return
        await self._emit_event(state, EventType.USAGE_RECORDED, {
            "step": state.step_count,
            "prompt_tokens": usage.prompt_tokens,
            "completion_tokens": usage.completion_tokens,
            "reasoning_tokens": usage.reasoning_tokens,
            "estimated": usage.estimated,
            "total_cost_usd": state.totals.cost_usd,
            "total_credits": state.totals.provider_credits,
        })

    async def _finish(self, state: RunState, options: GenerationOptions) -> None:
        totals = state.totals
        if options.user_id and options.message_id and totals.total_tokens > 0:
            try:
                await self._cost_sink.save(options.user_id, options.message_id, totals)
            except Exception:
                _logger.exception(
                    "Error saving usage for user %s message %s",
                    options.user_id, options.message_id,
                )

        done_type = {
            RunPhase.DONE: EventType.RUN_DONE,
            RunPhase.ABORTED: EventType.RUN_ABORTED,
        }.get(state.phase, EventType.RUN_FAILED)
        await self._emit_event(state, done_type, {
            "steps": state.step_count,
            "total_tokens": totals.total_tokens,
            "cost_usd": totals.cost_usd,
            "credits": totals.provider_credits,
            "estimated": totals.estimated,
        })

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    async def _announce(self, emit: Emit, record: ToolCallRecord, tool_detail: bool) -> None:
        if tool_detail:
            text = record.to_json()
        else:
            text = describe_tool_call(record.name, record.arguments)
        await self._emit_chunk(emit, "tool_call", text + "\n")

    @staticmethod
    async def _emit_chunk(emit: Emit, part: str, delta: str) -> None:
        result = emit(StreamChunk(part=part, delta=delta))
        if inspect.isawaitable(result):
            await result

    async def _emit_event(self, state: RunState, event_type: EventType, data: dict[str, Any]) -> None:
        await self._event_bus.emit(
            GenerationEvent(type=event_type, data=data, run_id=state.run_id),
        )


async def _aclose(stream: Any) -> None:
    aclose = getattr(stream, "aclose", None)
    if aclose is not None:
        await aclose()
