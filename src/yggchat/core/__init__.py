"""Core generation components for yggchat."""

from yggchat.core.accumulator import ToolCallAccumulator
from yggchat.core.cancellation import CancellationController, CancellationToken
from yggchat.core.controller import GenerationOptions, StepLoopController
from yggchat.core.executor import ToolExecutor
from yggchat.core.generations import GenerationManager

__all__ = [
    "CancellationController",
    "CancellationToken",
    "GenerationManager",
    "GenerationOptions",
    "StepLoopController",
    "ToolCallAccumulator",
    "ToolExecutor",
]
