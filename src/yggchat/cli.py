"""yggchat command line: stream chat turns through the generation engine."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

import click
from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.history import FileHistory
from rich.console import Console
from rich.table import Table

from yggchat.config import EngineConfig, load_config
from yggchat.core.controller import GenerationOptions, StepLoopController
from yggchat.core.generations import GenerationManager
from yggchat.errors import GenerationError
from yggchat.events.bus import EventBus
from yggchat.llm.client import AsyncProviderClient
from yggchat.llm.pricing import PricingCache, ProviderPricingFetcher
from yggchat.tools.builtin import register_builtins
from yggchat.tools.registry import ToolRegistry
from yggchat.types import (
    Attachment,
    ConversationMessage,
    EventType,
    GenerationEvent,
    RunPhase,
    RunResult,
    StreamChunk,
)

_logger = logging.getLogger(__name__)

console = Console()


def get_version() -> str:
    try:
        return version("yggchat")
    except PackageNotFoundError:
        return "dev"


def setup_tools(config: EngineConfig) -> ToolRegistry:
    registry = ToolRegistry()
    register_builtins(registry, config.tools)
    registry.discover()
    return registry


class StreamingDisplay:
    """Renders stream chunks and tool events to the terminal."""

    def __init__(self, con: Console):
        self.con = con
        self._streaming = False

    def handle(self, chunk: StreamChunk):
        if chunk.part == "text":
            if not self._streaming:
                self._streaming = True
                self.con.print()
            self.con.print(chunk.delta, end="", highlight=False)

        elif chunk.part == "reasoning":
            self.con.print(f"[dim italic]{chunk.delta}[/dim italic]", end="", highlight=False)

        elif chunk.part == "tool_call":
            self._flush()
            self.con.print(f"[yellow]> {chunk.delta.rstrip()}[/yellow]", highlight=False)

        elif chunk.part == "error":
            self._flush()
            self.con.print(f"[red]Error: {chunk.delta}[/red]")

    async def on_event(self, event: GenerationEvent):
        if event.type == EventType.TOOL_EXECUTED and event.data.get("error"):
            self.con.print(f"[red]  {event.data['tool']} failed: {event.data['error']}[/red]")
        elif event.type == EventType.STEP_RETRY_WITHOUT_TOOLS:
            self._flush()
            self.con.print("[magenta]~ model does not support tools, retrying without them[/magenta]")

    def summary(self, result: RunResult):
        self._flush()
        usage = result.usage
        table = Table(show_header=False, box=None, padding=(0, 1))
        table.add_column(style="dim")
        table.add_column(style="dim")
        table.add_row("steps", str(result.steps))
        table.add_row(
            "tokens",
            f"{usage.prompt_tokens} prompt / {usage.completion_tokens} completion"
            f" / {usage.reasoning_tokens} reasoning"
            + (" (estimated)" if usage.estimated else ""),
        )
        table.add_row("cost", f"${usage.cost_usd:.6f}")
        if usage.provider_credits:
            table.add_row("credits", f"{usage.provider_credits:.6f}")
        if result.phase == RunPhase.ABORTED:
            table.add_row("status", "aborted")
        self.con.print(table)

    def _flush(self):
        if self._streaming:
            self.con.print()
            self._streaming = False


async def _run_turn(
    controller: StepLoopController,
    registry: ToolRegistry,
    history: list[ConversationMessage],
    options: GenerationOptions,
    display: StreamingDisplay,
    manager: GenerationManager,
    message_id: str,
) -> RunResult | None:
    token = manager.create(message_id)
    options.cancel_token = token
    bus = controller.event_bus
    bus.subscribe("*", display.on_event, run_id=message_id)
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, token.cancel)
    except (NotImplementedError, RuntimeError):
        _logger.debug("SIGINT handler not supported on this platform")
    try:
        result = await controller.run(history, registry, display.handle, options)
    except GenerationError:
        return None
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass
        manager.clear(message_id, token)
        bus.drop_run(message_id)
    display.summary(result)
    return result


async def _main(
    config: EngineConfig,
    model: str,
    prompt_text: str | None,
    images: tuple[str, ...],
    think: bool,
    tool_detail: bool,
    user_id: str,
) -> None:
    profile = config.active_profile
    client = AsyncProviderClient(profile)
    pricing = None
    if config.pricing.enabled:
        pricing = PricingCache(ProviderPricingFetcher(client), ttl=config.pricing.ttl_seconds)

    display = StreamingDisplay(console)
    controller = StepLoopController(client, pricing=pricing, event_bus=EventBus())
    registry = setup_tools(config)
    manager = GenerationManager()
    history: list[ConversationMessage] = []
    turn = 0

    def options_for(first_images: tuple[str, ...]) -> GenerationOptions:
        return GenerationOptions.from_spec(
            model,
            config.generation,
            thinking_enabled=think or config.generation.thinking,
            tool_detail=tool_detail or config.generation.tool_detail,
            attachments=[Attachment(p, _guess_mime(p)) for p in first_images],
            search_tools=tuple(config.tools.search_tools),
            user_id=user_id,
        )

    try:
        if prompt_text:
            history.append(ConversationMessage("user", prompt_text))
            opts = options_for(images)
            opts.message_id = "turn-1"
            await _run_turn(controller, registry, history, opts, display, manager, "turn-1")
            return

        history_path = Path(os.path.expanduser("~/.config/yggchat/history"))
        history_path.parent.mkdir(parents=True, exist_ok=True)
        session = PromptSession(history=FileHistory(str(history_path)))
        pending_images = images

        while True:
            try:
                user_input = (await session.prompt_async(HTML("<ansigreen><b>❯ </b></ansigreen>"))).strip()
            except (EOFError, KeyboardInterrupt):
                console.print("\n[dim]Goodbye![/dim]")
                break
            if not user_input:
                continue
            if user_input in ("/quit", "/exit"):
                console.print("[dim]Goodbye![/dim]")
                break
            if user_input == "/tools":
                for tool in registry.list_tools():
                    state = "[green]on[/green]" if tool.enabled else "[dim]off[/dim]"
                    console.print(f"  {state} {tool.name} [dim]{tool.description[:70]}[/dim]")
                continue

            turn += 1
            message_id = f"turn-{turn}"
            history.append(ConversationMessage("user", user_input))
            opts = options_for(pending_images)
            opts.message_id = message_id
            pending_images = ()
            result = await _run_turn(
                controller, registry, history, opts, display, manager, message_id,
            )
            if result is not None:
                history = result.conversation_messages
            console.print()
    finally:
        await client.close()


def _guess_mime(path: str) -> str:
    suffix = Path(path).suffix.lower()
    return {
        ".png": "image/png",
        ".gif": "image/gif",
        ".webp": "image/webp",
    }.get(suffix, "image/jpeg")


@click.command()
@click.option("--config", "-c", "config_path", default=None,
              help="Path to yggchat.yaml (auto-detected from CWD or ~/.config/yggchat/)")
@click.option("--model", "-m", default=None, help="Model id (defaults to the profile's model)")
@click.option("--prompt", "-p", "prompt_text", default=None,
              help="Send one message non-interactively and exit")
@click.option("--image", "-i", "images", multiple=True, type=click.Path(exists=True),
              help="Attach an image to the first message")
@click.option("--think", is_flag=True, help="Stream reasoning tokens")
@click.option("--tool-detail", is_flag=True, help="Show raw tool call JSON")
@click.option("--user", "user_id", default="local", help="User id for cost records")
@click.option("--verbose", "-v", is_flag=True, help="Verbose logging")
def main(config_path: str | None, model: str | None, prompt_text: str | None,
         images: tuple[str, ...], think: bool, tool_detail: bool, user_id: str,
         verbose: bool):
    """yggchat - streaming chat with tool use."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)

    config = load_config(config_path)
    profile = config.active_profile
    model = model or profile.default_model

    if not prompt_text:
        console.print(f"[bold cyan]yggchat[/bold cyan] [dim]v{get_version()}[/dim]")
        console.print(f"[dim]Model: {model} @ {profile.provider} ({profile.url})[/dim]")
        console.print("[dim]/tools lists tools, /quit exits, Ctrl-C stops a reply[/dim]\n")
    if not profile.resolve_api_key():
        console.print(f"[yellow]Warning: no API key (set {profile.api_key_env})[/yellow]")

    asyncio.run(_main(config, model, prompt_text, images, think, tool_detail, user_id))


if __name__ == "__main__":
    main()
