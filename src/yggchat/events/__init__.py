"""Event system for yggchat."""

from yggchat.events.bus import EventBus

__all__ = ["EventBus"]
