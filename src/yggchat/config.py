"""Configuration for yggchat.

Config discovery (first match wins):
  1. ``--config`` flag
  2. ``./yggchat.yaml``
  3. ``~/.config/yggchat/config.yaml``
  4. Built-in defaults
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

_logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Config data structures
# ---------------------------------------------------------------------------

@dataclass
class ProfileSpec:
    """A named provider profile (OpenAI-compatible endpoint)."""

    provider: str = "openrouter"
    url: str = "https://openrouter.ai/api/v1"
    api_key: str = ""
    api_key_env: str = "OPENROUTER_API_KEY"
    default_model: str = "openrouter/auto"
    referer: str = ""
    title: str = "Yggdrasil Chat"
    extra_params: dict[str, Any] = field(default_factory=dict)

    def resolve_api_key(self) -> str:
        """Explicit key wins; otherwise read the configured env var."""
        if self.api_key:
            return self.api_key
        if self.api_key_env:
            return os.environ.get(self.api_key_env, "")
        return ""


@dataclass
class PricingSpec:
    """Pricing catalog settings."""

    enabled: bool = True
    ttl_seconds: float = 3600.0


@dataclass
class GenerationSpec:
    """Defaults for one orchestration run."""

    max_steps: int = 400
    max_tokens: int = 100000
    reasoning_max_tokens: int = 30000
    retry_max_tokens: int = 4000
    retry_reasoning_max_tokens: int = 10000
    thinking: bool = False
    tool_detail: bool = False


@dataclass
class ToolsSpec:
    """Built-in tool settings."""

    enabled: list[str] = field(
        default_factory=lambda: ["read_file", "read_files", "directory", "brave_search"]
    )
    brave_api_key_env: str = "BRAVE_API_KEY"
    search_tools: list[str] = field(default_factory=lambda: ["brave_search"])


@dataclass
class EngineConfig:
    """Top-level config."""

    profile: str = "openrouter"
    profiles: dict[str, ProfileSpec] = field(
        default_factory=lambda: {"openrouter": ProfileSpec()}
    )
    pricing: PricingSpec = field(default_factory=PricingSpec)
    generation: GenerationSpec = field(default_factory=GenerationSpec)
    tools: ToolsSpec = field(default_factory=ToolsSpec)

    @property
    def active_profile(self) -> ProfileSpec:
        return self.profiles.get(self.profile, ProfileSpec())


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

_SEARCH_PATHS = [
    Path("./yggchat.yaml"),
    Path.home() / ".config" / "yggchat" / "config.yaml",
]


def _overlay(cls: type, raw: dict[str, Any] | None) -> Any:
    """Build dataclass *cls* from defaults overlaid with known keys of *raw*."""
    if not raw:
        return cls()
    known = {
        k: v for k, v in raw.items()
        if v is not None and k in cls.__dataclass_fields__
    }
    unknown = set(raw) - set(cls.__dataclass_fields__)
    if unknown:
        _logger.warning(
            "Ignoring unknown %s keys: %s", cls.__name__, ", ".join(sorted(unknown)),
        )
    return cls(**known)


def load_config(path: str | Path | None = None) -> EngineConfig:
    """Load configuration from YAML.

    Parameters
    ----------
    path:
        Explicit config path.  If *None*, search default locations.
    """
    config_path: Path | None = None

    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            _logger.warning("Config file not found: %s, using defaults", path)
            return EngineConfig()
    else:
        for candidate in _SEARCH_PATHS:
            if candidate.exists():
                config_path = candidate
                break

    if config_path is None:
        _logger.info("No config file found, using defaults")
        return EngineConfig()

    _logger.info("Loading config from %s", config_path)
    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    profiles: dict[str, ProfileSpec] = {}
    for name, praw in (raw.get("profiles") or {}).items():
        profiles[name] = _overlay(ProfileSpec, praw)
    if not profiles:
        profiles["openrouter"] = ProfileSpec()

    profile = raw.get("profile") or next(iter(profiles))

    return EngineConfig(
        profile=profile,
        profiles=profiles,
        pricing=_overlay(PricingSpec, raw.get("pricing")),
        generation=_overlay(GenerationSpec, raw.get("generation")),
        tools=_overlay(ToolsSpec, raw.get("tools")),
    )
