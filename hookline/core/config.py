"""Hookline configuration.

Engine settings come from, in increasing priority: defaults, a TOML file
(`~/.hookline/config.toml`, `[hookline]` table), `HOOKLINE_*` environment
variables and command line overrides.

Hook registrations themselves are not part of this configuration; they live in
the host's settings documents listed by `settings_sources`.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
import tomllib
from typing import Any

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from hookline.core.hooks.config import ConfigSource
from hookline.core.hooks.types import (
    DEFAULT_COMMAND_TIMEOUT,
    DEFAULT_PROMPT_TIMEOUT,
    SettingsScope,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".hookline"
CONFIG_FILENAME = "config.toml"
MANAGED_SETTINGS_ENV = "HOOKLINE_MANAGED_SETTINGS"
DEFAULT_MANAGED_SETTINGS = Path("/etc/claude-code/managed-settings.json")


class HooklineConfig(BaseModel):
    """Configuration for the hook engine."""

    enabled: bool = Field(default=True, description="Enable/disable all hooks")

    log_level: str = Field(default="WARNING", description="Log level")
    log_file: str | None = Field(
        default=None, description="Append log records to this file"
    )
    journal_path: str | None = Field(
        default=None, description="JSON lines journal of hook errors"
    )

    state_dir: str | None = Field(
        default=None,
        description="Directory for per-session plugin state (system temp if unset)",
    )
    project_dir: str | None = Field(
        default=None, description="Project root exported to hooks"
    )
    remote: bool = Field(
        default=False, description="Running in a remote/web environment"
    )

    default_command_timeout: float = Field(default=DEFAULT_COMMAND_TIMEOUT, gt=0)
    default_prompt_timeout: float = Field(default=DEFAULT_PROMPT_TIMEOUT, gt=0)

    prompt_endpoint: str | None = Field(
        default=None,
        description="OpenAI compatible chat completions URL for prompt hooks",
    )
    prompt_model: str = Field(default="mistral-small-latest")
    prompt_api_key_env: str = Field(
        default="HOOKLINE_PROMPT_API_KEY",
        description="Environment variable holding the prompt endpoint API key",
    )


class HooklineSettings(BaseSettings):
    """Settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_prefix="HOOKLINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    enabled: bool | None = None
    log_level: str | None = None
    log_file: str | None = None
    journal_path: str | None = None
    state_dir: str | None = None
    project_dir: str | None = None
    remote: bool | None = None
    default_command_timeout: float | None = None
    default_prompt_timeout: float | None = None
    prompt_endpoint: str | None = None
    prompt_model: str | None = None
    prompt_api_key_env: str | None = None


def _load_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("rb") as handle:
        return tomllib.load(handle).get("hookline", {})


def _apply_overrides(
    config: HooklineConfig, overrides: dict[str, Any] | None
) -> HooklineConfig:
    if not overrides:
        return config
    values = {k: v for k, v in overrides.items() if v is not None}
    return config.model_copy(update=values) if values else config


def load_config(
    *,
    cli_overrides: dict[str, Any] | None = None,
    config_path: Path | None = None,
) -> HooklineConfig:
    """Load configuration following priority: CLI > env > config file > defaults"""
    selected_path = config_path or DEFAULT_CONFIG_DIR / CONFIG_FILENAME
    config = HooklineConfig(**_load_config_file(selected_path))

    env_settings = HooklineSettings()
    config = _apply_overrides(config, env_settings.model_dump(exclude_none=True))
    config = _apply_overrides(config, cli_overrides)

    # A host-provided remote flag wins over configuration.
    if os.environ.get("CLAUDE_CODE_REMOTE") == "true":
        config = config.model_copy(update={"remote": True})
    return config


def settings_sources(
    project_dir: str | Path | None = None, home: Path | None = None
) -> list[ConfigSource]:
    """Hook documents from the standard settings files that exist.

    Returned least specific first: user, project, local, managed policy.
    """
    project = Path(project_dir) if project_dir else Path.cwd()
    home = home or Path.home()
    managed = Path(os.environ.get(MANAGED_SETTINGS_ENV, DEFAULT_MANAGED_SETTINGS))
    candidates = [
        (home / ".claude" / "settings.json", SettingsScope.USER),
        (project / ".claude" / "settings.json", SettingsScope.PROJECT),
        (project / ".claude" / "settings.local.json", SettingsScope.LOCAL),
        (managed, SettingsScope.MANAGED),
    ]

    sources: list[ConfigSource] = []
    for path, scope in candidates:
        if path.is_file():
            logger.debug(f"Using {scope.name.lower()} settings {path}")
            sources.append(ConfigSource.from_path(path, scope=scope))
    return sources
