"""Hook configuration loading.

Hook definitions live in several settings documents (user, project, local,
enterprise-managed) and in plugin `hooks/hooks.json` files. All of them share
the same shape:

    {
      "hooks": {
        "PreToolUse": [
          {
            "matcher": "Write|Edit",
            "hooks": [
              {"type": "command", "command": "${CLAUDE_PLUGIN_ROOT}/check.sh", "timeout": 10}
            ]
          }
        ]
      }
    }

`load` merges any number of such documents into one `HookRegistry`.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
import json
import logging
from pathlib import Path
import re
from typing import Any, Literal

from pydantic import ValidationError

from hookline.core.hooks.errors import ConfigError
from hookline.core.hooks.types import (
    DEFAULT_COMMAND_TIMEOUT,
    DEFAULT_PROMPT_TIMEOUT,
    HookEvent,
    HookKind,
    HookRegistration,
    SettingsScope,
)

logger = logging.getLogger(__name__)

PLUGIN_HOOKS_FILE = Path("hooks") / "hooks.json"
PLUGIN_MANIFEST_FILE = Path(".claude-plugin") / "plugin.json"

_VALID_EVENTS = ", ".join(e.value for e in HookEvent)
_EVENT_NAME_SHAPE = re.compile(r"[A-Z][A-Za-z]*")


@dataclass(frozen=True)
class ConfigSource:
    """One hook registration document and where it came from."""

    data: dict[str, Any] | str
    scope: SettingsScope = SettingsScope.USER
    name: str = "<inline>"
    plugin_name: str | None = None
    plugin_root: str | None = None

    @classmethod
    def from_path(
        cls,
        path: str | Path,
        scope: SettingsScope = SettingsScope.USER,
        plugin_name: str | None = None,
        plugin_root: str | Path | None = None,
    ) -> ConfigSource:
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"cannot read file: {e}", source=str(path)) from e
        return cls(
            data=text,
            scope=scope,
            name=str(path),
            plugin_name=plugin_name,
            plugin_root=str(plugin_root) if plugin_root is not None else None,
        )

    @classmethod
    def from_plugin_dir(cls, plugin_dir: str | Path) -> ConfigSource:
        """Load `<plugin>/hooks/hooks.json`, naming the plugin from its manifest."""
        plugin_dir = Path(plugin_dir).resolve()
        plugin_name = plugin_dir.name
        manifest = plugin_dir / PLUGIN_MANIFEST_FILE
        if manifest.is_file():
            try:
                plugin_name = json.loads(manifest.read_text(encoding="utf-8")).get(
                    "name", plugin_name
                )
            except (OSError, json.JSONDecodeError, AttributeError) as e:
                logger.warning(f"Ignoring unreadable plugin manifest {manifest}: {e}")
        return cls.from_path(
            plugin_dir / PLUGIN_HOOKS_FILE,
            scope=SettingsScope.PLUGIN,
            plugin_name=plugin_name,
            plugin_root=plugin_dir,
        )


@dataclass(frozen=True)
class ConfigIssue:
    severity: Literal["error", "warning"]
    path: str
    message: str

    def __str__(self) -> str:
        return f"{self.path}: {self.message}"


@dataclass
class ValidationReport:
    """Outcome of validating a single hooks document."""

    errors: list[ConfigIssue] = field(default_factory=list)
    warnings: list[ConfigIssue] = field(default_factory=list)
    registrations: list[HookRegistration] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


class HookRegistry:
    """Ordered hook registrations grouped by event.

    Registrations are unique by (event, matcher, kind, body), with
    `${CLAUDE_PLUGIN_ROOT}` resolved against the contributing plugin. Adding a
    registration whose identity is already present replaces the existing one
    in place when it comes from an equal or more specific scope.
    """

    def __init__(self, registrations: list[HookRegistration] | None = None) -> None:
        self._hooks: dict[HookEvent, list[HookRegistration]] = {
            event: [] for event in HookEvent
        }
        self.warnings: list[ConfigError] = []
        for registration in registrations or []:
            self.add(registration)

    def add(self, registration: HookRegistration) -> bool:
        """Add a registration. Returns False if an existing one was kept."""
        hooks = self._hooks[registration.event]
        for i, existing in enumerate(hooks):
            if existing.identity == registration.identity:
                if registration.scope >= existing.scope:
                    hooks[i] = registration
                    return True
                return False
        hooks.append(registration)
        return True

    def for_event(self, event: HookEvent) -> list[HookRegistration]:
        return list(self._hooks[event])

    def is_empty(self) -> bool:
        return not any(self._hooks.values())

    def __iter__(self) -> Iterator[HookRegistration]:
        for hooks in self._hooks.values():
            yield from hooks

    def __len__(self) -> int:
        return sum(len(hooks) for hooks in self._hooks.values())


def _normalize_matcher(event: HookEvent, matcher: str | None) -> str | None:
    if not event.uses_matcher:
        return None
    if matcher is None or matcher.strip() in ("", "*"):
        return None
    return matcher


def _looks_like_event_map(data: dict[str, Any]) -> bool:
    """A bare event map: a known event name, or PascalCase keys holding arrays."""
    return any(
        key in HookEvent._value2member_map_
        or (_EVENT_NAME_SHAPE.fullmatch(key) is not None and isinstance(value, list))
        for key, value in data.items()
    )


def _decode_document(source: ConfigSource) -> dict[str, Any]:
    data: Any = source.data
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            raise ConfigError(f"malformed JSON: {e}", source=source.name) from e
    if not isinstance(data, dict):
        raise ConfigError("document must be a JSON object", source=source.name)

    if "hooks" in data:
        hooks = data["hooks"]
    elif _looks_like_event_map(data):
        hooks = data
    else:
        return {}

    if not isinstance(hooks, dict):
        raise ConfigError('"hooks" must be an object', source=source.name)
    for event_name in hooks:
        if event_name not in HookEvent._value2member_map_:
            raise ConfigError(
                f"unknown event {event_name!r}. Valid: {_VALID_EVENTS}",
                source=source.name,
            )
    return hooks


def _parse_hook(
    event: HookEvent,
    matcher: str | None,
    raw: Any,
    path: str,
    source: ConfigSource,
    report: ValidationReport,
    default_timeouts: dict[HookKind, float],
) -> HookRegistration | None:
    def error(message: str) -> None:
        report.errors.append(ConfigIssue("error", path, message))

    def warning(message: str) -> None:
        report.warnings.append(ConfigIssue("warning", path, message))

    if not isinstance(raw, dict):
        error("must be an object")
        return None

    hook_type = raw.get("type")
    if hook_type not in (HookKind.COMMAND, HookKind.PROMPT):
        error(f'type must be "command" or "prompt", got {hook_type!r}')
        return None
    kind = HookKind(hook_type)
    other_field = "prompt" if kind == HookKind.COMMAND else "command"
    body = raw.get(kind.value)
    if not isinstance(body, str) or not body.strip():
        error(f'{kind.value} is required when type is "{kind.value}"')
        return None
    if other_field in raw:
        warning(f'{other_field} is ignored when type is "{kind.value}"')
    if kind == HookKind.PROMPT and not event.supports_prompt_hooks:
        error(f"prompt hooks are not supported for {event.value}")
        return None

    timeout = raw.get("timeout", default_timeouts[kind])
    if isinstance(timeout, bool) or not isinstance(timeout, int | float) or timeout <= 0:
        error("timeout must be a positive number")
        return None

    description = raw.get("description")
    if description is not None and not isinstance(description, str):
        error("description must be a string")
        return None

    try:
        return HookRegistration(
            event=event,
            matcher=_normalize_matcher(event, matcher),
            kind=kind,
            body=body,
            timeout=float(timeout),
            source_plugin=source.plugin_name,
            plugin_root=source.plugin_root,
            description=description,
            scope=source.scope,
        )
    except ValidationError as e:
        error(str(e))
        return None


def _parse_source(
    source: ConfigSource, default_timeouts: dict[HookKind, float] | None = None
) -> ValidationReport:
    """Parse one document. Raises ConfigError only for document-level faults."""
    report = ValidationReport()
    default_timeouts = default_timeouts or {
        HookKind.COMMAND: DEFAULT_COMMAND_TIMEOUT,
        HookKind.PROMPT: DEFAULT_PROMPT_TIMEOUT,
    }
    hooks = _decode_document(source)

    for event_name, groups in hooks.items():
        event = HookEvent(event_name)
        event_path = f"hooks.{event_name}"
        if not isinstance(groups, list):
            report.errors.append(ConfigIssue("error", event_path, "must be an array"))
            continue

        for gi, group in enumerate(groups):
            group_path = f"{event_path}[{gi}]"
            if not isinstance(group, dict):
                report.errors.append(
                    ConfigIssue("error", group_path, "must be an object")
                )
                continue
            matcher = group.get("matcher")
            if matcher is not None and not isinstance(matcher, str):
                report.errors.append(
                    ConfigIssue("error", group_path, "matcher must be a string")
                )
                continue
            if matcher is None and event.uses_matcher:
                report.warnings.append(
                    ConfigIssue(
                        "warning",
                        group_path,
                        f"matcher is recommended for {event.value}; matching all",
                    )
                )
            entries = group.get("hooks")
            if not isinstance(entries, list):
                report.errors.append(
                    ConfigIssue("error", group_path, "hooks must be an array")
                )
                continue

            for hi, raw in enumerate(entries):
                registration = _parse_hook(
                    event,
                    matcher,
                    raw,
                    f"{group_path}.hooks[{hi}]",
                    source,
                    report,
                    default_timeouts,
                )
                if registration is not None:
                    report.registrations.append(registration)

    return report


def validate_document(source: ConfigSource) -> ValidationReport:
    """Validate a hooks document without loading it.

    Document-level faults (bad JSON, unknown events) are reported as errors
    instead of being raised.
    """
    try:
        return _parse_source(source)
    except ConfigError as e:
        return ValidationReport(errors=[ConfigIssue("error", source.name, e.message)])


def load(
    sources: list[ConfigSource],
    command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
    prompt_timeout: float = DEFAULT_PROMPT_TIMEOUT,
) -> HookRegistry:
    """Merge hook documents into one registry.

    Sources are applied from the least to the most specific scope (stable for
    equal scopes). Entries from every source are unioned; for entries with the
    same identity the most specific source wins.

    Raises:
        ConfigError: If a document is not valid JSON, is not an object, or
            names an unknown event.
    """
    default_timeouts = {HookKind.COMMAND: command_timeout, HookKind.PROMPT: prompt_timeout}
    registry = HookRegistry()
    for source in sorted(sources, key=lambda s: s.scope):
        report = _parse_source(source, default_timeouts)
        for issue in report.errors:
            logger.warning(f"Skipping hook entry in {source.name}: {issue}")
            registry.warnings.append(ConfigError(str(issue), source=source.name))
        for issue in report.warnings:
            logger.debug(f"{source.name}: {issue}")
        for registration in report.registrations:
            registry.add(registration)

    logger.debug(f"Loaded {len(registry)} hooks from {len(sources)} sources")
    return registry
