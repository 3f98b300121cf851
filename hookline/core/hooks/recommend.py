"""Once-per-session contextual recommendations.

Plugins point the assistant at relevant skills when it touches certain files,
e.g. "App Router detected, use the ROUTING-* skills". Each recommendation type
is shown at most once per session; the session state store remembers what
was shown.

Rules file format:

    {
      "rules": [
        {"type": "nextjs_skills", "patterns": ["*/app/*.tsx"], "message": "..."},
        {"type": "security_skills", "patterns": ["*action*.ts"], "message": "..."}
      ]
    }
"""

from __future__ import annotations

from fnmatch import fnmatchcase
import logging
from pathlib import PurePosixPath

from pydantic import BaseModel, Field

from hookline.core.hooks.session import SessionStateStore
from hookline.core.hooks.types import (
    ContextSpecificOutput,
    HookEvent,
    HookOutput,
    InvocationContext,
    PreToolUseSpecificOutput,
)

logger = logging.getLogger(__name__)

_PATH_KEYS = ("file_path", "notebook_path", "path")


class RecommendationRule(BaseModel):
    type: str
    patterns: list[str] = Field(min_length=1)
    message: str

    def matches(self, file_path: str) -> bool:
        name = PurePosixPath(file_path).name
        return any(
            fnmatchcase(file_path, pattern) or fnmatchcase(name, pattern)
            for pattern in self.patterns
        )


class RecommendationRules(BaseModel):
    rules: list[RecommendationRule] = Field(default_factory=list)

    def first_match(self, file_path: str) -> RecommendationRule | None:
        for rule in self.rules:
            if rule.matches(file_path):
                return rule
        return None


def file_path_of(context: InvocationContext) -> str | None:
    tool_input = context.tool_input or {}
    for key in _PATH_KEYS:
        value = tool_input.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def _context_output(event: HookEvent, message: str) -> HookOutput:
    if event == HookEvent.PRE_TOOL_USE:
        specific = PreToolUseSpecificOutput(additional_context=message)
        return HookOutput(hook_specific_output=specific)
    if event in (
        HookEvent.POST_TOOL_USE,
        HookEvent.USER_PROMPT_SUBMIT,
        HookEvent.SESSION_START,
    ):
        specific = ContextSpecificOutput(
            hook_event_name=event.value, additional_context=message
        )
        return HookOutput(hook_specific_output=specific)
    return HookOutput(system_message=message)


def recommend_once(
    store: SessionStateStore,
    plugin: str,
    rules: RecommendationRules,
    context: InvocationContext,
) -> HookOutput | None:
    """Build the recommendation for the file in `context`, if not yet shown."""
    file_path = file_path_of(context)
    if not file_path:
        return None
    rule = rules.first_match(file_path)
    if rule is None:
        return None
    if store.has_shown(plugin, rule.type):
        logger.debug(f"Recommendation {rule.type} already shown for {plugin}")
        return None

    store.mark_shown(plugin, rule.type)
    logger.info(f"Showing recommendation {rule.type} for {plugin}")
    try:
        event = HookEvent(context.hook_event_name)
    except ValueError:
        event = HookEvent.POST_TOOL_USE
    return _context_output(event, rule.message)
