"""Type definitions for the hooks engine.

Hooks are shell commands or LLM prompts registered against lifecycle events
of the host agent. The models here describe registrations, the payload a hook
receives, the raw result of running it and the normalized decision the engine
derives from that result.
"""

from __future__ import annotations

from enum import IntEnum, StrEnum
import re
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag

DEFAULT_COMMAND_TIMEOUT = 60.0
DEFAULT_PROMPT_TIMEOUT = 30.0

# Exit code 2 signals a blocking error from hooks
EXIT_CODE_BLOCKING_ERROR = 2
# Reported for hooks that timed out or could not be started
EXIT_CODE_SENTINEL = -1

_PLUGIN_ROOT_REFERENCE = re.compile(r"\$\{CLAUDE_PLUGIN_ROOT\}|\$CLAUDE_PLUGIN_ROOT\b")


class HookEvent(StrEnum):
    """Events that can trigger hooks."""

    PRE_TOOL_USE = "PreToolUse"
    PERMISSION_REQUEST = "PermissionRequest"
    POST_TOOL_USE = "PostToolUse"
    NOTIFICATION = "Notification"
    USER_PROMPT_SUBMIT = "UserPromptSubmit"
    STOP = "Stop"
    SUBAGENT_STOP = "SubagentStop"
    PRE_COMPACT = "PreCompact"
    SESSION_START = "SessionStart"
    SESSION_END = "SessionEnd"

    @property
    def uses_matcher(self) -> bool:
        """Whether registrations for this event key on a tool/notification name."""
        return self in _MATCHER_EVENTS

    @property
    def supports_prompt_hooks(self) -> bool:
        return self in _PROMPT_EVENTS


_MATCHER_EVENTS = frozenset(
    {
        HookEvent.PRE_TOOL_USE,
        HookEvent.PERMISSION_REQUEST,
        HookEvent.POST_TOOL_USE,
        HookEvent.NOTIFICATION,
    }
)

_PROMPT_EVENTS = frozenset(
    {
        HookEvent.PRE_TOOL_USE,
        HookEvent.PERMISSION_REQUEST,
        HookEvent.USER_PROMPT_SUBMIT,
        HookEvent.STOP,
        HookEvent.SUBAGENT_STOP,
    }
)


class HookKind(StrEnum):
    COMMAND = "command"
    PROMPT = "prompt"


class SettingsScope(IntEnum):
    """Where a registration came from, ordered by precedence (lowest first)."""

    PLUGIN = 0
    USER = 1
    PROJECT = 2
    LOCAL = 3
    MANAGED = 4


class PermissionDecision(StrEnum):
    """Permission outcomes, ordered from least to most restrictive by `rank`."""

    NONE = "none"
    ALLOW = "allow"
    ASK = "ask"
    DENY = "deny"

    @property
    def rank(self) -> int:
        return _PERMISSION_RANK[self]


_PERMISSION_RANK = {
    PermissionDecision.NONE: 0,
    PermissionDecision.ALLOW: 1,
    PermissionDecision.ASK: 2,
    PermissionDecision.DENY: 3,
}


class Audience(StrEnum):
    """Who gets to see a message produced by a hook."""

    ASSISTANT = "assistant"
    USER = "user"
    TRANSCRIPT = "transcript"


class HookRegistration(BaseModel):
    """A single hook registered for an event.

    Attributes:
        event: The lifecycle event the hook fires on.
        matcher: Tool/notification pattern. None, "" and "*" match anything.
        kind: Whether `body` is a shell command or a prompt template.
        body: The shell command or the prompt template.
        timeout: Maximum execution time in seconds.
        source_plugin: Name of the plugin that contributed the hook, if any.
        plugin_root: Root directory of that plugin, exported to commands.
        scope: Settings scope the registration was loaded from.
    """

    model_config = ConfigDict(frozen=True)

    event: HookEvent
    matcher: str | None = None
    kind: HookKind = HookKind.COMMAND
    body: str
    timeout: float = Field(default=DEFAULT_COMMAND_TIMEOUT, gt=0)
    source_plugin: str | None = None
    plugin_root: str | None = None
    description: str | None = None
    scope: SettingsScope = SettingsScope.USER

    @property
    def identity(self) -> tuple[HookEvent, str | None, HookKind, str]:
        """Dedup key. Plugin-relative commands resolve against their plugin root."""
        body = self.body
        if self.plugin_root:
            body = _PLUGIN_ROOT_REFERENCE.sub(lambda _: self.plugin_root, body)
        return (self.event, self.matcher, self.kind, body)

    @property
    def label(self) -> str:
        """Short human readable name used in logs and diagnostics."""
        if self.description:
            return self.description
        body = self.body if len(self.body) <= 60 else self.body[:57] + "..."
        if self.source_plugin:
            return f"{self.source_plugin}: {body}"
        return body


class InvocationContext(BaseModel):
    """Payload passed to a hook, as JSON on stdin or templated into a prompt.

    Hosts may send keys that are not modelled here; they are preserved and
    forwarded to the hook untouched.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    session_id: str = ""
    transcript_path: str | None = None
    cwd: str = ""
    permission_mode: str | None = None
    hook_event_name: str = ""

    tool_name: str | None = None
    tool_input: dict[str, Any] | None = None
    tool_response: Any = None
    message: str | None = None
    notification_type: str | None = None
    prompt: str | None = None
    stop_hook_active: bool | None = None
    trigger: str | None = None
    custom_instructions: str | None = None
    source: str | None = None
    reason: str | None = None

    @property
    def match_target(self) -> str | None:
        """The name matchers are evaluated against for this payload."""
        if self.hook_event_name == HookEvent.NOTIFICATION:
            return self.notification_type
        return self.tool_name

    def to_json(self) -> str:
        return self.model_dump_json(exclude_none=True)


class ExecutionResult(BaseModel):
    """Raw outcome of running one hook. Never mutated once produced."""

    model_config = ConfigDict(frozen=True)

    exit_code: int = 0
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    duration_ms: int = 0


# -- Structured hook output (wire format, exit code 0) -------------------------


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class PreToolUseSpecificOutput(_WireModel):
    hook_event_name: Literal["PreToolUse"] = Field(
        default="PreToolUse", alias="hookEventName"
    )
    permission_decision: Literal["allow", "deny", "ask"] | None = Field(
        default=None, alias="permissionDecision"
    )
    permission_decision_reason: str | None = Field(
        default=None, alias="permissionDecisionReason"
    )
    updated_input: dict[str, Any] | None = Field(default=None, alias="updatedInput")
    additional_context: str | None = Field(default=None, alias="additionalContext")


class PermissionRequestSpecificOutput(_WireModel):
    hook_event_name: Literal["PermissionRequest"] = Field(
        default="PermissionRequest", alias="hookEventName"
    )
    permission_decision: Literal["allow", "deny", "ask"] | None = Field(
        default=None, alias="permissionDecision"
    )
    permission_decision_reason: str | None = Field(
        default=None, alias="permissionDecisionReason"
    )
    updated_input: dict[str, Any] | None = Field(default=None, alias="updatedInput")
    additional_context: str | None = Field(default=None, alias="additionalContext")


class ContextSpecificOutput(_WireModel):
    """Events whose only hook-specific field is extra context for the assistant.

    Also accepts event names without dedicated fields, so the top-level fields
    of the same output still apply.
    """

    hook_event_name: str = Field(alias="hookEventName")
    additional_context: str | None = Field(default=None, alias="additionalContext")


def _specific_output_tag(value: Any) -> str:
    if isinstance(value, dict):
        name = value.get("hookEventName", value.get("hook_event_name"))
    else:
        name = getattr(value, "hook_event_name", None)
    if name in (HookEvent.PRE_TOOL_USE, HookEvent.PERMISSION_REQUEST):
        return str(name)
    return "context"


HookSpecificOutput = Annotated[
    Annotated[PreToolUseSpecificOutput, Tag("PreToolUse")]
    | Annotated[PermissionRequestSpecificOutput, Tag("PermissionRequest")]
    | Annotated[ContextSpecificOutput, Tag("context")],
    Discriminator(_specific_output_tag),
]


class HookOutput(_WireModel):
    """JSON a command hook may print on stdout when it exits 0.

    Attributes:
        continue_: Whether the session should keep going (default: True).
        stop_reason: Shown to the user when `continue_` is False.
        suppress_output: Hide the hook's stdout from the transcript.
        system_message: Warning shown to the user.
        decision: "block" to apply the event's blocking behaviour.
        reason: Explanation for `decision`.
        hook_specific_output: Fields that only make sense for one event.
    """

    continue_: bool | None = Field(default=None, alias="continue")
    stop_reason: str | None = Field(default=None, alias="stopReason")
    suppress_output: bool | None = Field(default=None, alias="suppressOutput")
    system_message: str | None = Field(default=None, alias="systemMessage")
    decision: Literal["block", "approve"] | None = None
    reason: str | None = None
    hook_specific_output: HookSpecificOutput | None = Field(
        default=None, alias="hookSpecificOutput"
    )

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class PromptHookResponse(_WireModel):
    """JSON an LLM is expected to return for a prompt hook."""

    decision: Literal["approve", "block"]
    reason: str = ""
    continue_: bool | None = Field(default=None, alias="continue")
    stop_reason: str | None = Field(default=None, alias="stopReason")
    system_message: str | None = Field(default=None, alias="systemMessage")


# -- Normalized decision --------------------------------------------------------


class Decision(BaseModel):
    """Normalized outcome of one hook, or of all hooks for one event."""

    permission_decision: PermissionDecision = PermissionDecision.NONE
    reason: str | None = None
    updated_input: dict[str, Any] | None = None
    continue_session: bool = True
    stop_reason: str | None = None
    additional_context: str | None = None
    suppress_output: bool = False
    system_message: str | None = None
    blocked: bool = False

    @property
    def is_restrictive(self) -> bool:
        return (
            self.blocked
            or self.permission_decision == PermissionDecision.DENY
            or not self.continue_session
        )

    def to_wire(self, event: HookEvent) -> dict[str, Any]:
        """Render the decision in the host's JSON output schema."""
        data: dict[str, Any] = {}
        if not self.continue_session:
            data["continue"] = False
        if self.stop_reason:
            data["stopReason"] = self.stop_reason
        if self.suppress_output:
            data["suppressOutput"] = True
        if self.system_message:
            data["systemMessage"] = self.system_message
        if self.blocked and event not in (
            HookEvent.PRE_TOOL_USE,
            HookEvent.PERMISSION_REQUEST,
        ):
            data["decision"] = "block"
        if self.reason and "decision" in data:
            data["reason"] = self.reason

        specific: dict[str, Any] = {}
        if self.permission_decision != PermissionDecision.NONE:
            specific["permissionDecision"] = self.permission_decision.value
            if self.reason:
                specific["permissionDecisionReason"] = self.reason
        if self.updated_input is not None:
            specific["updatedInput"] = self.updated_input
        if self.additional_context:
            specific["additionalContext"] = self.additional_context
        if specific:
            data["hookSpecificOutput"] = {"hookEventName": event.value, **specific}
        return data
