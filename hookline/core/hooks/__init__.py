"""Hook engine for assistant plugins.

Hooks are shell commands (or LLM prompts) that run when the host agent fires a
lifecycle event. They are registered in JSON settings documents:

    {
      "hooks": {
        "PreToolUse": [
          {
            "matcher": "Write|Edit",
            "hooks": [{"type": "command", "command": "./validate.sh", "timeout": 10}]
          }
        ],
        "SessionStart": [
          {"hooks": [{"type": "command", "command": "echo 'Session started'"}]}
        ]
      }
    }

Command hooks receive the event payload as JSON on stdin. Exit code 0 means
success (stdout may carry JSON, see `HookOutput`), exit code 2 blocks the
action with stderr as the reason, any other exit code is a non-blocking error.
"""
from __future__ import annotations

from hookline.core.hooks.codec import (
    EVENT_RULES,
    HookMessage,
    HookOutcome,
    aggregate,
    decode,
    decode_outcome,
)
from hookline.core.hooks.config import (
    ConfigSource,
    HookRegistry,
    ValidationReport,
    load,
    validate_document,
)
from hookline.core.hooks.dispatcher import DispatchResult, HookDispatcher
from hookline.core.hooks.errors import (
    BlockingFailure,
    CodecError,
    ConfigError,
    ExecutionFailure,
    ExecutionTimeout,
    HookError,
    MatchError,
)
from hookline.core.hooks.executor import HookExecutor
from hookline.core.hooks.matcher import Matcher, Pattern, select
from hookline.core.hooks.prompt import HttpPromptEvaluator, PromptEvaluator
from hookline.core.hooks.session import (
    FileStateBackend,
    MemoryStateBackend,
    SessionState,
    SessionStateStore,
)
from hookline.core.hooks.types import (
    Audience,
    Decision,
    ExecutionResult,
    HookEvent,
    HookKind,
    HookOutput,
    HookRegistration,
    InvocationContext,
    PermissionDecision,
    SettingsScope,
)

__all__ = [
    "EVENT_RULES",
    "Audience",
    "BlockingFailure",
    "CodecError",
    "ConfigError",
    "ConfigSource",
    "Decision",
    "DispatchResult",
    "ExecutionFailure",
    "ExecutionResult",
    "ExecutionTimeout",
    "FileStateBackend",
    "HookDispatcher",
    "HookError",
    "HookEvent",
    "HookExecutor",
    "HookKind",
    "HookMessage",
    "HookOutcome",
    "HookOutput",
    "HookRegistration",
    "HookRegistry",
    "HttpPromptEvaluator",
    "InvocationContext",
    "MatchError",
    "Matcher",
    "MemoryStateBackend",
    "Pattern",
    "PermissionDecision",
    "PromptEvaluator",
    "SessionState",
    "SessionStateStore",
    "SettingsScope",
    "ValidationReport",
    "aggregate",
    "decode",
    "decode_outcome",
    "load",
    "select",
    "validate_document",
]
