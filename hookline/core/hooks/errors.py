"""Error taxonomy for the hooks engine.

Only `ConfigError` is ever raised to callers of the public API. The other
errors describe what went wrong with a single hook run; they are attached to
that hook's outcome as diagnostics, and only `BlockingFailure` influences the
aggregated decision.
"""

from __future__ import annotations


class HookError(Exception):
    """Base class for all hook engine errors."""

    code = "HOOK_ERROR"
    blocking = False

    def __init__(self, message: str, hook: str | None = None) -> None:
        self.message = message
        self.hook = hook
        super().__init__(f"[{hook}] {message}" if hook else message)


class ConfigError(HookError):
    """A hook registration document is malformed."""

    code = "CONFIG_ERROR"

    def __init__(
        self, message: str, source: str | None = None, hook: str | None = None
    ) -> None:
        self.source = source
        if source:
            message = f"{source}: {message}"
        super().__init__(message, hook)


class MatchError(HookError):
    """A matcher is not a valid regular expression."""

    code = "MATCH_ERROR"

    def __init__(self, pattern: str, reason: str) -> None:
        self.pattern = pattern
        super().__init__(f"Invalid matcher pattern {pattern!r}: {reason}")


class ExecutionTimeout(HookError):
    """A hook exceeded its time budget and was terminated."""

    code = "EXECUTION_TIMEOUT"

    def __init__(self, timeout: float, hook: str | None = None) -> None:
        self.timeout = timeout
        super().__init__(f"Hook timed out after {timeout:g}s", hook)


class ExecutionFailure(HookError):
    """A hook exited with a non-zero code other than 2, or could not start."""

    code = "EXECUTION_FAILURE"

    def __init__(
        self, exit_code: int, stderr: str = "", hook: str | None = None
    ) -> None:
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(stderr or f"Hook exited with code {exit_code}", hook)


class BlockingFailure(HookError):
    """A hook exited 2 or a prompt hook answered "block"."""

    code = "BLOCKING_FAILURE"
    blocking = True

    def __init__(self, reason: str, hook: str | None = None) -> None:
        self.reason = reason
        super().__init__(reason, hook)


class CodecError(HookError):
    """Hook stdout looked like JSON but could not be decoded."""

    code = "CODEC_ERROR"
