from __future__ import annotations

from pathlib import Path
from typing import Any

from hookline.core.hooks.types import HookEvent, HookRegistration, InvocationContext


def make_registration(
    body: str,
    event: HookEvent = HookEvent.PRE_TOOL_USE,
    matcher: str | None = None,
    timeout: float = 5.0,
    **kwargs: Any,
) -> HookRegistration:
    return HookRegistration(
        event=event, matcher=matcher, body=body, timeout=timeout, **kwargs
    )


def make_context(
    event: HookEvent = HookEvent.PRE_TOOL_USE, **kwargs: Any
) -> InvocationContext:
    kwargs.setdefault("session_id", "test-session")
    kwargs.setdefault("cwd", "/tmp")
    return InvocationContext(hook_event_name=event.value, **kwargs)


def write_script(directory: Path, name: str, body: str) -> Path:
    script = directory / name
    script.write_text(f"#!/bin/bash\n{body}\n")
    script.chmod(0o755)
    return script
