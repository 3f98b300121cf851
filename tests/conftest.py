from __future__ import annotations

import logging

import pytest

from hookline.core.hooks.session import MemoryStateBackend, SessionStateStore


@pytest.fixture
def memory_store() -> SessionStateStore:
    return SessionStateStore(MemoryStateBackend())


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "CLAUDE_CODE_REMOTE",
        "CLAUDE_PROJECT_DIR",
        "CLAUDE_PLUGIN_ROOT",
        "HOOKLINE_STATE_DIR",
        "HOOKLINE_PROMPT_API_KEY",
        "HOOKLINE_MANAGED_SETTINGS",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
