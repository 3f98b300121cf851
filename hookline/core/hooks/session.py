"""Per-session state shared by hook runs.

Plugins use this to remember, for the lifetime of one agent session, which
contextual recommendations they already showed and which validations already
passed. State is keyed by plugin and replaced wholesale at SessionStart.

Several hooks of the same dispatch may update the same key at once. Updates
are read-modify-write with last-write-wins semantics: a lost concurrent
false->true flip only means a recommendation is shown again. The file backend
writes to a temp file and renames it over the target so a reader never sees
a partially written document.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
import hashlib
import logging
import os
from pathlib import Path
import re
import tempfile
import threading
from typing import Any, Protocol

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

GLOBAL_SCOPE = "global"
_KEY_PATTERN = re.compile(r"[A-Za-z0-9_-][A-Za-z0-9_.-]*")
_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")


def _now() -> datetime:
    return datetime.now(UTC)


def storage_key(plugin_key: str) -> str:
    """Map a plugin name to a key that is safe to use as a file name.

    Plain names are used as is. Anything else, such as `@acme/nextjs`, is
    reduced to safe characters and suffixed with a hash of the original name.
    """
    if _KEY_PATTERN.fullmatch(plugin_key):
        return plugin_key
    digest = hashlib.sha256(plugin_key.encode("utf-8")).hexdigest()[:12]
    readable = _UNSAFE_KEY_CHARS.sub("_", plugin_key).strip("._")
    return f"{readable}-{digest}" if readable else digest


class SessionState(BaseModel):
    """State one plugin keeps for the current session."""

    plugin: str
    session_id: str = ""
    pid: int = Field(default_factory=os.getpid)
    started_at: datetime = Field(default_factory=_now)
    recommendations_shown: dict[str, bool] = Field(default_factory=dict)
    validations_passed: dict[str, dict[str, bool]] = Field(default_factory=dict)
    custom_data: dict[str, Any] = Field(default_factory=dict)

    @property
    def age_seconds(self) -> float:
        return (_now() - self.started_at).total_seconds()


class StateBackend(Protocol):
    """Storage for serialized session state, one blob per plugin key."""

    def read(self, key: str) -> str | None: ...

    def write(self, key: str, data: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStateBackend:
    """Keeps state in a dict. Used in tests and for embedded hosts."""

    def __init__(self) -> None:
        self.blobs: dict[str, str] = {}

    def read(self, key: str) -> str | None:
        return self.blobs.get(key)

    def write(self, key: str, data: str) -> None:
        self.blobs[key] = data

    def delete(self, key: str) -> None:
        self.blobs.pop(key, None)


class FileStateBackend:
    """Stores each plugin's state as `<directory>/<key>.json`."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def path_for(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def read(self, key: str) -> str | None:
        try:
            return self.path_for(key).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def write(self, key: str, data: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=self.directory, prefix=f".{key}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(data)
            os.replace(tmp_name, self.path_for(key))
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def delete(self, key: str) -> None:
        self.path_for(key).unlink(missing_ok=True)


class SessionStateStore:
    """Service wrapping a backend with the session state operations."""

    def __init__(self, backend: StateBackend | None = None) -> None:
        self.backend: StateBackend = backend or MemoryStateBackend()
        self._lock = threading.RLock()

    def _load(self, plugin_key: str) -> SessionState | None:
        """Read state, returning None when it is missing or unreadable."""
        try:
            raw = self.backend.read(storage_key(plugin_key))
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Cannot read session state for {plugin_key}: {e}")
            return None
        if raw is None:
            return None
        try:
            return SessionState.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Corrupt session state for {plugin_key}: {e}")
            return None

    def _save(self, state: SessionState) -> None:
        self.backend.write(storage_key(state.plugin), state.model_dump_json(indent=2))

    def _update(
        self, plugin_key: str, apply: Callable[[SessionState], None]
    ) -> SessionState:
        with self._lock:
            state = self._load(plugin_key)
            if state is None:
                # Missing or corrupt state is recreated so the update lands.
                state = SessionState(plugin=plugin_key)
            apply(state)
            self._save(state)
            return state

    def init(self, plugin_key: str, session_id: str = "") -> SessionState:
        """Start fresh state for a plugin, discarding anything left over."""
        state = SessionState(plugin=plugin_key, session_id=session_id)
        with self._lock:
            self._save(state)
        logger.debug(f"Initialized session state for {plugin_key}")
        return state

    def get(self, plugin_key: str) -> SessionState | None:
        return self._load(plugin_key)

    def has_shown(self, plugin_key: str, recommendation_type: str) -> bool:
        """Whether a recommendation was already shown. False if state is unreadable."""
        state = self._load(plugin_key)
        if state is None:
            return False
        return state.recommendations_shown.get(recommendation_type, False)

    def mark_shown(self, plugin_key: str, recommendation_type: str) -> None:
        def apply(state: SessionState) -> None:
            state.recommendations_shown[recommendation_type] = True

        self._update(plugin_key, apply)

    def has_passed_validation(
        self, plugin_key: str, validation: str, file_path: str = GLOBAL_SCOPE
    ) -> bool:
        state = self._load(plugin_key)
        if state is None:
            return False
        return state.validations_passed.get(file_path, {}).get(validation, False)

    def mark_validation_passed(
        self, plugin_key: str, validation: str, file_path: str = GLOBAL_SCOPE
    ) -> None:
        def apply(state: SessionState) -> None:
            state.validations_passed.setdefault(file_path, {})[validation] = True

        self._update(plugin_key, apply)

    def set_custom_data(self, plugin_key: str, key: str, value: Any) -> None:
        def apply(state: SessionState) -> None:
            state.custom_data[key] = value

        self._update(plugin_key, apply)

    def get_custom_data(self, plugin_key: str, key: str, default: Any = None) -> Any:
        state = self._load(plugin_key)
        if state is None:
            return default
        return state.custom_data.get(key, default)

    def clear(self, plugin_key: str) -> None:
        with self._lock:
            self.backend.delete(storage_key(plugin_key))


def default_state_dir() -> Path:
    return Path(tempfile.gettempdir()) / "hookline-sessions"


def file_store(directory: str | Path | None = None) -> SessionStateStore:
    """Store backed by files, under `directory` or the system temp dir."""
    return SessionStateStore(FileStateBackend(directory or default_state_dir()))
