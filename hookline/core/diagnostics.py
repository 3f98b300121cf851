"""Logging setup and the hook error journal."""

from __future__ import annotations

from datetime import UTC, datetime
import json
import logging
from pathlib import Path
import threading
from typing import TYPE_CHECKING, Any

from rich.console import Console
from rich.logging import RichHandler

from hookline.core.hooks.errors import HookError

if TYPE_CHECKING:
    from hookline.core.config import HooklineConfig

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(config: HooklineConfig, verbose: bool = False) -> None:
    """Configure the root logger for a hookline process.

    Console output goes to stderr so it never mixes with hook JSON on stdout.
    """
    level = "DEBUG" if verbose else config.log_level.upper()
    handlers: list[logging.Handler] = [
        RichHandler(console=Console(stderr=True), show_path=False)
    ]
    if config.log_file:
        Path(config.log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handlers.append(file_handler)

    logging.basicConfig(level=level, format="%(message)s", handlers=handlers, force=True)


class DiagnosticsJournal:
    """Appends one JSON line per hook error to a journal file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def record(
        self,
        error: HookError,
        event: str,
        plugin: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        entry = {
            "timestamp": datetime.now(UTC).isoformat(),
            "plugin": plugin,
            "hook": error.hook,
            "event": event,
            "level": "ERROR" if error.blocking else "WARN",
            "code": error.code,
            "message": error.message,
            "context": context or {},
        }
        line = json.dumps(entry, ensure_ascii=False)
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")

    def entries(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        with self.path.open(encoding="utf-8") as handle:
            return [json.loads(line) for line in handle if line.strip()]
