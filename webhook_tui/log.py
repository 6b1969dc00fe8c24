"""File logger shared by every component.

The terminal belongs to the TUI while it runs, so all diagnostics go to
``~/.webhook-tui/logs/webhook-tui.log`` instead of stdout.
"""

from __future__ import annotations

import threading
from datetime import datetime
from pathlib import Path
from typing import Optional

from .config import LOG_FILE


def _ts() -> str:
    return datetime.now().isoformat(timespec="seconds")


class Logger:
    _write_lock = threading.Lock()

    def __init__(self, log_file: Path, name: str):
        self.log_file = log_file
        self.name = name
        self.log_file.parent.mkdir(parents=True, exist_ok=True)

    def write(self, message: str, level: str = "INFO") -> None:
        line = f"[{_ts()}] [{level}] [{self.name}] {message}\n"
        with self._write_lock:
            with self.log_file.open("a", encoding="utf-8") as f:
                f.write(line)

    def error(self, message: str) -> None:
        self.write(message, level="ERROR")


def get_logger(name: str, log_file: Optional[Path] = None) -> Logger:
    return Logger(log_file or LOG_FILE, name)
