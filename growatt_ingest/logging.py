from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

APP_LOGGER = "growatt"
CONSOLE_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class ConsoleLog:
    """Console logging on stderr; stdout is reserved for command output."""

    def __init__(self, level: str = "INFO", quiet: bool = False, debug_modules: Iterable[str] | None = None):
        self.level = level.upper()
        self.quiet = quiet
        self.debug_modules = list(debug_modules or [])

    def setup(self) -> logging.Logger:
        root = logging.getLogger()
        root.handlers.clear()
        root.setLevel(logging.DEBUG)

        if not self.quiet:
            handler = logging.StreamHandler(sys.stderr)
            handler.setLevel(getattr(logging, self.level, logging.INFO))
            handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
            root.addHandler(handler)

        # Per-module overrides, e.g. "growatt.client" while chasing auth problems.
        for name in self.debug_modules:
            logging.getLogger(name).setLevel(logging.DEBUG)

        return logging.getLogger(APP_LOGGER)


@dataclass
class CommandLogEntry:
    """One dispatched command. Never carries credentials or payloads."""

    timestamp: str
    tenant_id: str | None
    actor: str | None
    action: str | None
    http_status: int
    success: bool
    category: str | None
    count: int | None

    @classmethod
    def from_result(cls, result, timestamp: str | None = None) -> "CommandLogEntry":
        data = result.body.get("data")
        return cls(
            timestamp=timestamp or datetime.now(timezone.utc).isoformat(),
            tenant_id=result.tenant_id,
            actor=result.actor,
            action=result.action,
            http_status=result.http_status,
            success=result.success,
            category=result.body.get("category"),
            count=len(data) if isinstance(data, list) else None,
        )


class StructuredLog:
    """Append-only JSONL command log."""

    def __init__(self, path: str | None, enabled: bool = False):
        self.enabled = enabled and bool(path)
        self.path = Path(path).expanduser() if path else None
        if self.enabled and self.path:
            self.path.parent.mkdir(parents=True, exist_ok=True)

    def write(self, entry: CommandLogEntry) -> None:
        if not self.enabled or not self.path:
            return
        line = json.dumps(asdict(entry), sort_keys=True)
        try:
            with self.path.open("a", encoding="utf-8") as fh:
                fh.write(line + "\n")
        except OSError as exc:  # pragma: no cover - best-effort logging
            logging.getLogger(f"{APP_LOGGER}.structured").warning("Command log write skipped: %s", exc)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
