"""Structured logging helpers."""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TextIO

LEVELS: dict[str, int] = {"debug": 10, "info": 20, "warning": 30, "error": 40}


@dataclass(slots=True)
class StructuredLogger:
    """Collects log records; optionally echoes them to a text stream.

    Records are plain dicts so they can be exported as JSON lines after a run.
    The logger is shared by resolution worker threads, so appends are locked.
    """

    level: str = "info"
    stream: TextIO | None = None
    records: list[dict[str, Any]] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def log(
        self,
        *,
        operation: str,
        message: str,
        subject: str | None = None,
        version: str | None = None,
        level: str = "info",
        extra: dict[str, Any] | None = None,
    ) -> None:
        if LEVELS.get(level, 20) < LEVELS.get(self.level, 20):
            return
        record: dict[str, Any] = {
            "level": level,
            "operation": operation,
            "subject": subject,
            "version": version,
            "message": message,
        }
        if extra is not None:
            record["extra"] = extra
        with self._lock:
            self.records.append(record)
            if self.stream is not None:
                self.stream.write(_format(record) + "\n")
                self.stream.flush()

    def debug(self, *, operation: str, message: str, **kwargs: Any) -> None:
        self.log(operation=operation, message=message, level="debug", **kwargs)

    def info(self, *, operation: str, message: str, **kwargs: Any) -> None:
        self.log(operation=operation, message=message, level="info", **kwargs)

    def warning(self, *, operation: str, message: str, **kwargs: Any) -> None:
        self.log(operation=operation, message=message, level="warning", **kwargs)

    def error(self, *, operation: str, message: str, **kwargs: Any) -> None:
        self.log(operation=operation, message=message, level="error", **kwargs)

    def records_for(self, subject: str) -> list[dict[str, Any]]:
        return [record for record in self.records if record.get("subject") == subject]

    def to_json_lines(self, path: str | Path) -> Path:
        output_path = Path(path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        lines = [json.dumps(record, sort_keys=True) for record in self.records]
        output_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return output_path


def _format(record: dict[str, Any]) -> str:
    prefix = f"[{record['level'].upper()}] {record['operation']}"
    subject = record.get("subject")
    if subject:
        version = record.get("version")
        prefix += f" {subject}" + (f"@{version}" if version else "")
    return f"{prefix}: {record['message']}"
