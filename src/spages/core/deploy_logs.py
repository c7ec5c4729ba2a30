"""Per-deployment log sink."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import TextIO

from spages.core.broadcaster import EventBroadcaster
from spages.db.store import format_log_line
from spages.models.deployment import LogEntry, LogLevel

logger = logging.getLogger(__name__)

_STDLIB_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.SUCCESS: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


class DeploymentLogger:
    """Write deployment progress to its log file and the project's log stream."""

    def __init__(
        self,
        project_id: str,
        project_name: str,
        log_file: Path,
        broadcaster: EventBroadcaster | None = None,
    ) -> None:
        self.project_id = project_id
        self.project_name = project_name
        self.log_file = log_file
        self.entries: list[LogEntry] = []
        self._broadcaster = broadcaster
        self.log_file.parent.mkdir(parents=True, exist_ok=True)
        self._handle: TextIO | None = self.log_file.open("a", encoding="utf-8")

    def log(self, message: object, level: LogLevel = LogLevel.INFO) -> LogEntry:
        text = "" if message is None else str(message)
        timestamp = datetime.now(UTC).isoformat(timespec="milliseconds")
        entry = LogEntry(
            timestamp=timestamp.replace("+00:00", "Z"),
            type=level,
            message=text,
        )
        self.entries.append(entry)
        if self._handle is not None:
            self._handle.write(format_log_line(entry.timestamp, level, text))
            self._handle.flush()
        logger.log(_STDLIB_LEVELS[level], "[%s] %s", self.project_name, text)
        if self._broadcaster is not None:
            self._broadcaster.publish_log(self.project_id, entry.model_dump(mode="json"))
        return entry

    def info(self, message: object) -> LogEntry:
        return self.log(message, LogLevel.INFO)

    def success(self, message: object) -> LogEntry:
        return self.log(message, LogLevel.SUCCESS)

    def warn(self, message: object) -> LogEntry:
        return self.log(message, LogLevel.WARN)

    def error(self, message: object) -> LogEntry:
        return self.log(message, LogLevel.ERROR)

    def output(self, text: str) -> None:
        """Log subprocess output, skipping whitespace-only chunks."""
        stripped = text.strip()
        if stripped:
            self.info(stripped)

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    def __enter__(self) -> DeploymentLogger:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
