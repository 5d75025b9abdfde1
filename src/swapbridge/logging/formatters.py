"""Formatters for bridge log entries.

JSON lines are the default for the node; the text form is easier to read
when running it by hand.
"""

import json
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .core import LogEntry, LogFormatter

# Context fields shown by the text formatter, with their short labels
_TEXT_LABELS = (
    ("component", "component"),
    ("operation", "operation"),
    ("swap_key", "swap"),
    ("request_id", "request"),
)


def iso_timestamp(timestamp: float) -> str:
    """UTC ISO-8601 with microseconds and a ``Z`` suffix."""
    moment = datetime.fromtimestamp(timestamp, tz=timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class JSONFormatter(LogFormatter):
    """One JSON object per entry. Empty context fields are omitted."""

    def __init__(self, include_traceback: bool = True, indent: Optional[int] = None):
        self.include_traceback = include_traceback
        self.indent = indent

    def format(self, entry: LogEntry) -> str:
        record: Dict[str, Any] = {
            "timestamp": iso_timestamp(entry.timestamp),
            "level": entry.level.value,
            "logger": entry.logger_name,
            "message": entry.message,
            "process_id": entry.process_id,
        }

        context = {key: value for key, value in entry.context.to_dict().items() if value}
        if context:
            record["context"] = context
        if entry.extra:
            record["extra"] = entry.extra
        if entry.exception is not None:
            record["exception"] = self._describe(entry.exception)

        return json.dumps(record, indent=self.indent, default=str)

    def _describe(self, exc: BaseException) -> Dict[str, Any]:
        described: Dict[str, Any] = {"type": type(exc).__name__, "message": str(exc)}
        if self.include_traceback and exc.__traceback__ is not None:
            described["traceback"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        return described


class TextFormatter(LogFormatter):
    """``<time> [LEVEL] logger: message | key=value ...``"""

    def __init__(self, time_format: str = "%Y-%m-%d %H:%M:%S"):
        self.time_format = time_format

    def format(self, entry: LogEntry) -> str:
        moment = datetime.fromtimestamp(entry.timestamp, tz=timezone.utc)
        parts = [f"{moment.strftime(self.time_format)} [{entry.level.value.upper()}] {entry.logger_name}: {entry.message}"]

        labels = " ".join(
            f"{label}={getattr(entry.context, name)}"
            for name, label in _TEXT_LABELS
            if getattr(entry.context, name)
        )
        if labels:
            parts.append(labels)
        if entry.exception is not None:
            parts.append(f"{type(entry.exception).__name__}: {entry.exception}")

        return " | ".join(parts)
