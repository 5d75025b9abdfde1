"""Log filters and processors for swapbridge."""

import threading
from typing import Any, Iterable, List, Optional

from .core import LogEntry, LogFilter, LogLevel, LogProcessor

REDACTED = "***"


class LevelFilter(LogFilter):
    """Filter logs by level."""

    def __init__(self, min_level: LogLevel, max_level: Optional[LogLevel] = None):
        self.min_level = min_level
        self.max_level = max_level or LogLevel.CRITICAL

    def filter(self, entry: LogEntry) -> bool:
        """Filter log entry by level."""
        return self.min_level.rank <= entry.level.rank <= self.max_level.rank


class ComponentFilter(LogFilter):
    """Only pass entries logged with one of the given components."""

    def __init__(self, components: Iterable[str]):
        self.components = set(components)

    def filter(self, entry: LogEntry) -> bool:
        """Filter log entry by context component."""
        return entry.context.component in self.components


class RedactionProcessor(LogProcessor):
    """Replace registered secret values wherever they appear in an entry.

    Unlike a blocking filter this keeps the entry, so an accidental secret in
    an error message still produces a usable log line.
    """

    def __init__(self, values: Optional[Iterable[str]] = None):
        self._values: List[str] = []
        self._lock = threading.RLock()
        self.add_values(values or [])

    @property
    def values(self) -> List[str]:
        with self._lock:
            return list(self._values)

    def add_values(self, values: Iterable[str]) -> None:
        """Register more secret values."""
        with self._lock:
            for value in values:
                # Very short values would mangle ordinary text
                if value and len(value) >= 4 and value not in self._values:
                    self._values.append(value)
            self._values.sort(key=len, reverse=True)

    def _scrub(self, value: Any) -> Any:
        if isinstance(value, str):
            for secret in self._values:
                if secret in value:
                    value = value.replace(secret, REDACTED)
            return value
        if isinstance(value, dict):
            return {k: self._scrub(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [self._scrub(v) for v in value]
        return value

    def process(self, entry: LogEntry) -> LogEntry:
        """Scrub message, extra and context metadata."""
        with self._lock:
            if not self._values:
                return entry
            entry.message = self._scrub(entry.message)
            entry.extra = self._scrub(entry.extra)
            entry.context.metadata = self._scrub(entry.context.metadata)
            if entry.exception is not None and any(
                secret in str(entry.exception) for secret in self._values
            ):
                entry.extra = {**entry.extra, "exception_redacted": True}
                entry.exception = RedactedException(self._scrub(str(entry.exception)))
            return entry


class RedactedException(Exception):
    """Stand-in for an exception whose text contained a secret."""

    pass
