"""Output sinks for bridge log entries."""

import sys
from collections import deque
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional, TextIO

from .core import LogEntry, LogFormatter, LogHandler


class ConsoleHandler(LogHandler):
    """Writes one line per entry to a process stream (stderr by default)."""

    def __init__(self, stream: Optional[TextIO] = None, formatter: Optional[LogFormatter] = None):
        super().__init__(formatter)
        self.stream = stream or sys.stderr

    def emit(self, entry: LogEntry) -> None:
        print(self.render(entry), file=self.stream, flush=True)

    def close(self) -> None:
        # The process owns the stream
        self.stream.flush()


class FileHandler(LogHandler):
    """Appends entries to a log file, creating its directory on first write."""

    def __init__(self, path: str, formatter: Optional[LogFormatter] = None, encoding: str = "utf-8"):
        super().__init__(formatter)
        self.path = Path(path)
        self.encoding = encoding
        self._file: Optional[TextIO] = None

    def emit(self, entry: LogEntry) -> None:
        if self._file is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file = self.path.open("a", encoding=self.encoding)
        self._file.write(self.render(entry) + "\n")
        self._file.flush()

    def close(self) -> None:
        with self._lock:
            if self._file is not None:
                self._file.close()
                self._file = None


class MemoryHandler(LogHandler):
    """Keeps the most recent entries as dictionaries. Used by tests and the
    operator debug views."""

    def __init__(self, capacity: int = 1000, formatter: Optional[LogFormatter] = None):
        super().__init__(formatter)
        self._records: Deque[Dict[str, Any]] = deque(maxlen=capacity)

    def emit(self, entry: LogEntry) -> None:
        record = entry.to_dict()
        record["formatted"] = self.render(entry)
        self._records.append(record)

    def get_logs(self, level: Optional[str] = None) -> List[Dict[str, Any]]:
        with self._lock:
            return [r for r in self._records if level is None or r["level"] == level]

    def close(self) -> None:
        with self._lock:
            self._records.clear()
