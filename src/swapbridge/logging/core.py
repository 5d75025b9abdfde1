"""Core logging types for swapbridge.

Entries flow from a named ``SwapBridgeLogger`` into the process-wide
``LogManager``, which stamps the shared context onto them, runs the
processors (redaction first of all) and fans the result out to handlers.
"""

import json
import os
import sys
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from functools import partialmethod
from typing import Any, Dict, Iterable, List, Optional


class LogLevel(Enum):
    """Log levels, lowest first."""

    TRACE = "trace"
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RANKS[self]


_RANKS = {level: rank for rank, level in enumerate(LogLevel)}


_CONTEXT_FIELDS = ("component", "operation", "request_id", "swap_key", "instance_id")


@dataclass
class LogContext:
    """Where an entry came from: component, operation and the swap involved."""

    component: Optional[str] = None
    operation: Optional[str] = None
    request_id: Optional[str] = None
    swap_key: Optional[str] = None
    instance_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def merged_with(self, other: Optional["LogContext"]) -> "LogContext":
        """Fields set on ``other`` win over fields set here."""
        if other is None:
            return LogContext(metadata=dict(self.metadata), **self._fields())
        merged = {
            name: getattr(other, name) or getattr(self, name) for name in _CONTEXT_FIELDS
        }
        return LogContext(metadata={**self.metadata, **other.metadata}, **merged)

    def _fields(self) -> Dict[str, Optional[str]]:
        return {name: getattr(self, name) for name in _CONTEXT_FIELDS}

    def to_dict(self) -> Dict[str, Any]:
        return {**self._fields(), "metadata": self.metadata}


@dataclass
class LogEntry:
    """A single log record after context merging."""

    timestamp: float
    level: LogLevel
    message: str
    logger_name: str
    context: LogContext
    exception: Optional[BaseException] = None
    extra: Dict[str, Any] = field(default_factory=dict)
    thread_id: int = field(default_factory=threading.get_ident)
    process_id: int = field(default_factory=os.getpid)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "timestamp": self.timestamp,
            "level": self.level.value,
            "message": self.message,
            "logger_name": self.logger_name,
            "context": self.context.to_dict(),
            "extra": self.extra,
            "thread_id": self.thread_id,
            "process_id": self.process_id,
        }
        data["exception"] = str(self.exception) if self.exception else None
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


class LogConfig:
    """Logging section of the bridge configuration.

    ``redact_values`` seeds the redaction processor and is never exported
    by ``to_dict``.
    """

    def __init__(
        self,
        name: str = "swapbridge",
        level: LogLevel = LogLevel.INFO,
        format_type: str = "json",
        handlers: Optional[List[str]] = None,
        log_file: Optional[str] = None,
        redact_values: Optional[Iterable[str]] = None,
    ):
        self.name = name
        self.level = level
        self.format_type = format_type
        self.handlers = ["console"] if handlers is None else list(handlers)
        self.log_file = log_file
        self.redact_values = list(redact_values or ())

    @classmethod
    def from_dict(cls, section: Dict[str, Any]) -> "LogConfig":
        return cls(
            name=section.get("name", "swapbridge"),
            level=LogLevel(section.get("level", LogLevel.INFO.value)),
            format_type=section.get("format_type", "json"),
            handlers=section.get("handlers"),
            log_file=section.get("log_file"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "level": self.level.value,
            "format_type": self.format_type,
            "handlers": list(self.handlers),
            "log_file": self.log_file,
        }


class LogFilter(ABC):
    """Decides whether a handler sees an entry."""

    @abstractmethod
    def filter(self, entry: LogEntry) -> bool:
        """Return True to let the entry through."""


class LogFormatter(ABC):
    """Turns an entry into one line of output."""

    @abstractmethod
    def format(self, entry: LogEntry) -> str:
        """Render ``entry``."""


class LogProcessor(ABC):
    """Rewrites entries before any handler sees them."""

    @abstractmethod
    def process(self, entry: LogEntry) -> LogEntry:
        """Return the entry to hand on."""


class LogHandler(ABC):
    """Output sink with its own threshold, filters and formatter."""

    def __init__(
        self,
        formatter: Optional[LogFormatter] = None,
        level: LogLevel = LogLevel.DEBUG,
    ):
        self.formatter = formatter
        self.level = level
        self.filters: List[LogFilter] = []
        self._lock = threading.RLock()

    def set_formatter(self, formatter: LogFormatter) -> None:
        self.formatter = formatter

    def add_filter(self, filter_obj: LogFilter) -> None:
        with self._lock:
            self.filters.append(filter_obj)

    def accepts(self, entry: LogEntry) -> bool:
        if entry.level.rank < self.level.rank:
            return False
        return all(f.filter(entry) for f in self.filters)

    def render(self, entry: LogEntry) -> str:
        if self.formatter is not None:
            return self.formatter.format(entry)
        return f"{entry.timestamp:.3f} {entry.level.value.upper()} {entry.logger_name}: {entry.message}"

    @abstractmethod
    def emit(self, entry: LogEntry) -> None:
        """Write an accepted entry."""

    def handle(self, entry: LogEntry) -> None:
        with self._lock:
            if self.accepts(entry):
                self.emit(entry)

    def close(self) -> None:
        """Release the sink; the default has nothing to release."""


class LogManager:
    """Routes entries from every bridge logger to the installed handlers."""

    def __init__(self, config: Optional[LogConfig] = None):
        self.config = config or LogConfig()
        self.loggers: Dict[str, "SwapBridgeLogger"] = {}
        self.handlers: Dict[str, LogHandler] = {}
        self.processors: List[LogProcessor] = []
        self._context = LogContext()
        self._lock = threading.RLock()
        self._install_from_config()

    def _install_from_config(self) -> None:
        from .filters import RedactionProcessor
        from .formatters import JSONFormatter, TextFormatter
        from .handlers import ConsoleHandler, FileHandler

        if self.config.format_type == "text":
            formatter: LogFormatter = TextFormatter()
        else:
            formatter = JSONFormatter()

        for sink in self.config.handlers:
            if sink == "console":
                self.handlers[sink] = ConsoleHandler(sys.stderr, formatter=formatter)
            elif sink == "file" and self.config.log_file:
                self.handlers[sink] = FileHandler(self.config.log_file, formatter=formatter)

        self.processors.append(RedactionProcessor(self.config.redact_values))

    def get_logger(self, name: str) -> "SwapBridgeLogger":
        with self._lock:
            return self.loggers.setdefault(name, SwapBridgeLogger(name))

    def add_handler(self, name: str, handler: LogHandler) -> None:
        with self._lock:
            previous = self.handlers.get(name)
            self.handlers[name] = handler
        if previous is not None and previous is not handler:
            previous.close()

    def redact(self, *values: str) -> None:
        """Register secret values that must never reach a handler."""
        from .filters import RedactionProcessor

        with self._lock:
            for processor in self.processors:
                if isinstance(processor, RedactionProcessor):
                    processor.add_values(values)

    def set_context(self, context: LogContext) -> None:
        """Context merged underneath every entry, e.g. the instance id."""
        self._context = context

    def log(
        self,
        level: LogLevel,
        message: str,
        logger_name: str = "root",
        context: Optional[LogContext] = None,
        exception: Optional[BaseException] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        entry = LogEntry(
            timestamp=time.time(),
            level=level,
            message=message,
            logger_name=logger_name,
            context=self._context.merged_with(context),
            exception=exception,
            extra=dict(extra or {}),
        )
        with self._lock:
            for processor in self.processors:
                entry = processor.process(entry)
            handlers = list(self.handlers.values())
        for handler in handlers:
            handler.handle(entry)

    def shutdown(self) -> None:
        with self._lock:
            handlers = list(self.handlers.values())
            self.handlers.clear()
            self.processors.clear()
            self.loggers.clear()
        for handler in handlers:
            handler.close()


class SwapBridgeLogger:
    """Named logger. The manager is looked up on every call so loggers
    created at import time follow a later ``setup_logging``."""

    def __init__(self, name: str):
        self.name = name
        self.level: Optional[LogLevel] = None

    def set_level(self, level: Optional[LogLevel]) -> None:
        self.level = level

    def log(
        self,
        level: LogLevel,
        message: str,
        context: Optional[LogContext] = None,
        exception: Optional[BaseException] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        manager = _get_manager()
        threshold = self.level or manager.config.level
        if level.rank < threshold.rank:
            return
        manager.log(level, message, self.name, context, exception, extra)

    trace = partialmethod(log, LogLevel.TRACE)
    debug = partialmethod(log, LogLevel.DEBUG)
    info = partialmethod(log, LogLevel.INFO)
    warning = partialmethod(log, LogLevel.WARNING)
    error = partialmethod(log, LogLevel.ERROR)
    critical = partialmethod(log, LogLevel.CRITICAL)

    def exception(self, message: str, **kwargs) -> None:
        """Log at ERROR with the exception currently being handled."""
        kwargs.setdefault("exception", sys.exc_info()[1])
        self.log(LogLevel.ERROR, message, **kwargs)


_manager: Optional[LogManager] = None
_manager_lock = threading.Lock()


def _get_manager() -> LogManager:
    global _manager
    with _manager_lock:
        if _manager is None:
            _manager = LogManager()
        return _manager


def get_logger(name: str = "root") -> SwapBridgeLogger:
    return _get_manager().get_logger(name)


def get_log_manager() -> LogManager:
    return _get_manager()


def setup_logging(config: LogConfig) -> LogManager:
    """Install a manager built from ``config``.

    Loggers and registered redaction values from the previous manager carry
    over; its handlers are closed.
    """
    from .filters import RedactionProcessor

    global _manager
    with _manager_lock:
        previous, _manager = _manager, LogManager(config)
        if previous is not None:
            _manager.loggers.update(previous.loggers)
            for processor in previous.processors:
                if isinstance(processor, RedactionProcessor):
                    _manager.redact(*processor.values)
            previous.shutdown()
        return _manager


def shutdown_logging() -> None:
    global _manager
    with _manager_lock:
        previous, _manager = _manager, None
    if previous is not None:
        previous.shutdown()
