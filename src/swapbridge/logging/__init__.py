"""swapbridge logging system.

Structured logging for the bridge: JSON output by default, per-entry
context (component, operation, swap key), and redaction of registered
secret values before any handler sees an entry.
"""

from .core import (
    LogConfig,
    LogContext,
    LogEntry,
    LogFilter,
    LogFormatter,
    LogHandler,
    LogLevel,
    LogManager,
    LogProcessor,
    SwapBridgeLogger,
    get_log_manager,
    get_logger,
    setup_logging,
    shutdown_logging,
)
from .filters import ComponentFilter, LevelFilter, RedactionProcessor
from .formatters import JSONFormatter, TextFormatter
from .handlers import ConsoleHandler, FileHandler, MemoryHandler

__all__ = [
    # Core
    "LogLevel",
    "LogConfig",
    "LogContext",
    "LogEntry",
    "LogFormatter",
    "LogHandler",
    "LogManager",
    "LogFilter",
    "LogProcessor",
    "SwapBridgeLogger",
    "get_logger",
    "get_log_manager",
    "setup_logging",
    "shutdown_logging",
    # Formatters
    "JSONFormatter",
    "TextFormatter",
    # Handlers
    "ConsoleHandler",
    "FileHandler",
    "MemoryHandler",
    # Filters
    "LevelFilter",
    "ComponentFilter",
    "RedactionProcessor",
]
