"""Durable storage for swapbridge."""

from .database import DatabaseConfig, DatabaseStats, QueryResult, SQLiteBackend

__all__ = [
    "DatabaseConfig",
    "DatabaseStats",
    "QueryResult",
    "SQLiteBackend",
]
