"""SQLite storage shared by the swap ledger and the receipt store.

Every write that has to be atomic with a preceding read runs inside
``transaction()``, which issues ``BEGIN IMMEDIATE``: SQLite takes the write
lock before the first statement, so two bridge instances pointed at the same
database file serialize on it.
"""

import sqlite3
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from ..errors import StorageError
from ..logging import get_logger

logger = get_logger(__name__)

Params = Optional[Union[Dict[str, Any], Tuple[Any, ...]]]

MEMORY_DATABASE = ":memory:"

# Ledger rows are never deleted; receipts are purged after their retention.
SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS ledger_entries (
        key TEXT PRIMARY KEY,
        direction TEXT NOT NULL,
        status TEXT NOT NULL,
        amount INTEGER,
        counterparty_address TEXT,
        base_chain_reference TEXT,
        wrapped_chain_reference TEXT,
        submission_reference TEXT,
        submission_tx_hash TEXT,
        failure_reason TEXT,
        failure_retryable INTEGER NOT NULL DEFAULT 0,
        attempts INTEGER NOT NULL DEFAULT 1,
        lease_owner TEXT,
        lease_expires_at REAL,
        created_at REAL NOT NULL,
        updated_at REAL NOT NULL,
        executed_at REAL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS receipts (
        swap_id TEXT PRIMARY KEY,
        direction TEXT NOT NULL,
        timestamp REAL NOT NULL,
        ciphertext BLOB NOT NULL,
        salt BLOB NOT NULL,
        iv BLOB NOT NULL,
        tag BLOB NOT NULL,
        kdf_iterations INTEGER NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_ledger_status ON ledger_entries(status)",
    "CREATE INDEX IF NOT EXISTS idx_ledger_lease ON ledger_entries(lease_expires_at)",
    # One chain transaction can settle only one swap
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_ledger_submission_tx
    ON ledger_entries(direction, submission_tx_hash) WHERE submission_tx_hash IS NOT NULL
    """,
    "CREATE INDEX IF NOT EXISTS idx_receipts_timestamp ON receipts(timestamp)",
)


@dataclass
class DatabaseConfig:
    """Where the bridge database lives and how SQLite is tuned."""

    database_path: str = "swapbridge.db"
    journal_mode: str = "WAL"
    synchronous: str = "FULL"
    busy_timeout_ms: int = 250
    slow_query_threshold: float = 1.0


@dataclass
class QueryResult:
    """Rows as column dictionaries plus the statement's row count."""

    rows: List[Dict[str, Any]] = field(default_factory=list)
    affected_rows: int = 0
    execution_time: float = 0.0

    @property
    def row_count(self) -> int:
        return len(self.rows)


@dataclass
class DatabaseStats:
    """Counters kept by a backend since it was created."""

    total_queries: int = 0
    total_transactions: int = 0
    failed_queries: int = 0
    slow_queries: int = 0
    total_execution_time: float = 0.0
    database_size: int = 0

    @property
    def average_execution_time(self) -> float:
        if not self.total_queries:
            return 0.0
        return self.total_execution_time / self.total_queries


class SQLiteBackend:
    """One SQLite connection guarded by a re-entrant lock.

    The connection runs in autocommit mode; ``transaction()`` is the only
    place a transaction is opened.
    """

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self._connection: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._in_transaction = False
        self._stats = DatabaseStats()

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    def connect(self) -> None:
        """Open the database file and make sure the schema exists."""
        with self._lock:
            if self._connection is not None:
                return
            path = self.config.database_path
            if path != MEMORY_DATABASE:
                Path(path).parent.mkdir(parents=True, exist_ok=True)
            try:
                connection = sqlite3.connect(
                    path,
                    timeout=self.config.busy_timeout_ms / 1000.0,
                    isolation_level=None,
                    check_same_thread=False,
                )
                connection.execute(f"PRAGMA journal_mode = {self.config.journal_mode}")
                connection.execute(f"PRAGMA synchronous = {self.config.synchronous}")
                connection.execute(f"PRAGMA busy_timeout = {self.config.busy_timeout_ms}")
                for statement in SCHEMA:
                    connection.execute(statement)
            except sqlite3.Error as e:
                raise StorageError(
                    f"Cannot open database {path}: {e}",
                    storage_type="sqlite",
                    operation="connect",
                    cause=e,
                )
            self._connection = connection
            logger.info(f"Opened bridge database {path}")

    def disconnect(self) -> None:
        with self._lock:
            connection, self._connection = self._connection, None
            if connection is None:
                return
            try:
                connection.close()
            except sqlite3.Error as e:
                logger.error(f"Closing bridge database failed: {e}")

    def _require_connection(self, operation: str) -> sqlite3.Connection:
        if self._connection is None:
            raise StorageError("Database not connected", storage_type="sqlite", operation=operation)
        return self._connection

    def _run(self, query: str, params: Params) -> QueryResult:
        started = time.monotonic()
        cursor = self._connection.execute(query, params or ())
        columns = [column[0] for column in cursor.description or ()]
        rows = [dict(zip(columns, values)) for values in cursor.fetchall()]
        elapsed = time.monotonic() - started

        self._stats.total_queries += 1
        self._stats.total_execution_time += elapsed
        if elapsed > self.config.slow_query_threshold:
            self._stats.slow_queries += 1
            logger.warning(f"Slow query ({elapsed:.3f}s): {query.strip()[:100]}")

        return QueryResult(rows=rows, affected_rows=max(cursor.rowcount, 0), execution_time=elapsed)

    def execute_query(self, query: str, params: Params = None) -> QueryResult:
        """Run one statement. Outside ``transaction()`` it commits on its own."""
        with self._lock:
            self._require_connection("query")
            try:
                return self._run(query, params)
            except sqlite3.Error as e:
                self._stats.failed_queries += 1
                raise StorageError(
                    f"Query failed: {e}", storage_type="sqlite", operation="query", cause=e
                )

    @contextmanager
    def transaction(self, immediate: bool = True) -> Iterator["SQLiteBackend"]:
        """Hold the backend lock and one SQLite transaction for the block.

        Any exception rolls back. SQLite errors are re-raised as
        ``StorageError``; everything else propagates unchanged.
        """
        with self._lock:
            connection = self._require_connection("transaction")
            if self._in_transaction:
                raise StorageError(
                    "Nested transactions are not supported",
                    storage_type="sqlite",
                    operation="transaction",
                    retryable=False,
                )
            try:
                connection.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
            except sqlite3.Error as e:
                raise StorageError(
                    f"Cannot begin transaction: {e}",
                    storage_type="sqlite",
                    operation="transaction",
                    cause=e,
                )

            self._in_transaction = True
            try:
                yield self
                connection.execute("COMMIT")
            except sqlite3.Error as e:
                self._rollback(connection)
                self._stats.failed_queries += 1
                raise StorageError(
                    f"Transaction failed: {e}", storage_type="sqlite", operation="transaction", cause=e
                )
            except BaseException:
                self._rollback(connection)
                raise
            else:
                self._stats.total_transactions += 1
            finally:
                self._in_transaction = False

    @staticmethod
    def _rollback(connection: sqlite3.Connection) -> None:
        try:
            connection.execute("ROLLBACK")
        except sqlite3.Error as e:
            logger.error(f"Rollback failed: {e}")

    def get_stats(self) -> DatabaseStats:
        """Snapshot of the counters plus the current file size."""
        with self._lock:
            return replace(self._stats, database_size=self._file_size())

    def _file_size(self) -> int:
        path = Path(self.config.database_path)
        if self.config.database_path == MEMORY_DATABASE or not path.exists():
            return 0
        return path.stat().st_size

    def __enter__(self) -> "SQLiteBackend":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.disconnect()
