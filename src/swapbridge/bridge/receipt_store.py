"""
Proof-of-Swap receipt storage.

Rows hold the sealed payload plus the swap id, direction and timestamp,
which are enough to find, list and expire receipts without the passphrase.
Receipts are written once and never updated; recording the same swap twice
is a no-op because the swap id is derived from the ledger key.
"""

import time
from typing import Callable, List, Optional

from ..crypto import EncryptedData
from ..logging import get_logger
from ..storage import SQLiteBackend
from .bridge_types import Receipt, SwapDirection

logger = get_logger(__name__)

_COLUMNS = "swap_id, direction, timestamp, ciphertext, salt, iv, tag, kdf_iterations"


class ReceiptStore:
    """SQLite-backed store of sealed receipts."""

    def __init__(self, backend: SQLiteBackend, clock: Callable[[], float] = time.time):
        self.backend = backend
        self._clock = clock

    @staticmethod
    def _from_row(row) -> Receipt:
        return Receipt(
            swap_id=row["swap_id"],
            direction=SwapDirection(row["direction"]),
            timestamp=row["timestamp"],
            encrypted_payload=EncryptedData(
                ciphertext=bytes(row["ciphertext"]),
                salt=bytes(row["salt"]),
                iv=bytes(row["iv"]),
                tag=bytes(row["tag"]),
                iterations=row["kdf_iterations"],
                created_at=int(row["timestamp"]),
            ),
        )

    def record(self, receipt: Receipt) -> Receipt:
        """Persist a receipt; an existing receipt with the same id wins."""
        sealed = receipt.encrypted_payload
        result = self.backend.execute_query(
            f"INSERT OR IGNORE INTO receipts ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                receipt.swap_id,
                receipt.direction.value,
                receipt.timestamp,
                sealed.ciphertext,
                sealed.salt,
                sealed.iv,
                sealed.tag,
                sealed.iterations,
            ),
        )
        if result.affected_rows == 0:
            existing = self.get(receipt.swap_id)
            if existing is not None:
                return existing
        logger.info(f"Recorded {receipt.direction.value} receipt {receipt.swap_id}")
        return receipt

    def get(self, swap_id: str) -> Optional[Receipt]:
        """Get a receipt by swap id."""
        result = self.backend.execute_query(
            f"SELECT {_COLUMNS} FROM receipts WHERE swap_id = ?", (swap_id,)
        )
        return self._from_row(result.rows[0]) if result.rows else None

    def list_between(self, start: float, end: float, limit: int = 1000) -> List[Receipt]:
        """Receipts with ``start <= timestamp < end``, oldest first."""
        result = self.backend.execute_query(
            f"""
            SELECT {_COLUMNS} FROM receipts
            WHERE timestamp >= ? AND timestamp < ?
            ORDER BY timestamp LIMIT ?
            """,
            (start, end, limit),
        )
        return [self._from_row(row) for row in result.rows]

    def purge_expired(self, retention_seconds: float) -> int:
        """Delete receipts older than the retention window; returns the count."""
        cutoff = self._clock() - retention_seconds
        result = self.backend.execute_query("DELETE FROM receipts WHERE timestamp < ?", (cutoff,))
        if result.affected_rows:
            logger.info(f"Purged {result.affected_rows} receipts older than {cutoff:.0f}")
        return result.affected_rows

    def count(self) -> int:
        """Number of stored receipts."""
        result = self.backend.execute_query("SELECT COUNT(*) AS n FROM receipts")
        return result.rows[0]["n"]
