"""
Durable swap ledger.

The ledger is the only authority on whether a swap request key was already
processed. It lives in SQLite so a crash between the chain effect and the
receipt never loses the "already done" fact, and so that several bridge
processes sharing one database file still agree on who owns a key.

Status graph::

    Pending -> Verified -> Executed
    Pending | Verified -> Failed
    Failed (retryable) -> Pending          (re-reservation)

``Executed`` is terminal: no statement in this module can match an executed
row.
"""

import sqlite3
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

from ..errors import AlreadyReserved, InvalidTransition, LedgerError, StorageError
from ..logging import LogContext, get_logger
from ..storage import SQLiteBackend
from .bridge_types import ChainReference, LedgerEntry, LedgerStatus, Reservation, SwapDirection

logger = get_logger(__name__)

_OPEN_STATUSES = (LedgerStatus.PENDING, LedgerStatus.VERIFIED)


def _status_clause(statuses: Sequence[LedgerStatus]) -> Tuple[str, Tuple[str, ...]]:
    placeholders = ", ".join("?" for _ in statuses)
    return f"status IN ({placeholders})", tuple(s.value for s in statuses)


class SwapLedger:
    """SQLite-backed idempotency store keyed by swap request key."""

    def __init__(
        self,
        backend: SQLiteBackend,
        lease_seconds: float = 900.0,
        clock: Callable[[], float] = time.time,
    ):
        self.backend = backend
        self.lease_seconds = lease_seconds
        self._clock = clock

    def _context(self, operation: str, key: str) -> LogContext:
        return LogContext(component="swap_ledger", operation=operation, swap_key=key)

    def reserve(
        self,
        key: str,
        direction: SwapDirection,
        amount: Optional[int] = None,
        counterparty: Optional[str] = None,
        owner: Optional[str] = None,
    ) -> Reservation:
        """Claim ``key`` for one worker.

        Raises AlreadyReserved carrying the existing entry when the key is
        executed, permanently failed, or still leased by another worker.
        """
        now = self._clock()
        owner = owner or uuid.uuid4().hex
        expires_at = now + self.lease_seconds

        result = self.backend.execute_query(
            """
            INSERT OR IGNORE INTO ledger_entries (
                key, direction, status, amount, counterparty_address,
                attempts, lease_owner, lease_expires_at, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, 1, ?, ?, ?, ?)
            """,
            (
                key,
                direction.value,
                LedgerStatus.PENDING.value,
                amount,
                counterparty,
                owner,
                expires_at,
                now,
                now,
            ),
        )
        if result.affected_rows == 1:
            logger.debug(f"Reserved ledger key {key}", context=self._context("reserve", key))
            return Reservation(
                key=key, direction=direction, lease_owner=owner, lease_expires_at=expires_at
            )

        return self._take_over(key, direction, amount, counterparty, owner, now, expires_at)

    def _take_over(
        self,
        key: str,
        direction: SwapDirection,
        amount: Optional[int],
        counterparty: Optional[str],
        owner: str,
        now: float,
        expires_at: float,
    ) -> Reservation:
        with self.backend.transaction(immediate=True):
            entry = self._fetch(key)
            if entry is None:
                # Rows are never deleted, so this means the insert failed for another reason
                raise InvalidTransition(key, LedgerStatus.PENDING.value)

            retryable_failure = entry.status == LedgerStatus.FAILED and entry.failure_retryable
            abandoned = entry.status in _OPEN_STATUSES and not entry.lease_is_live(now)
            if entry.direction != direction or not (retryable_failure or abandoned):
                raise AlreadyReserved(key, entry)

            new_status = LedgerStatus.PENDING if retryable_failure else entry.status
            clause, params = _status_clause(
                (LedgerStatus.FAILED,) if retryable_failure else _OPEN_STATUSES
            )
            result = self.backend.execute_query(
                f"""
                UPDATE ledger_entries SET
                    status = ?,
                    amount = COALESCE(amount, ?),
                    counterparty_address = COALESCE(counterparty_address, ?),
                    failure_reason = NULL,
                    failure_retryable = 0,
                    attempts = attempts + 1,
                    lease_owner = ?,
                    lease_expires_at = ?,
                    updated_at = ?
                WHERE key = ? AND {clause}
                """,
                (new_status.value, amount, counterparty, owner, expires_at, now, key) + params,
            )
            if result.affected_rows != 1:
                raise AlreadyReserved(key, entry)

        logger.info(
            f"Took over ledger key {key} from {entry.status.value} entry "
            f"(attempt {entry.attempts + 1})",
            context=self._context("reserve", key),
        )
        return Reservation(
            key=key,
            direction=direction,
            lease_owner=owner,
            lease_expires_at=expires_at,
            attempts=entry.attempts + 1,
            taken_over=True,
            previous=entry,
        )

    def _transition(
        self,
        key: str,
        target: LedgerStatus,
        allowed: Sequence[LedgerStatus],
        assignments: Dict[str, Any],
        owner: Optional[str] = None,
        raw_assignments: Sequence[str] = (),
        raw_params: Sequence[Any] = (),
    ) -> LedgerEntry:
        """Apply a conditional update and return the updated entry."""
        assignments = dict(assignments)
        assignments["updated_at"] = self._clock()
        set_parts = [f"{column} = ?" for column in assignments] + list(raw_assignments)
        clause, status_params = _status_clause(allowed)
        query = f"UPDATE ledger_entries SET {', '.join(set_parts)} WHERE key = ? AND {clause}"
        params: Tuple[Any, ...] = (
            tuple(assignments.values()) + tuple(raw_params) + (key,) + status_params
        )
        if owner is not None:
            query += " AND lease_owner = ?"
            params += (owner,)

        with self.backend.transaction(immediate=True):
            result = self.backend.execute_query(query, params)
            entry = self._fetch(key)

        if result.affected_rows != 1:
            raise InvalidTransition(
                key, target.value, entry.status.value if entry is not None else None
            )
        return entry

    def mark_verified(
        self,
        key: str,
        amount: int,
        base_chain_reference: Optional[str] = None,
        wrapped_chain_reference: Optional[str] = None,
        owner: Optional[str] = None,
        counterparty: Optional[str] = None,
    ) -> LedgerEntry:
        """Record the verified amount and counterparty; both replace claimed ones."""
        entry = self._transition(
            key,
            LedgerStatus.VERIFIED,
            _OPEN_STATUSES,
            {"status": LedgerStatus.VERIFIED.value, "amount": amount},
            owner=owner,
            raw_assignments=(
                "base_chain_reference = COALESCE(?, base_chain_reference)",
                "wrapped_chain_reference = COALESCE(?, wrapped_chain_reference)",
                "counterparty_address = COALESCE(?, counterparty_address)",
            ),
            raw_params=(base_chain_reference, wrapped_chain_reference, counterparty),
        )
        logger.debug(f"Ledger key {key} verified for {amount}", context=self._context("verify", key))
        return entry

    def record_submission(
        self, key: str, reference: ChainReference, owner: Optional[str] = None
    ) -> LedgerEntry:
        """Remember where the chain effect was sent, for crash reconciliation.

        A transaction hash can belong to one entry per direction only.
        Recording one that another entry already holds raises a retryable
        LedgerError.
        """
        try:
            return self._transition(
                key,
                LedgerStatus.VERIFIED,
                _OPEN_STATUSES,
                {
                    "submission_reference": reference.to_json(),
                    "submission_tx_hash": reference.tx_hash,
                },
                owner=owner,
            )
        except StorageError as e:
            if not isinstance(e.cause, sqlite3.IntegrityError):
                raise
            raise LedgerError(
                f"Chain transaction {reference.tx_hash} already settles another swap",
                key=key,
                error_code="reference_taken",
                retryable=True,
                cause=e,
            )

    def claimed_references(self, direction: SwapDirection, exclude_key: str) -> Set[str]:
        """Chain transaction hashes already tied to other entries of ``direction``."""
        result = self.backend.execute_query(
            """
            SELECT submission_tx_hash, base_chain_reference, wrapped_chain_reference
            FROM ledger_entries WHERE direction = ? AND key != ?
            """,
            (direction.value, exclude_key),
        )
        column = (
            "wrapped_chain_reference"
            if direction == SwapDirection.DEPOSIT_TO_WRAPPED
            else "base_chain_reference"
        )
        claimed: Set[str] = set()
        for row in result.rows:
            claimed.update(value for value in (row["submission_tx_hash"], row[column]) if value)
        return claimed

    def mark_executed(
        self, key: str, chain_reference: str, owner: Optional[str] = None
    ) -> LedgerEntry:
        """Make the entry terminal with the reference of the chain effect.

        The reference lands in the column of the chain that carried the
        effect: the wrapped chain for deposits, the base chain for redeems.
        """
        now = self._clock()
        entry = self._transition(
            key,
            LedgerStatus.EXECUTED,
            (LedgerStatus.VERIFIED,),
            {
                "status": LedgerStatus.EXECUTED.value,
                "executed_at": now,
                "lease_owner": None,
                "lease_expires_at": None,
            },
            owner=owner,
            raw_assignments=(
                "wrapped_chain_reference = CASE WHEN direction = ? "
                "THEN ? ELSE wrapped_chain_reference END",
                "base_chain_reference = CASE WHEN direction = ? "
                "THEN ? ELSE base_chain_reference END",
            ),
            raw_params=(
                SwapDirection.DEPOSIT_TO_WRAPPED.value,
                chain_reference,
                SwapDirection.WRAPPED_TO_DEPOSIT.value,
                chain_reference,
            ),
        )
        logger.info(f"Ledger key {key} executed", context=self._context("execute", key))
        return entry

    def mark_failed(
        self, key: str, reason: str, retryable: bool, owner: Optional[str] = None
    ) -> LedgerEntry:
        """Record a failure; retryable failures may be re-reserved later."""
        entry = self._transition(
            key,
            LedgerStatus.FAILED,
            _OPEN_STATUSES,
            {
                "status": LedgerStatus.FAILED.value,
                "failure_reason": reason,
                "failure_retryable": 1 if retryable else 0,
                "lease_owner": None,
                "lease_expires_at": None,
            },
            owner=owner,
        )
        logger.warning(
            f"Ledger key {key} failed ({'retryable' if retryable else 'terminal'}): {reason}",
            context=self._context("fail", key),
        )
        return entry

    def release(self, key: str, owner: Optional[str] = None) -> LedgerEntry:
        """Drop the lease so a resubmitted request can take the entry over."""
        return self._transition(
            key,
            LedgerStatus.PENDING,
            _OPEN_STATUSES,
            {"lease_owner": None, "lease_expires_at": None},
            owner=owner,
        )

    def renew_lease(self, key: str, owner: str) -> LedgerEntry:
        """Extend the lease of a worker that is still busy with the entry."""
        return self._transition(
            key,
            LedgerStatus.PENDING,
            _OPEN_STATUSES,
            {"lease_expires_at": self._clock() + self.lease_seconds},
            owner=owner,
        )

    def _fetch(self, key: str) -> Optional[LedgerEntry]:
        result = self.backend.execute_query("SELECT * FROM ledger_entries WHERE key = ?", (key,))
        return LedgerEntry.from_row(result.rows[0]) if result.rows else None

    def lookup(self, key: str) -> Optional[LedgerEntry]:
        """Get the entry for a key."""
        return self._fetch(key)

    def list_stale(self, now: Optional[float] = None, limit: int = 100) -> List[LedgerEntry]:
        """Open entries whose worker lease ran out without being released."""
        now = self._clock() if now is None else now
        clause, params = _status_clause(_OPEN_STATUSES)
        result = self.backend.execute_query(
            f"""
            SELECT * FROM ledger_entries
            WHERE {clause} AND lease_expires_at IS NOT NULL AND lease_expires_at <= ?
            ORDER BY lease_expires_at LIMIT ?
            """,
            params + (now, limit),
        )
        return [LedgerEntry.from_row(row) for row in result.rows]

    def list_by_status(self, status: LedgerStatus, limit: int = 100) -> List[LedgerEntry]:
        """Entries with the given status, oldest first."""
        result = self.backend.execute_query(
            "SELECT * FROM ledger_entries WHERE status = ? ORDER BY created_at LIMIT ?",
            (status.value, limit),
        )
        return [LedgerEntry.from_row(row) for row in result.rows]

    def statistics(self) -> Dict[str, Any]:
        """Entry counts per status and direction."""
        result = self.backend.execute_query(
            "SELECT status, direction, COUNT(*) AS n FROM ledger_entries GROUP BY status, direction"
        )
        by_status = {status.value: 0 for status in LedgerStatus}
        by_direction = {direction.value: 0 for direction in SwapDirection}
        for row in result.rows:
            by_status[row["status"]] = by_status.get(row["status"], 0) + row["n"]
            by_direction[row["direction"]] = by_direction.get(row["direction"], 0) + row["n"]
        return {
            "total": sum(by_status.values()),
            "by_status": by_status,
            "by_direction": by_direction,
        }
