"""
Swap bridge types and data structures.

This module defines the requests, ledger records, chain references and
receipts exchanged between the coordinator and its collaborators.
"""

import hashlib
import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union

from ..crypto import EncryptedData
from ..errors import SwapBridgeError

BASE_CHAIN = "base"
WRAPPED_CHAIN = "wrapped"


class SwapDirection(Enum):
    """Direction of a swap."""

    DEPOSIT_TO_WRAPPED = "deposit_to_wrapped"
    WRAPPED_TO_DEPOSIT = "wrapped_to_deposit"


class LedgerStatus(Enum):
    """Durable status of a ledger entry."""

    PENDING = "pending"
    VERIFIED = "verified"
    EXECUTED = "executed"
    FAILED = "failed"


class SwapState(Enum):
    """Coordinator state of one swap request."""

    RECEIVED = "received"
    RESERVED = "reserved"
    PROOF_VERIFIED = "proof_verified"
    AWAITING_COSIGNATURE = "awaiting_cosignature"
    SUBMITTED = "submitted"
    COMPLETED = "completed"
    REJECTED = "rejected"
    FAILED = "failed"


class SubmissionStatus(Enum):
    """What a chain says about a submitted effect."""

    UNKNOWN = "unknown"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


def derive_swap_id(direction: SwapDirection, key: str) -> str:
    """Deterministic receipt id for a ledger key."""
    return hashlib.sha256(f"{direction.value}:{key}".encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class DepositClaim:
    """A user's claim that base-chain funds were sent to the custodial address."""

    base_tx_id: str
    base_tx_proof_key: str
    destination_wrapped_address: str
    claimed_amount: Optional[int] = None

    @property
    def ledger_key(self) -> str:
        return self.base_tx_id

    @property
    def direction(self) -> SwapDirection:
        return SwapDirection.DEPOSIT_TO_WRAPPED


def redeem_key(wrapped_sender_address: str, burn_reference: str) -> str:
    """Ledger key of a redeem: the burn it pays out for."""
    return f"{wrapped_sender_address}:{burn_reference}"


@dataclass(frozen=True)
class RedeemClaim:
    """A request to pay out base asset for burned wrapped tokens.

    The burn is identified by the burning account and the nonce the bridge
    contract assigned to it. Amount and destination are what the caller
    expects; the burn record on the wrapped chain is authoritative.
    """

    wrapped_burn_amount: Optional[int] = None
    destination_base_address: Optional[str] = None
    wrapped_sender_address: Optional[str] = None
    burn_reference: Optional[str] = None
    # Lets the bridge read the sender's burn records; never stored
    viewing_key: Optional[str] = field(default=None, repr=False)

    @property
    def ledger_key(self) -> Optional[str]:
        if not (self.wrapped_sender_address and self.burn_reference):
            return None
        return redeem_key(self.wrapped_sender_address, self.burn_reference)

    @property
    def direction(self) -> SwapDirection:
        return SwapDirection.WRAPPED_TO_DEPOSIT


SwapRequest = Union[DepositClaim, RedeemClaim]


@dataclass
class VerifiedProof:
    """A deposit proof confirmed by the base chain."""

    base_tx_id: str
    proof_key: str
    address: str
    amount: int
    confirmations: int
    in_pool: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary without the proof key."""
        return {
            "base_tx_id": self.base_tx_id,
            "address": self.address,
            "amount": self.amount,
            "confirmations": self.confirmations,
            "in_pool": self.in_pool,
        }


@dataclass
class VerifiedBurn:
    """A burn record read back from the bridge contract."""

    burn_reference: str
    sender: str
    destination_base_address: str
    amount: int


@dataclass
class ChainReference:
    """Handle for an effect submitted to a chain."""

    idempotency_key: str
    chain: str
    tx_hash: Optional[str] = None
    submitted_at: float = field(default_factory=time.time)
    destination: Optional[str] = None
    amount: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    # Payment proof of the effect; kept out of to_dict so it only reaches sealed receipts
    proof_key: Optional[str] = field(default=None, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary without the proof key."""
        return {
            "idempotency_key": self.idempotency_key,
            "chain": self.chain,
            "tx_hash": self.tx_hash,
            "submitted_at": self.submitted_at,
            "destination": self.destination,
            "amount": self.amount,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChainReference":
        """Create from dictionary."""
        return cls(
            idempotency_key=data["idempotency_key"],
            chain=data["chain"],
            tx_hash=data.get("tx_hash"),
            submitted_at=data.get("submitted_at", time.time()),
            destination=data.get("destination"),
            amount=data.get("amount"),
            metadata=data.get("metadata", {}),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    @classmethod
    def from_json(cls, raw: str) -> "ChainReference":
        return cls.from_dict(json.loads(raw))


@dataclass
class LedgerEntry:
    """Durable idempotency record for one swap request."""

    key: str
    direction: SwapDirection
    status: LedgerStatus
    created_at: float
    updated_at: float
    amount: Optional[int] = None
    counterparty_address: Optional[str] = None
    base_chain_reference: Optional[str] = None
    wrapped_chain_reference: Optional[str] = None
    submission_reference: Optional[ChainReference] = None
    failure_reason: Optional[str] = None
    failure_retryable: bool = False
    attempts: int = 1
    lease_owner: Optional[str] = None
    lease_expires_at: Optional[float] = None
    executed_at: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.status == LedgerStatus.EXECUTED or (
            self.status == LedgerStatus.FAILED and not self.failure_retryable
        )

    def lease_is_live(self, now: Optional[float] = None) -> bool:
        """Whether a worker still holds the entry."""
        if self.lease_expires_at is None:
            return False
        return self.lease_expires_at > (time.time() if now is None else now)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "LedgerEntry":
        """Create from a ``ledger_entries`` row."""
        submission = row.get("submission_reference")
        return cls(
            key=row["key"],
            direction=SwapDirection(row["direction"]),
            status=LedgerStatus(row["status"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            amount=row.get("amount"),
            counterparty_address=row.get("counterparty_address"),
            base_chain_reference=row.get("base_chain_reference"),
            wrapped_chain_reference=row.get("wrapped_chain_reference"),
            submission_reference=ChainReference.from_json(submission) if submission else None,
            failure_reason=row.get("failure_reason"),
            failure_retryable=bool(row.get("failure_retryable")),
            attempts=row.get("attempts") or 1,
            lease_owner=row.get("lease_owner"),
            lease_expires_at=row.get("lease_expires_at"),
            executed_at=row.get("executed_at"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "key": self.key,
            "direction": self.direction.value,
            "status": self.status.value,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "amount": self.amount,
            "counterparty_address": self.counterparty_address,
            "base_chain_reference": self.base_chain_reference,
            "wrapped_chain_reference": self.wrapped_chain_reference,
            "submission_reference": (
                self.submission_reference.to_dict() if self.submission_reference else None
            ),
            "failure_reason": self.failure_reason,
            "failure_retryable": self.failure_retryable,
            "attempts": self.attempts,
            "lease_expires_at": self.lease_expires_at,
            "executed_at": self.executed_at,
        }

    def to_public_dict(self) -> Dict[str, Any]:
        """Progress of the entry without amounts, addresses or chain references."""
        return {
            "key": self.key,
            "direction": self.direction.value,
            "status": self.status.value,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "failure_reason": self.failure_reason,
            "failure_retryable": self.failure_retryable,
            "attempts": self.attempts,
            "executed_at": self.executed_at,
        }


@dataclass
class Reservation:
    """Exclusive claim on a ledger key held by one worker."""

    key: str
    direction: SwapDirection
    lease_owner: str
    lease_expires_at: float
    attempts: int = 1
    taken_over: bool = False
    previous: Optional[LedgerEntry] = None


@dataclass
class Receipt:
    """Proof-of-Swap linking the two legs of a completed swap.

    Only the id, direction and time are readable without the passphrase;
    keys, amounts and chain references live in the sealed payload.
    """

    swap_id: str
    direction: SwapDirection
    timestamp: float
    encrypted_payload: EncryptedData

    def to_dict(self) -> Dict[str, Any]:
        """Receipt metadata; the payload stays sealed."""
        return {
            "swap_id": self.swap_id,
            "direction": self.direction.value,
            "timestamp": self.timestamp,
        }


@dataclass
class CompletedSwap:
    """Both legs of a swap, ready to be sealed into a receipt."""

    key: str
    direction: SwapDirection
    amount: int
    base_chain_reference: Optional[str]
    wrapped_chain_reference: Optional[str]
    counterparty_address: Optional[str] = None
    executed_at: float = field(default_factory=time.time)
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def swap_id(self) -> str:
        return derive_swap_id(self.direction, self.key)

    def payload(self) -> Dict[str, Any]:
        """Plaintext receipt payload."""
        return {
            "swap_id": self.swap_id,
            "ledger_key": self.key,
            "direction": self.direction.value,
            "amount": self.amount,
            "base_chain_reference": self.base_chain_reference,
            "wrapped_chain_reference": self.wrapped_chain_reference,
            "counterparty_address": self.counterparty_address,
            "executed_at": self.executed_at,
            "details": self.details,
        }


@dataclass
class SwapResult:
    """Outcome of one coordinator call."""

    state: SwapState
    key: Optional[str]
    direction: SwapDirection
    amount: Optional[int] = None
    receipt: Optional[Receipt] = None
    base_chain_reference: Optional[str] = None
    wrapped_chain_reference: Optional[str] = None
    error: Optional[SwapBridgeError] = None
    retryable: bool = False
    in_progress: bool = False
    duplicate: bool = False

    @property
    def succeeded(self) -> bool:
        return self.state == SwapState.COMPLETED

    @property
    def swap_id(self) -> Optional[str]:
        if self.receipt is not None:
            return self.receipt.swap_id
        if self.key is not None and self.succeeded:
            return derive_swap_id(self.direction, self.key)
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        data = {
            "status": self.state.value,
            "key": self.key,
            "direction": self.direction.value,
            "swap_id": self.swap_id,
            "amount": self.amount,
            "base_chain_reference": self.base_chain_reference,
            "wrapped_chain_reference": self.wrapped_chain_reference,
            "retryable": self.retryable,
            "in_progress": self.in_progress,
            "duplicate": self.duplicate,
        }
        if self.error is not None:
            data["error"] = self.error.to_public_dict()
        return data
