"""Exception hierarchy for swapbridge.

Every error carries a ``kind`` (the short code reported to API callers) and
a ``retryable`` flag: retryable errors mean "the same request may succeed
later", everything else is final for that request.
"""

import time
from enum import Enum
from typing import Any, Dict, Optional


class ErrorSeverity(Enum):
    """How loudly an error should be reported."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Which part of the bridge an error belongs to."""

    VERIFICATION = "verification"
    EXECUTION = "execution"
    LEDGER = "ledger"
    STORAGE = "storage"
    NETWORK = "network"
    CRYPTOGRAPHIC = "cryptographic"
    CONFIGURATION = "configuration"
    TIMEOUT = "timeout"
    SYSTEM = "system"


class VerificationErrorKind(Enum):
    """Reasons a payment proof can fail verification."""

    NOT_FOUND = "not_found"
    INSUFFICIENT_CONFIRMATIONS = "insufficient_confirmations"
    AMOUNT_TOO_LOW = "amount_too_low"
    PROOF_MISMATCH = "proof_mismatch"

    @property
    def retryable(self) -> bool:
        """The first two resolve themselves as the chain advances."""
        return self in (
            VerificationErrorKind.NOT_FOUND,
            VerificationErrorKind.INSUFFICIENT_CONFIRMATIONS,
        )


class ExecutionErrorKind(Enum):
    """Reasons a chain submission can fail."""

    # Retryable
    NETWORK = "network"
    TIMEOUT = "timeout"
    # Terminal
    INSUFFICIENT_FUNDS = "insufficient_funds"
    INVALID_STATE = "invalid_state"
    ALREADY_PROCESSED = "already_processed"

    @property
    def retryable(self) -> bool:
        return self in (ExecutionErrorKind.NETWORK, ExecutionErrorKind.TIMEOUT)


class SwapBridgeError(Exception):
    """Base class of every error the bridge raises on purpose."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.SYSTEM,
        cause: Optional[BaseException] = None,
        retryable: bool = False,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.severity = severity
        self.category = category
        self.cause = cause
        self.retryable = retryable
        self.metadata = dict(metadata or {})
        self.timestamp = time.time()

    @property
    def kind(self) -> str:
        """Short machine-readable reason reported to clients."""
        return self.error_code or type(self).__name__

    def _details(self) -> Dict[str, Any]:
        """Subclass-specific fields for ``to_dict``."""
        return {}

    def to_dict(self) -> Dict[str, Any]:
        """Full description for logs and operator views."""
        return {
            "type": type(self).__name__,
            "kind": self.kind,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "retryable": self.retryable,
            "cause": repr(self.cause) if self.cause is not None else None,
            "metadata": self.metadata,
            "timestamp": self.timestamp,
            **self._details(),
        }

    def to_public_dict(self) -> Dict[str, Any]:
        """Subset of the error that is safe to return to API callers."""
        return {"kind": self.kind, "message": self.message, "retryable": self.retryable}

    def __str__(self) -> str:
        text = f"{type(self).__name__}: {self.message}"
        if self.error_code:
            text += f" | Code: {self.error_code}"
        if self.severity is not ErrorSeverity.MEDIUM:
            text += f" | Severity: {self.severity.value}"
        if self.retryable:
            text += " | Retryable: Yes"
        return text


class VerificationError(SwapBridgeError):
    """A payment proof did not verify against the base chain."""

    def __init__(self, message: str, kind: VerificationErrorKind, tx_id: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            error_code=kind.value,
            category=ErrorCategory.VERIFICATION,
            retryable=kind.retryable,
            **kwargs,
        )
        self.verification_kind = kind
        self.tx_id = tx_id

    def _details(self) -> Dict[str, Any]:
        return {"tx_id": self.tx_id}


class ExecutionError(SwapBridgeError):
    """A mint or payout submission failed. Terminal kinds are high severity."""

    def __init__(
        self,
        message: str,
        kind: ExecutionErrorKind,
        chain: Optional[str] = None,
        tx_hash: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(
            message,
            error_code=kind.value,
            category=ErrorCategory.EXECUTION,
            severity=ErrorSeverity.MEDIUM if kind.retryable else ErrorSeverity.HIGH,
            retryable=kind.retryable,
            **kwargs,
        )
        self.execution_kind = kind
        self.chain = chain
        self.tx_hash = tx_hash

    def _details(self) -> Dict[str, Any]:
        return {"chain": self.chain, "tx_hash": self.tx_hash}


class LedgerError(SwapBridgeError):
    """The swap ledger refused an operation on ``key``."""

    def __init__(self, message: str, key: Optional[str] = None, **kwargs):
        kwargs.setdefault("category", ErrorCategory.LEDGER)
        super().__init__(message, **kwargs)
        self.key = key

    def _details(self) -> Dict[str, Any]:
        return {"key": self.key}


class AlreadyReserved(LedgerError):
    """Another request already holds, or has finished, the ledger key."""

    def __init__(self, key: str, entry: Any = None, **kwargs):
        super().__init__(
            f"Ledger key '{key}' is already reserved", key=key, error_code="already_reserved", **kwargs
        )
        self.entry = entry


class InvalidTransition(LedgerError):
    """A ledger entry was not in a state that allows the requested change."""

    def __init__(self, key: str, target: str, current: Optional[str] = None, **kwargs):
        super().__init__(
            f"Cannot move ledger entry '{key}' from {current or 'missing'} to {target}",
            key=key,
            error_code="invalid_transition",
            severity=ErrorSeverity.HIGH,
            **kwargs,
        )
        self.target = target
        self.current = current


class StorageError(SwapBridgeError):
    """The bridge database could not be reached or written. Retryable unless
    the caller says otherwise."""

    def __init__(self, message: str, storage_type: Optional[str] = None, operation: Optional[str] = None, **kwargs):
        kwargs.setdefault("error_code", "unavailable")
        kwargs.setdefault("retryable", True)
        super().__init__(message, category=ErrorCategory.STORAGE, severity=ErrorSeverity.HIGH, **kwargs)
        self.storage_type = storage_type
        self.operation = operation

    def _details(self) -> Dict[str, Any]:
        return {"storage_type": self.storage_type, "operation": self.operation}


class ChainUnavailableError(SwapBridgeError):
    """A chain endpoint could not be reached, timed out or answered with a
    transport-level failure."""

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        status_code: Optional[int] = None,
        timed_out: bool = False,
        **kwargs,
    ):
        super().__init__(
            message,
            error_code="timeout" if timed_out else "network",
            category=ErrorCategory.TIMEOUT if timed_out else ErrorCategory.NETWORK,
            retryable=True,
            **kwargs,
        )
        self.endpoint = endpoint
        self.status_code = status_code
        self.timed_out = timed_out

    def _details(self) -> Dict[str, Any]:
        return {"endpoint": self.endpoint, "status_code": self.status_code}


class RpcError(SwapBridgeError):
    """A chain endpoint answered with an application-level error."""

    def __init__(self, message: str, method: Optional[str] = None, rpc_code: Optional[int] = None, **kwargs):
        super().__init__(message, error_code="rpc_error", category=ErrorCategory.NETWORK, **kwargs)
        self.method = method
        self.rpc_code = rpc_code

    def _details(self) -> Dict[str, Any]:
        return {"method": self.method, "rpc_code": self.rpc_code}


class ConfigurationError(SwapBridgeError):
    """A configuration value or secret is missing or invalid."""

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            error_code="configuration",
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.CRITICAL,
            **kwargs,
        )
        self.config_key = config_key


class EncryptionError(SwapBridgeError):
    """Receipt sealing or opening failed."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            error_code="encryption",
            category=ErrorCategory.CRYPTOGRAPHIC,
            severity=ErrorSeverity.HIGH,
            **kwargs,
        )


class BridgePausedError(SwapBridgeError):
    """The operator has paused the bridge."""

    def __init__(self, message: str = "The bridge is paused and is not accepting swaps"):
        super().__init__(message, error_code="paused", retryable=True)


class InvalidRequestError(SwapBridgeError):
    """A swap request is malformed."""

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        super().__init__(message, error_code="invalid_request", category=ErrorCategory.VERIFICATION, **kwargs)
        self.field = field


class RetryExhaustedError(SwapBridgeError):
    """A retryable operation kept failing until its retry budget ran out."""

    def __init__(self, operation: str, attempts: int, cause: Optional[BaseException] = None):
        super().__init__(
            f"Operation '{operation}' failed after {attempts} attempts",
            error_code="retries_exhausted",
            cause=cause,
            retryable=True,
        )
        self.operation = operation
        self.attempts = attempts
