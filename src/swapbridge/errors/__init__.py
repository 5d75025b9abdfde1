"""swapbridge error handling.

This module provides the exception hierarchy used by the swap coordinator
and its collaborators, together with retry and circuit breaker helpers.
"""

from .exceptions import (
    AlreadyReserved,
    BridgePausedError,
    ChainUnavailableError,
    ConfigurationError,
    EncryptionError,
    ErrorCategory,
    ErrorSeverity,
    ExecutionError,
    ExecutionErrorKind,
    InvalidRequestError,
    InvalidTransition,
    LedgerError,
    RetryExhaustedError,
    RpcError,
    StorageError,
    SwapBridgeError,
    VerificationError,
    VerificationErrorKind,
)
from .recovery import CircuitBreaker, CircuitState, RetryPolicy, is_retryable, retry_async

__all__ = [
    # Exceptions
    "SwapBridgeError",
    "VerificationError",
    "VerificationErrorKind",
    "ExecutionError",
    "ExecutionErrorKind",
    "LedgerError",
    "AlreadyReserved",
    "InvalidTransition",
    "StorageError",
    "ChainUnavailableError",
    "RpcError",
    "ConfigurationError",
    "EncryptionError",
    "BridgePausedError",
    "InvalidRequestError",
    "RetryExhaustedError",
    "ErrorSeverity",
    "ErrorCategory",
    # Recovery
    "RetryPolicy",
    "CircuitBreaker",
    "CircuitState",
    "retry_async",
    "is_retryable",
]
