"""Retry and circuit breaking around chain calls.

``retry_async`` re-awaits an operation while its failures are retryable.
``CircuitBreaker`` stops calling an endpoint after repeated transport
failures and lets a single trial call through once the recovery window passes.
"""

import asyncio
import random
import threading
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from ..logging import get_logger
from .exceptions import ChainUnavailableError, RetryExhaustedError, SwapBridgeError

logger = get_logger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"  # calls fail fast
    HALF_OPEN = "half_open"  # next call is a trial


@dataclass
class RetryPolicy:
    """Exponential backoff: ``base_delay * exponential_base ** (n - 1)`` before
    retry ``n``, capped at ``max_delay`` and optionally scaled by a random
    factor in [0.5, 1.5]."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = True

    def get_delay(self, attempt: int) -> float:
        if attempt <= 0:
            return 0.0
        delay = min(self.base_delay * self.exponential_base ** (attempt - 1), self.max_delay)
        return delay * random.uniform(0.5, 1.5) if self.jitter else delay

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RetryPolicy":
        return cls(**data)


def is_retryable(error: BaseException) -> bool:
    """Bridge errors say so themselves; bare timeouts and connection errors
    are always worth another try."""
    if isinstance(error, SwapBridgeError):
        return error.retryable
    return isinstance(error, (asyncio.TimeoutError, ConnectionError))


async def retry_async(
    policy: RetryPolicy,
    operation: str,
    func: Callable[[], Awaitable[Any]],
    should_retry: Callable[[BaseException], bool] = is_retryable,
) -> Any:
    """Await ``func`` until it succeeds.

    Errors rejected by ``should_retry`` propagate unchanged. Once
    ``policy.max_retries`` retries have failed, ``RetryExhaustedError`` is
    raised with the last failure as its cause.
    """
    attempts = policy.max_retries + 1
    last_error: Optional[BaseException] = None

    for attempt in range(1, attempts + 1):
        try:
            return await func()
        except Exception as e:
            if not should_retry(e):
                raise
            last_error = e
            if attempt == attempts:
                break
            delay = policy.get_delay(attempt)
            logger.warning(f"{operation} failed ({e}); retry {attempt}/{policy.max_retries} in {delay:.2f}s")
            await asyncio.sleep(delay)

    raise RetryExhaustedError(operation, attempts, cause=last_error)


class CircuitBreaker:
    """Per-endpoint breaker. Only transport failures count against it: an
    RPC error from a healthy endpoint leaves the circuit closed."""

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.name = name
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at = 0.0
        self._lock = threading.Lock()

    def before_call(self) -> None:
        """Fail fast while open; switch to half-open once the window passes."""
        with self._lock:
            if self._state is not CircuitState.OPEN:
                return
            if self._clock() - self._opened_at < self.recovery_timeout:
                raise ChainUnavailableError(f"Circuit breaker {self.name} is OPEN", endpoint=self.name)
            self._state = CircuitState.HALF_OPEN
        logger.info(f"Circuit {self.name} half-open, probing")

    def record_success(self) -> None:
        with self._lock:
            recovered = self._state is CircuitState.HALF_OPEN
            self._state = CircuitState.CLOSED
            self._failures = 0
        if recovered:
            logger.info(f"Circuit {self.name} closed")

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            self._opened_at = self._clock()
            tripped = self._state is CircuitState.HALF_OPEN or self._failures >= self.failure_threshold
            opening = tripped and self._state is not CircuitState.OPEN
            if tripped:
                self._state = CircuitState.OPEN
        if opening:
            logger.warning(f"Circuit {self.name} open after {self._failures} failures")

    async def call(self, func: Callable[[], Awaitable[Any]]) -> Any:
        self.before_call()
        try:
            result = await func()
        except (ChainUnavailableError, asyncio.TimeoutError):
            self.record_failure()
            raise
        self.record_success()
        return result

    def get_state(self) -> CircuitState:
        with self._lock:
            return self._state

    def get_metrics(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "name": self.name,
                "state": self._state.value,
                "failure_count": self._failures,
                "failure_threshold": self.failure_threshold,
                "recovery_timeout": self.recovery_timeout,
            }

    def reset(self) -> None:
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failures = 0
            self._opened_at = 0.0
