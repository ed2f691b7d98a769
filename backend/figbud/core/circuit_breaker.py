"""
Circuit breaker for generative backends and the cache store.

Behavior:
- CLOSED: calls pass through; `failure_threshold` consecutive failures open it
- OPEN: calls are rejected until the recovery timeout has elapsed; the
  timeout is `recovery_timeout_seconds * backoff_multiplier`
- HALF_OPEN: calls pass through as probes; `success_threshold` successes
  close it, a single failure reopens it and doubles the backoff (max 8x)
"""
import asyncio
import time
from enum import Enum
from threading import Lock
from typing import Any, Callable, Dict, Optional

from figbud.core.logging import get_logger

logger = get_logger(__name__)

MAX_BACKOFF_MULTIPLIER = 8


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpenError(Exception):
    """Raised when the circuit is open and the call is rejected."""

    def __init__(self, name: str, retry_in_seconds: float = 0.0):
        super().__init__(
            f"Circuit breaker {name} is OPEN. Retry in {retry_in_seconds:.1f}s."
        )
        self.name = name
        self.retry_in_seconds = retry_in_seconds


class CircuitBreaker:
    """Consecutive-failure circuit breaker with exponential recovery backoff."""

    def __init__(
        self,
        name: str,
        failure_threshold: int = 3,
        recovery_timeout_seconds: float = 30.0,
        success_threshold: int = 2,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout_seconds = recovery_timeout_seconds
        self.success_threshold = success_threshold
        self._clock = clock

        self._lock = Lock()
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._total_failures = 0
        self._total_successes = 0
        self._half_open_successes = 0
        self._backoff_multiplier = 1
        self._opened_at: Optional[float] = None
        self._last_failure_at: Optional[float] = None
        self._last_success_at: Optional[float] = None

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._update_state()
            return self._state

    def _recovery_timeout(self) -> float:
        return self.recovery_timeout_seconds * self._backoff_multiplier

    def _update_state(self) -> None:
        """OPEN → HALF_OPEN once the (backed-off) recovery timeout has elapsed."""
        if self._state != CircuitState.OPEN or self._opened_at is None:
            return
        if self._clock() - self._opened_at >= self._recovery_timeout():
            self._state = CircuitState.HALF_OPEN
            self._half_open_successes = 0
            logger.info(
                "circuit_breaker_half_open",
                circuit_breaker=self.name,
                backoff_multiplier=self._backoff_multiplier,
            )

    def record_success(self) -> None:
        with self._lock:
            self._total_successes += 1
            self._last_success_at = self._clock()

            if self._state == CircuitState.HALF_OPEN:
                self._half_open_successes += 1
                if self._half_open_successes >= self.success_threshold:
                    self._state = CircuitState.CLOSED
                    self._opened_at = None
                    self._consecutive_failures = 0
                    self._backoff_multiplier = 1
                    logger.info("circuit_breaker_closed", circuit_breaker=self.name)
            else:
                self._consecutive_failures = 0
                self._backoff_multiplier = 1

    def record_failure(self) -> None:
        with self._lock:
            now = self._clock()
            self._total_failures += 1
            self._consecutive_failures += 1
            self._last_failure_at = now

            if self._state == CircuitState.HALF_OPEN:
                self._backoff_multiplier = min(
                    self._backoff_multiplier * 2, MAX_BACKOFF_MULTIPLIER
                )
                self._state = CircuitState.OPEN
                self._opened_at = now
                logger.warning(
                    "circuit_breaker_reopened",
                    circuit_breaker=self.name,
                    backoff_multiplier=self._backoff_multiplier,
                )
            elif (
                self._state == CircuitState.CLOSED
                and self._consecutive_failures >= self.failure_threshold
            ):
                self._state = CircuitState.OPEN
                self._opened_at = now
                logger.warning(
                    "circuit_breaker_opened",
                    circuit_breaker=self.name,
                    consecutive_failures=self._consecutive_failures,
                )

    def is_available(self) -> bool:
        return self.state != CircuitState.OPEN

    def _reject_if_open(self) -> None:
        with self._lock:
            self._update_state()
            if self._state == CircuitState.OPEN:
                elapsed = self._clock() - (self._opened_at or self._clock())
                raise CircuitBreakerOpenError(
                    self.name, max(0.0, self._recovery_timeout() - elapsed)
                )

    async def call_async(self, func: Callable, *args, **kwargs) -> Any:
        """Await an async callable under the breaker."""
        self._reject_if_open()
        try:
            result = await func(*args, **kwargs)
        except (Exception, asyncio.CancelledError):
            # asyncio.wait_for deadlines surface here as cancellation
            self.record_failure()
            raise
        self.record_success()
        return result

    def reset(self) -> None:
        with self._lock:
            self._state = CircuitState.CLOSED
            self._consecutive_failures = 0
            self._half_open_successes = 0
            self._backoff_multiplier = 1
            self._opened_at = None

    def get_metrics(self) -> Dict[str, Any]:
        """Snapshot for /health/backends."""
        with self._lock:
            self._update_state()
            return {
                "name": self.name,
                "state": self._state.value,
                "consecutive_failures": self._consecutive_failures,
                "total_failures": self._total_failures,
                "total_successes": self._total_successes,
                "backoff_multiplier": self._backoff_multiplier,
                "opened_at": self._opened_at,
                "last_failure_at": self._last_failure_at,
                "last_success_at": self._last_success_at,
            }
