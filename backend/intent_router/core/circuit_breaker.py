"""
Circuit breaker guarding the completion collaborator.

The router never retries a collaborator call. When the upstream model is
failing, the breaker lets callers fail fast instead of waiting for a timeout
on every decision:
- CLOSED: calls pass; outcomes are kept for a sliding time window
- OPEN: calls are rejected with CircuitBreakerOpenError until the cooldown ends
- HALF_OPEN: a limited number of trial calls pass; a success closes the
  circuit, a failure reopens it
"""
import time
from collections import deque
from enum import Enum
from threading import Lock
from typing import Any, Awaitable, Callable, Deque, Optional, Tuple

from intent_router.core.logging import get_logger

logger = get_logger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpenError(Exception):
    """Raised when the circuit is open and the call is rejected."""


class CircuitBreaker:
    """
    Error-rate circuit breaker for async calls.

    Args:
        name: Label used in logs and metrics
        failure_threshold: Error rate in the window that opens the circuit
        time_window_seconds: Sliding window for the error rate
        open_duration_seconds: Cooldown before trial calls are allowed
        half_open_max_calls: Trial calls allowed while half-open
        min_requests_for_threshold: Calls required before the rate is evaluated
        clock: Monotonic time source (injectable for tests)
    """

    def __init__(
        self,
        name: str,
        failure_threshold: float = 0.5,
        time_window_seconds: float = 60.0,
        open_duration_seconds: float = 30.0,
        half_open_max_calls: int = 1,
        min_requests_for_threshold: int = 10,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.time_window_seconds = time_window_seconds
        self.open_duration_seconds = open_duration_seconds
        self.half_open_max_calls = half_open_max_calls
        self.min_requests_for_threshold = min_requests_for_threshold
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._lock = Lock()
        self._outcomes: Deque[Tuple[float, bool]] = deque()
        self._opened_at: Optional[float] = None
        self._half_open_in_flight = 0

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._refresh(self._clock())
            return self._state

    def _refresh(self, now: float) -> None:
        cutoff = now - self.time_window_seconds
        while self._outcomes and self._outcomes[0][0] < cutoff:
            self._outcomes.popleft()

        if self._state == CircuitState.OPEN and self._opened_at is not None:
            if now - self._opened_at >= self.open_duration_seconds:
                self._state = CircuitState.HALF_OPEN
                self._half_open_in_flight = 0
                logger.info("circuit_breaker_half_open", circuit_breaker=self.name)

    def _open(self, now: float, **details: Any) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = now
        self._outcomes.clear()
        logger.warning("circuit_breaker_opened", circuit_breaker=self.name, **details)

    def _admit(self) -> None:
        with self._lock:
            self._refresh(self._clock())
            if self._state == CircuitState.OPEN:
                raise CircuitBreakerOpenError(f"Circuit breaker {self.name} is OPEN")
            if self._state == CircuitState.HALF_OPEN:
                if self._half_open_in_flight >= self.half_open_max_calls:
                    raise CircuitBreakerOpenError(
                        f"Circuit breaker {self.name} is HALF_OPEN, trial call in flight"
                    )
                self._half_open_in_flight += 1

    def _release(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._half_open_in_flight = max(0, self._half_open_in_flight - 1)

    def _record(self, success: bool) -> None:
        now = self._clock()
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._half_open_in_flight = max(0, self._half_open_in_flight - 1)
                if success:
                    self._state = CircuitState.CLOSED
                    self._opened_at = None
                    logger.info("circuit_breaker_closed", circuit_breaker=self.name)
                else:
                    self._open(now, reason="half_open_trial_failed")
                return

            self._outcomes.append((now, success))
            total = len(self._outcomes)
            if total < self.min_requests_for_threshold:
                return
            failures = sum(1 for _, ok in self._outcomes if not ok)
            error_rate = failures / total
            if error_rate >= self.failure_threshold:
                self._open(now, error_rate=error_rate, failures=failures, total=total)

    async def call_async(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Run ``func`` under breaker protection; raises CircuitBreakerOpenError when rejected."""
        self._admit()
        try:
            result = await func(*args, **kwargs)
        except Exception:
            self._record(False)
            raise
        except BaseException:
            # cancelled: neither a success nor a failure
            self._release()
            raise
        self._record(True)
        return result

    def get_metrics(self) -> dict:
        with self._lock:
            self._refresh(self._clock())
            failures = sum(1 for _, ok in self._outcomes if not ok)
            total = len(self._outcomes)
            return {
                "name": self.name,
                "state": self._state.value,
                "recent_requests": total,
                "recent_failures": failures,
                "error_rate": failures / total if total else 0.0,
                "opened_at": self._opened_at,
            }
