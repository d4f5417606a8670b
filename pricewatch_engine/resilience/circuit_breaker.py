"""Per-provider circuit breaker.

Tracks recent failures in a sliding time window and moves between three
states:

- CLOSED: calls flow normally.
- OPEN: calls fail fast with CircuitOpenError until the recovery timeout
  has elapsed since the last failure.
- HALF_OPEN: calls are let through as trial calls; ``success_threshold``
  consecutive successes close the circuit, any failure reopens it.
"""

import inspect
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar, Union

from pricewatch_engine.config.models import CircuitBreakerConfig
from pricewatch_engine.errors import CircuitOpenError
from pricewatch_engine.monitoring.metrics import MetricsService

logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[], Union[Awaitable[T], T]]


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"  # Normal operation
    OPEN = "OPEN"  # Failing fast
    HALF_OPEN = "HALF_OPEN"  # Probing for recovery


@dataclass(frozen=True)
class CircuitBreakerStats:
    """Point-in-time view of a breaker's counters."""

    state: CircuitState
    failure_count: int
    success_count: int
    last_failure_time: datetime | None
    last_success_time: datetime | None
    total_requests: int
    total_failures: int
    total_successes: int
    uptime: float  # Percentage

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "state": self.state.value,
            "failure_count": self.failure_count,
            "success_count": self.success_count,
            "last_failure_time": self.last_failure_time.isoformat() if self.last_failure_time else None,
            "last_success_time": self.last_success_time.isoformat() if self.last_success_time else None,
            "total_requests": self.total_requests,
            "total_failures": self.total_failures,
            "total_successes": self.total_successes,
            "uptime": self.uptime,
        }


class CircuitBreaker:
    """Circuit breaker guarding calls to a single provider.

    State changes are made under a per-breaker lock that is never held
    across an ``await``, so the breaker can be shared by concurrent tasks
    and threads.

    Example:
        >>> breaker = CircuitBreaker("binance", CircuitBreakerConfig(failure_threshold=3))
        >>> price = await breaker.execute(lambda: provider.get_current_price("BTCUSDT"))
    """

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        metrics: MetricsService | None = None,
    ) -> None:
        """Initialize circuit breaker.

        Args:
            name: Identifier used in logs, errors and metrics (usually the provider name)
            config: Thresholds and windows
            clock: Monotonic clock in seconds, injectable for tests
            metrics: Optional metrics sink
        """
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._metrics = metrics
        self._lock = threading.Lock()

        self._state = CircuitState.CLOSED
        self._success_count = 0
        self._failures: deque[float] = deque()
        self._last_failure_at: float | None = None
        self._last_failure_time: datetime | None = None
        self._last_success_time: datetime | None = None
        self._total_requests = 0
        self._total_failures = 0
        self._total_successes = 0

        if self._metrics is not None:
            self._metrics.set_breaker_state(name, self._state.value)

    @property
    def state(self) -> CircuitState:
        """Current circuit state."""
        return self._state

    def get_state(self) -> CircuitState:
        """Get current state."""
        return self._state

    async def execute(self, operation: Operation[T]) -> T:
        """Run ``operation`` under circuit breaker protection.

        Args:
            operation: Zero-argument callable returning an awaitable or a value

        Returns:
            The operation's result

        Raises:
            CircuitOpenError: If the circuit is open and recovery time has not elapsed
            Exception: Whatever the operation raised (recorded as a failure)
        """
        self._before_call()

        try:
            result = operation()
            if inspect.isawaitable(result):
                result = await result
        except Exception:
            self._on_failure()
            raise

        self._on_success()
        return result

    def _before_call(self) -> None:
        with self._lock:
            if self._state == CircuitState.OPEN:
                if not self._recovery_elapsed():
                    retry_after = self._retry_after()
                    if self._metrics is not None:
                        self._metrics.record_breaker_rejection(self.name)
                    raise CircuitOpenError(self.name, retry_after)
                self._transition(CircuitState.HALF_OPEN)
            self._total_requests += 1

    def _on_success(self) -> None:
        with self._lock:
            self._last_success_time = datetime.now(timezone.utc)
            self._total_successes += 1

            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                logger.info(
                    "CircuitBreaker[%s]: success in HALF_OPEN (%d/%d)",
                    self.name,
                    self._success_count,
                    self.config.success_threshold,
                )
                if self._success_count >= self.config.success_threshold:
                    self._reset()
            elif self._state == CircuitState.CLOSED:
                # A success clears the rolling failure evidence
                self._failures.clear()

    def _on_failure(self) -> None:
        with self._lock:
            now = self._clock()
            self._last_failure_at = now
            self._last_failure_time = datetime.now(timezone.utc)
            self._total_failures += 1
            self._failures.append(now)
            self._prune(now)

            if self._state == CircuitState.HALF_OPEN:
                self._success_count = 0
                self._transition(CircuitState.OPEN)
            elif self._state == CircuitState.CLOSED:
                threshold = self.config.failure_threshold
                if threshold > 0 and len(self._failures) >= threshold:
                    self._success_count = 0
                    self._transition(CircuitState.OPEN)

    def _recovery_elapsed(self) -> bool:
        if self._last_failure_at is None:
            return False
        return self._clock() - self._last_failure_at >= self.config.recovery_timeout_seconds

    def _retry_after(self) -> float:
        if self._last_failure_at is None:
            return self.config.recovery_timeout_seconds
        remaining = self.config.recovery_timeout_seconds - (self._clock() - self._last_failure_at)
        return max(0.0, remaining)

    def _prune(self, now: float) -> None:
        cutoff = now - self.config.monitoring_window_seconds
        while self._failures and self._failures[0] < cutoff:
            self._failures.popleft()

    def _reset(self) -> None:
        self._failures.clear()
        self._success_count = 0
        self._transition(CircuitState.CLOSED)

    def _transition(self, new_state: CircuitState) -> None:
        old_state = self._state
        if old_state == new_state:
            return
        self._state = new_state
        if new_state == CircuitState.OPEN:
            logger.warning(
                "CircuitBreaker[%s]: %s -> OPEN after %d recent failures",
                self.name,
                old_state.value,
                len(self._failures),
            )
        else:
            logger.info("CircuitBreaker[%s]: %s -> %s", self.name, old_state.value, new_state.value)
        if self._metrics is not None:
            self._metrics.record_breaker_transition(self.name, old_state.value, new_state.value)

    def get_stats(self) -> CircuitBreakerStats:
        """Get current circuit breaker statistics."""
        with self._lock:
            self._prune(self._clock())
            if self._total_requests > 0:
                uptime = self._total_successes / self._total_requests * 100
            else:
                uptime = 100.0
            return CircuitBreakerStats(
                state=self._state,
                failure_count=len(self._failures),
                success_count=self._success_count,
                last_failure_time=self._last_failure_time,
                last_success_time=self._last_success_time,
                total_requests=self._total_requests,
                total_failures=self._total_failures,
                total_successes=self._total_successes,
                uptime=round(uptime, 2),
            )

    def is_available(self) -> bool:
        """Check if a call would be attempted right now."""
        with self._lock:
            if self._state == CircuitState.OPEN:
                return self._recovery_elapsed()
            return True

    def force_open(self) -> None:
        """Force the circuit open, e.g. to quarantine a provider manually.

        The recovery timeout restarts from now; the failure log is left as is.
        """
        with self._lock:
            self._last_failure_at = self._clock()
            self._last_failure_time = datetime.now(timezone.utc)
            self._success_count = 0
            self._transition(CircuitState.OPEN)

    def force_close(self) -> None:
        """Force the circuit closed, discarding failure evidence."""
        with self._lock:
            self._reset()
