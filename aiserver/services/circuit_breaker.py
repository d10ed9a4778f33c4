"""
CircuitBreaker - Prevents cascading failures by stopping requests to failing services.

States:
- CLOSED: Normal operation, requests pass through
- OPEN: Service is failing, requests are rejected without being attempted
- HALF_OPEN: Testing if service has recovered

Transitions:
- CLOSED → OPEN: When failure_threshold consecutive failures are reached
- OPEN → HALF_OPEN: On the first call after recovery_timeout has elapsed
- HALF_OPEN → CLOSED: After success_threshold successes
- HALF_OPEN → OPEN: On any failed request

Concurrent probes in HALF_OPEN are not serialized: several in-flight calls
may all succeed before the breaker closes, or a late failure may reopen a
breaker that another caller just closed. Callers must not rely on exactly
success_threshold probes being made.
"""

import threading
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from aiserver.services.errors import CircuitOpenError

T = TypeVar("T")

# (breaker name, old state, new state)
StateChangeCallback = Callable[[str, "CircuitState", "CircuitState"], None]


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"  # Normal operation
    OPEN = "OPEN"  # Blocking requests
    HALF_OPEN = "HALF_OPEN"  # Testing recovery


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""

    failure_threshold: int = 5  # Failures before opening
    recovery_timeout: timedelta = timedelta(seconds=60)  # Time before half-open
    success_threshold: int = 3  # Successes needed to close from half-open
    monitoring_period: timedelta = timedelta(minutes=5)  # Reporting window hint


@dataclass(frozen=True)
class CircuitBreakerStats:
    """Point-in-time snapshot of a circuit breaker."""

    name: str
    state: CircuitState
    failure_count: int
    success_count: int
    last_failure_time: float | None
    last_success_time: float | None
    total_requests: int
    total_failures: int
    total_successes: int
    total_rejections: int
    time_until_reset: float | None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = asdict(self)
        data["state"] = self.state.value
        data["last_failure"] = _isoformat(self.last_failure_time)
        data["last_success"] = _isoformat(self.last_success_time)
        return data


def _isoformat(timestamp: float | None) -> str | None:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp).isoformat()


class CircuitBreaker:
    """
    Circuit breaker implementation for a single service.

    Usage:
        cb = CircuitBreaker("replicate", CircuitBreakerConfig(failure_threshold=3))

        result = await cb.execute(lambda: client.get(url))

    ``execute`` raises CircuitOpenError without calling the operation while
    the circuit is open. Any other error comes from the operation itself and
    is re-raised unchanged after being recorded.
    """

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        on_state_change: StateChangeCallback | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self.on_state_change = on_state_change
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time: float | None = None
        self._last_success_time: float | None = None

        # Lifetime counters, untouched by reset()
        self._total_requests = 0
        self._total_failures = 0
        self._total_successes = 0
        self._total_rejections = 0

        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        """Current state. OPEN → HALF_OPEN only happens inside execute()."""
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def success_count(self) -> int:
        return self._success_count

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run an async operation through the breaker.

        Args:
            operation: Zero-argument callable returning an awaitable

        Returns:
            The operation's result, unchanged

        Raises:
            CircuitOpenError: If the circuit is open and recovery_timeout
                has not yet elapsed (operation is not called)
            Exception: Whatever the operation raised
        """
        self._before_call()

        try:
            result = await operation()
        except Exception:
            self._on_failure()
            raise

        self._on_success()
        return result

    def _before_call(self) -> None:
        """Count the request and decide whether it may proceed."""
        transition = None
        with self._lock:
            self._total_requests += 1

            if self._state == CircuitState.OPEN:
                remaining = self._remaining_recovery()
                if remaining > 0:
                    self._total_rejections += 1
                    logger.bind(breaker=self.name).warning(
                        f"Circuit breaker '{self.name}' OPEN, rejecting request "
                        f"({self._failure_count} failures, retry in {remaining:.1f}s)"
                    )
                    raise CircuitOpenError(self.name, remaining)

                self._state = CircuitState.HALF_OPEN
                self._success_count = 0
                transition = (CircuitState.OPEN, CircuitState.HALF_OPEN)
                logger.bind(breaker=self.name).info(
                    f"Circuit breaker '{self.name}' HALF_OPEN, testing recovery"
                )

        if transition:
            self._notify(*transition)

    def _on_success(self) -> None:
        """Record a successful request."""
        transition = None
        with self._lock:
            self._success_count += 1
            self._total_successes += 1
            self._last_success_time = self._clock()

            if self._state == CircuitState.HALF_OPEN:
                if self._success_count >= self.config.success_threshold:
                    self._state = CircuitState.CLOSED
                    self._failure_count = 0
                    transition = (CircuitState.HALF_OPEN, CircuitState.CLOSED)
                    logger.bind(breaker=self.name).info(
                        f"Circuit breaker '{self.name}' CLOSED after "
                        f"{self._success_count} successful probes"
                    )
            elif self._state == CircuitState.CLOSED:
                # A single success forgives earlier failures
                self._failure_count = 0

        if transition:
            self._notify(*transition)

    def _on_failure(self) -> None:
        """Record a failed request."""
        transition = None
        with self._lock:
            self._failure_count += 1
            self._total_failures += 1
            self._last_failure_time = self._clock()

            previous = self._state
            if previous == CircuitState.HALF_OPEN or (
                previous == CircuitState.CLOSED
                and self._failure_count >= self.config.failure_threshold
            ):
                self._state = CircuitState.OPEN
                transition = (previous, CircuitState.OPEN)
                logger.bind(breaker=self.name).error(
                    f"Circuit breaker '{self.name}' OPENED after "
                    f"{self._failure_count} failures "
                    f"(threshold {self.config.failure_threshold})"
                )

        if transition:
            self._notify(*transition)

    def _remaining_recovery(self) -> float:
        if self._last_failure_time is None:
            return 0.0
        elapsed = self._clock() - self._last_failure_time
        return max(0.0, self.config.recovery_timeout.total_seconds() - elapsed)

    def _notify(self, old_state: CircuitState, new_state: CircuitState) -> None:
        if self.on_state_change is None:
            return
        try:
            self.on_state_change(self.name, old_state, new_state)
        except Exception as e:
            logger.error(f"Circuit breaker '{self.name}' state callback failed: {e}")

    def get_time_until_reset(self) -> float | None:
        """Get seconds until an open circuit will let a probe through."""
        with self._lock:
            if self._state != CircuitState.OPEN:
                return None
            return self._remaining_recovery()

    def get_stats(self) -> CircuitBreakerStats:
        """Get a snapshot of counters and state."""
        time_until_reset = self.get_time_until_reset()
        with self._lock:
            return CircuitBreakerStats(
                name=self.name,
                state=self._state,
                failure_count=self._failure_count,
                success_count=self._success_count,
                last_failure_time=self._last_failure_time,
                last_success_time=self._last_success_time,
                total_requests=self._total_requests,
                total_failures=self._total_failures,
                total_successes=self._total_successes,
                total_rejections=self._total_rejections,
                time_until_reset=time_until_reset,
            )

    def reset(self) -> None:
        """Manually reset the circuit breaker. Lifetime totals are kept."""
        with self._lock:
            previous = self._state
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._success_count = 0
            self._last_failure_time = None
            self._last_success_time = None
        logger.info(f"Circuit breaker '{self.name}' manually reset")

        if previous != CircuitState.CLOSED:
            self._notify(previous, CircuitState.CLOSED)


class CircuitBreakerRegistry:
    """
    Registry for managing multiple circuit breakers.

    Usage:
        registry = CircuitBreakerRegistry()
        cb = registry.get("replicate")
    """

    def __init__(
        self,
        default_config: CircuitBreakerConfig | None = None,
        on_state_change: StateChangeCallback | None = None,
    ):
        self._breakers: dict[str, CircuitBreaker] = {}
        self._default_config = default_config or CircuitBreakerConfig()
        self._on_state_change = on_state_change
        self._lock = threading.Lock()

    def get(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
    ) -> CircuitBreaker:
        """Get or create a circuit breaker for a service."""
        with self._lock:
            if name not in self._breakers:
                self._breakers[name] = CircuitBreaker(
                    name,
                    config or self._default_config,
                    on_state_change=self._on_state_change,
                )
            return self._breakers[name]

    def register(self, breaker: CircuitBreaker) -> CircuitBreaker:
        """Add a pre-built breaker, replacing any with the same name."""
        with self._lock:
            self._breakers[breaker.name] = breaker
        return breaker

    def set_on_state_change(self, callback: StateChangeCallback | None) -> None:
        """Attach a transition callback to current and future breakers."""
        with self._lock:
            self._on_state_change = callback
            for cb in self._breakers.values():
                cb.on_state_change = callback

    def names(self) -> list[str]:
        return list(self._breakers)

    def __contains__(self, name: object) -> bool:
        return name in self._breakers

    def __len__(self) -> int:
        return len(self._breakers)

    def get_all_stats(self) -> dict[str, CircuitBreakerStats]:
        """Get a snapshot of every circuit breaker."""
        return {name: cb.get_stats() for name, cb in list(self._breakers.items())}

    def get_all_status(self) -> dict[str, dict[str, Any]]:
        """Get status of all circuit breakers as plain dictionaries."""
        return {name: stats.to_dict() for name, stats in self.get_all_stats().items()}

    def reset_all(self) -> None:
        """Reset all circuit breakers."""
        for cb in list(self._breakers.values()):
            cb.reset()
        logger.info(f"Reset {len(self._breakers)} circuit breakers")

    def reset(self, name: str) -> bool:
        """Reset a specific circuit breaker."""
        cb = self._breakers.get(name)
        if cb is None:
            return False
        cb.reset()
        return True

    def get_open_circuits(self) -> list[str]:
        """Get list of services with open circuits."""
        return [
            name
            for name, cb in list(self._breakers.items())
            if cb.state == CircuitState.OPEN
        ]
