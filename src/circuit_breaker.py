"""
Circuit breaker for spreadsheet API calls.
Stops hammering Google Sheets while it is failing or rate limiting us,
so chat events fail fast with a RepositoryError instead of hanging.
"""

import logging
import threading
import time
from collections.abc import Callable
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class CircuitBreakerOpenError(RuntimeError):
    """Raised when circuit breaker blocks execution."""


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Calls pass through
    OPEN = "open"  # Calls rejected until the timeout elapses
    HALF_OPEN = "half_open"  # One probe call allowed


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker.

    Transitions:
    - CLOSED -> OPEN: after ``failure_threshold`` consecutive failures
    - OPEN -> HALF_OPEN: once ``timeout`` seconds passed since the last failure
    - HALF_OPEN -> CLOSED: probe succeeded
    - HALF_OPEN -> OPEN: probe failed

    Only exceptions listed in ``counted`` trip the breaker; everything else
    (for example "row not found") passes through without being recorded.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: float = 60,
        name: str = "CircuitBreaker",
        counted: tuple[type[BaseException], ...] = (Exception,),
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.name = name
        self.counted = counted
        self._clock = clock
        self._lock = threading.Lock()

        self.failure_count = 0
        self.state = CircuitState.CLOSED
        self.last_failure_time: float | None = None
        self._probe_in_flight = False

        logger.info(f"CircuitBreaker '{name}' threshold={failure_threshold} timeout={timeout}s")

    def call(self, func: Callable, *args, **kwargs) -> Any:
        """
        Run ``func`` under breaker protection.

        Raises:
            CircuitBreakerOpenError: circuit is open, or a probe is already running
        """
        self._before_call()
        try:
            result = func(*args, **kwargs)
        except self.counted as e:
            self._on_failure(e)
            raise
        except BaseException:
            self._release_probe()
            raise
        self._on_success()
        return result

    def _before_call(self) -> None:
        with self._lock:
            if self.state is CircuitState.OPEN:
                if self._clock() - (self.last_failure_time or 0) < self.timeout:
                    raise CircuitBreakerOpenError(
                        f"CircuitBreaker '{self.name}' is OPEN. Storage unavailable."
                    )
                logger.info(f"CircuitBreaker '{self.name}': OPEN -> HALF_OPEN")
                self.state = CircuitState.HALF_OPEN

            if self.state is CircuitState.HALF_OPEN:
                if self._probe_in_flight:
                    raise CircuitBreakerOpenError(
                        f"CircuitBreaker '{self.name}' is probing recovery. Try again shortly."
                    )
                self._probe_in_flight = True

    def _on_success(self) -> None:
        with self._lock:
            if self.state is CircuitState.HALF_OPEN:
                logger.info(f"CircuitBreaker '{self.name}': HALF_OPEN -> CLOSED")
            self.state = CircuitState.CLOSED
            self.failure_count = 0
            self.last_failure_time = None
            self._probe_in_flight = False

    def _on_failure(self, error: BaseException) -> None:
        with self._lock:
            self.failure_count += 1
            self.last_failure_time = self._clock()
            self._probe_in_flight = False
            logger.error(
                f"CircuitBreaker '{self.name}' failure "
                f"({self.failure_count}/{self.failure_threshold}): {error}"
            )
            if self.state is CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
                if self.state is not CircuitState.OPEN:
                    logger.warning(f"CircuitBreaker '{self.name}': {self.state.name} -> OPEN")
                self.state = CircuitState.OPEN

    def _release_probe(self) -> None:
        with self._lock:
            self._probe_in_flight = False

    def get_state(self) -> dict:
        """Get current circuit breaker state for monitoring."""
        with self._lock:
            return {
                "name": self.name,
                "state": self.state.value,
                "failure_count": self.failure_count,
                "failure_threshold": self.failure_threshold,
                "last_failure_time": self.last_failure_time,
            }
