"""
Circuit breaker guarding a single external dependency.

State is in-memory and process-local: a fresh process always starts CLOSED.
"""

import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TypeVar

from riskjobs.config.logging import get_logger
from riskjobs.v1.core.exceptions import CircuitOpenError

logger = get_logger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreaker:
    """
    Failure-counting call wrapper that sheds load from a failing dependency.

    - CLOSED: calls pass through; classified failures are counted and a
      success zeroes the count. Reaching ``failure_threshold`` opens the
      circuit.
    - OPEN: calls fail immediately with ``CircuitOpenError``. Once
      ``reset_timeout_ms`` has passed since the last failure, the next call
      moves the circuit to HALF_OPEN.
    - HALF_OPEN: one probe call at a time is let through. ``success_threshold``
      consecutive successes close the circuit; any failure reopens it.
    """

    def __init__(
        self,
        name: str = "default",
        failure_threshold: int = 5,
        reset_timeout_ms: float = 30_000,
        success_threshold: int = 2,
        is_failure: Callable[[Exception], bool] | None = None,
        on_state_change: Callable[[CircuitState, CircuitState], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout_ms = reset_timeout_ms
        self.success_threshold = success_threshold
        self._is_failure = is_failure or (lambda _error: True)
        self._on_state_change = on_state_change
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time: float | None = None
        self._probe_in_flight = False

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    async def execute(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Invoke ``fn`` through the breaker."""
        self._before_call()

        probing = self._state == CircuitState.HALF_OPEN
        if probing:
            self._probe_in_flight = True

        try:
            result = await fn()
        except Exception as e:
            # Unclassified errors propagate without touching the counters
            if self._is_failure(e):
                self._record_failure()
            raise
        else:
            self._record_success()
            return result
        finally:
            if probing:
                self._probe_in_flight = False

    def reset(self) -> None:
        """Force the breaker closed and clear all counters."""
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time = None
        self._probe_in_flight = False
        if self._state != CircuitState.CLOSED:
            self._transition(CircuitState.CLOSED)

    def _before_call(self) -> None:
        if self._state == CircuitState.OPEN:
            elapsed_ms = (self._clock() - (self._last_failure_time or 0.0)) * 1000
            if elapsed_ms < self.reset_timeout_ms:
                raise CircuitOpenError(
                    f"Circuit breaker '{self.name}' is open",
                    {"breaker": self.name, "retry_after_ms": self.reset_timeout_ms - elapsed_ms},
                )
            self._transition(CircuitState.HALF_OPEN)
        elif self._state == CircuitState.HALF_OPEN and self._probe_in_flight:
            raise CircuitOpenError(
                f"Circuit breaker '{self.name}' is half-open with a probe in flight",
                {"breaker": self.name},
            )

    def _record_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._success_count += 1
            if self._success_count >= self.success_threshold:
                self._transition(CircuitState.CLOSED)
                self._failure_count = 0
                self._success_count = 0
        else:
            self._failure_count = 0

    def _record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = self._clock()

        if self._state == CircuitState.HALF_OPEN:
            self._success_count = 0
            self._transition(CircuitState.OPEN)
        elif (
            self._state == CircuitState.CLOSED
            and self._failure_count >= self.failure_threshold
        ):
            self._transition(CircuitState.OPEN)

    def _transition(self, to_state: CircuitState) -> None:
        from_state = self._state
        self._state = to_state

        logger.info(
            "Circuit breaker state changed",
            breaker=self.name,
            from_state=from_state.value,
            to_state=to_state.value,
            failure_count=self._failure_count,
        )

        if self._on_state_change is not None:
            self._on_state_change(from_state, to_state)
