"""
Publish circuit breaker.

Guards the publisher's transport writes. While the transport keeps failing
the breaker opens and publishes fail fast with False instead of each one
waiting out a transport timeout. The mutation that triggered the publish is
never affected; clients recover missed events through their reconnect sweep.

    CLOSED --(failure_threshold consecutive failures)--> OPEN
    OPEN --(recovery_timeout elapsed)--> HALF_OPEN
    HALF_OPEN --(success)--> CLOSED
    HALF_OPEN --(failure)--> OPEN
    any state --(reset(), e.g. transport reconnected)--> CLOSED

All calls happen on the event loop thread, so no locking is needed.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Any, Callable

from shared.config.logging import get_logger

logger = get_logger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class EventCircuitBreaker:
    """
    Args:
        failure_threshold: Consecutive write failures that open the circuit.
        recovery_timeout: Seconds the circuit stays open before a trial write.
        half_open_max_calls: Trial writes let through while half-open.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        half_open_max_calls: int = 3,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout
        self._half_open_max_calls = half_open_max_calls
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at: float | None = None
        self._half_open_calls = 0
        self._rejected_count = 0
        self._open_count = 0

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def retry_after(self) -> float:
        """Seconds until an open circuit lets a trial write through; 0 when not open."""
        if self._state is not CircuitState.OPEN or self._opened_at is None:
            return 0.0
        return max(0.0, self._recovery_timeout - (self._clock() - self._opened_at))

    def can_execute(self) -> bool:
        """True if the next write may go to the transport."""
        if self._state is CircuitState.CLOSED:
            return True

        if self._state is CircuitState.OPEN:
            if self.retry_after > 0:
                self._rejected_count += 1
                return False
            self._transition(CircuitState.HALF_OPEN)
            self._half_open_calls = 0

        if self._half_open_calls >= self._half_open_max_calls:
            self._rejected_count += 1
            return False
        self._half_open_calls += 1
        return True

    def record_failure(self) -> None:
        self._failure_count += 1
        if self._state is CircuitState.HALF_OPEN:
            self._open("half-open trial write failed")
        elif (
            self._state is CircuitState.CLOSED
            and self._failure_count >= self._failure_threshold
        ):
            self._open("failure threshold reached")

    def record_success(self) -> None:
        self._failure_count = 0
        if self._state is CircuitState.HALF_OPEN:
            self._transition(CircuitState.CLOSED)

    def reset(self) -> None:
        """Close the circuit now (the transport reported a fresh connection)."""
        self._failure_count = 0
        self._half_open_calls = 0
        if self._state is not CircuitState.CLOSED:
            self._transition(CircuitState.CLOSED)

    def get_stats(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "failure_count": self._failure_count,
            "rejected_count": self._rejected_count,
            "open_count": self._open_count,
            "retry_after": round(self.retry_after, 1),
        }

    def _open(self, reason: str) -> None:
        self._opened_at = self._clock()
        self._open_count += 1
        self._transition(CircuitState.OPEN)
        logger.error(
            "Publish circuit breaker OPEN",
            reason=reason,
            failure_count=self._failure_count,
            threshold=self._failure_threshold,
            recovery_timeout=self._recovery_timeout,
        )

    def _transition(self, state: CircuitState) -> None:
        if state is CircuitState.CLOSED:
            self._opened_at = None
        logger.info(
            "Publish circuit breaker state",
            previous=self._state.value,
            state=state.value,
        )
        self._state = state
