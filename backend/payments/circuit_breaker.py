# payments/circuit_breaker.py
# ============================================================================
# CLUBSPHERE: GATEWAY CIRCUIT BREAKER
# ============================================================================
# Fails payment-gateway calls fast while the processor is unreachable.
#
#   CLOSED     every call goes through; consecutive outages are counted
#   OPEN       calls are refused until the cool-down has passed
#   HALF_OPEN  exactly one trial call is in flight; everyone else is refused
#              until it reports back
# ============================================================================

import asyncio
import time
from enum import Enum
from typing import Callable, Optional

import structlog

from config import stripe_config


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Outage detector shared by every call to one payment gateway"""

    def __init__(
        self,
        name: str,
        failure_threshold: Optional[int] = None,
        reset_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold or stripe_config.CB_FAILURE_THRESHOLD
        self.reset_timeout = (
            reset_timeout if reset_timeout is not None else stripe_config.CB_RESET_TIMEOUT_SECONDS
        )
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at = 0.0
        self._trial_started_at: Optional[float] = None
        self._lock = asyncio.Lock()
        self._logger = structlog.get_logger().bind(component="circuit_breaker", gateway=name)

    @property
    def state(self) -> CircuitState:
        return self._state

    async def can_execute(self) -> bool:
        """Admit a call, or refuse it while the gateway is considered down"""
        async with self._lock:
            if self._state == CircuitState.CLOSED:
                return True

            now = self._clock()
            if self._state == CircuitState.OPEN:
                if now - self._opened_at < self.reset_timeout:
                    return False
                self._state = CircuitState.HALF_OPEN
                self._trial_started_at = None
                self._logger.info("circuit_half_open", cooled_for=round(now - self._opened_at, 2))

            # A trial that never reported back (cancelled request) is abandoned
            # after one cool-down so the circuit cannot stay wedged.
            if self._trial_started_at is not None and now - self._trial_started_at < self.reset_timeout:
                return False
            self._trial_started_at = now
            return True

    async def record_success(self):
        async with self._lock:
            if self._state != CircuitState.CLOSED:
                self._logger.info("circuit_closed")
            self._state = CircuitState.CLOSED
            self._consecutive_failures = 0
            self._trial_started_at = None

    async def record_failure(self, error: Optional[Exception] = None):
        async with self._lock:
            self._consecutive_failures += 1
            self._trial_started_at = None

            if self._state == CircuitState.HALF_OPEN:
                self._trip("circuit_reopened", error)
            elif self._state == CircuitState.CLOSED and self._consecutive_failures >= self.failure_threshold:
                self._trip("circuit_opened", error)

    def _trip(self, event: str, error: Optional[Exception]):
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._logger.warning(event, failures=self._consecutive_failures, error=str(error))
