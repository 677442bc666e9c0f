"""Circuit breaker guarding the notification webhook."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from quotagate.observability.metrics import metrics
from quotagate.utils.time import utc_now

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 5
    timeout_seconds: int = 60
    half_open_max_calls: int = 3
    success_threshold: int = 2


@dataclass
class CircuitBreakerStats:
    state: CircuitState
    consecutive_failures: int = 0
    consecutive_successes: int = 0
    opened_at: Optional[datetime] = None
    half_open_calls: int = 0
    total_calls: int = 0
    total_failures: int = 0
    total_rejected: int = 0


class CircuitBreakerOpen(Exception):
    """Raised instead of calling through while the circuit is open."""

    def __init__(self, name: str, retry_after: int):
        self.name = name
        self.retry_after = retry_after
        super().__init__(f"Circuit {name} is open, retry after {retry_after}s")


class CircuitBreaker:
    """
    Fail-fast wrapper around an unreliable async call.

    State transitions:
    - CLOSED -> OPEN: ``failure_threshold`` consecutive failures
    - OPEN -> HALF_OPEN: ``timeout_seconds`` after opening
    - HALF_OPEN -> CLOSED: ``success_threshold`` consecutive successes
    - HALF_OPEN -> OPEN: any failure
    """

    def __init__(self, name: str, config: CircuitBreakerConfig):
        self.name = name
        self.config = config
        self._stats = CircuitBreakerStats(state=CircuitState.CLOSED)
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._stats.state

    @property
    def stats(self) -> CircuitBreakerStats:
        return CircuitBreakerStats(**vars(self._stats))

    async def call(self, func: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        """Await ``func`` unless the circuit is open.

        Raises:
            CircuitBreakerOpen: call rejected without reaching ``func``
            Exception: whatever ``func`` raised, after it is recorded
        """
        async with self._lock:
            self._stats.total_calls += 1
            if self._stats.state == CircuitState.OPEN:
                if not self._timeout_elapsed():
                    self._reject()
                self._set_state(CircuitState.HALF_OPEN)

            if self._stats.state == CircuitState.HALF_OPEN:
                if self._stats.half_open_calls >= self.config.half_open_max_calls:
                    self._reject()
                self._stats.half_open_calls += 1

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            await self._record_failure(e)
            raise
        await self._record_success()
        return result

    async def reset(self) -> None:
        async with self._lock:
            logger.info(f"Circuit {self.name} manually reset")
            self._set_state(CircuitState.CLOSED)

    def _reject(self) -> None:
        self._stats.total_rejected += 1
        metrics.inc_counter(f"circuit.{self.name}.rejected")
        raise CircuitBreakerOpen(self.name, self._seconds_until_half_open())

    async def _record_success(self) -> None:
        async with self._lock:
            self._stats.consecutive_failures = 0
            self._stats.consecutive_successes += 1
            if (
                self._stats.state == CircuitState.HALF_OPEN
                and self._stats.consecutive_successes >= self.config.success_threshold
            ):
                self._set_state(CircuitState.CLOSED)

    async def _record_failure(self, error: Exception) -> None:
        async with self._lock:
            self._stats.consecutive_successes = 0
            self._stats.consecutive_failures += 1
            self._stats.total_failures += 1
            logger.warning(
                f"Circuit {self.name} failure ({self._stats.consecutive_failures}/"
                f"{self.config.failure_threshold}): {error}"
            )
            if self._stats.state == CircuitState.HALF_OPEN or (
                self._stats.consecutive_failures >= self.config.failure_threshold
            ):
                self._set_state(CircuitState.OPEN)

    def _set_state(self, state: CircuitState) -> None:
        previous = self._stats.state
        self._stats.state = state
        self._stats.half_open_calls = 0
        self._stats.consecutive_successes = 0
        if state == CircuitState.OPEN:
            self._stats.opened_at = utc_now()
            logger.error(f"Circuit {self.name} opened")
        else:
            self._stats.consecutive_failures = 0
            if state == CircuitState.CLOSED:
                self._stats.opened_at = None
            logger.info(f"Circuit {self.name} {previous.value} -> {state.value}")
        metrics.inc_counter(f"circuit.{self.name}.{state.value}")

    def _timeout_elapsed(self) -> bool:
        if not self._stats.opened_at:
            return True
        elapsed = (utc_now() - self._stats.opened_at).total_seconds()
        return elapsed >= self.config.timeout_seconds

    def _seconds_until_half_open(self) -> int:
        if not self._stats.opened_at:
            return 0
        elapsed = (utc_now() - self._stats.opened_at).total_seconds()
        return int(max(0, self.config.timeout_seconds - elapsed))
