from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections import deque
from typing import Awaitable, Callable, Deque, TypeVar

from snapshare.infra.metrics import metrics

logger = logging.getLogger("snapshare.circuit")

T = TypeVar("T")

CLOSED = "closed"
OPEN = "open"
HALF_OPEN = "half_open"


class CircuitBreakerOpenError(RuntimeError):
    pass


class CircuitBreaker:
    """Fail fast on a remote dependency after repeated errors.

    Failures are counted inside a sliding window. Once ``failure_threshold`` is
    reached the breaker opens and every call raises ``CircuitBreakerOpenError``
    until ``recovery_time`` has passed; then a single probe call is let through.
    """

    def __init__(
        self,
        *,
        name: str,
        failure_threshold: int = 5,
        recovery_time: float = 30.0,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = max(1, failure_threshold)
        self.recovery_time = max(0.01, recovery_time)
        self.window_seconds = max(0.01, window_seconds)
        self._clock = clock
        self._state = CLOSED
        self._opened_at = 0.0
        self._failures: Deque[float] = deque()
        self._probe_in_flight = False
        self._lock = asyncio.Lock()
        metrics.record_circuit_state(self.name, self._state)

    @property
    def state(self) -> str:
        return self._state

    async def call(self, fn: Callable[[], T | Awaitable[T]]) -> T:
        await self._before_call()
        try:
            result = fn()
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:  # noqa: BLE001
            await self._on_failure()
            logger.warning(
                "circuit_failure",
                extra={"extra": {"name": self.name, "state": self._state, "error": type(exc).__name__}},
            )
            raise
        await self._on_success()
        return result  # type: ignore[return-value]

    async def _before_call(self) -> None:
        async with self._lock:
            if self._state == OPEN:
                if self._clock() - self._opened_at < self.recovery_time:
                    raise CircuitBreakerOpenError(f"circuit_open:{self.name}")
                self._transition(HALF_OPEN)
            if self._state == HALF_OPEN:
                if self._probe_in_flight:
                    raise CircuitBreakerOpenError(f"circuit_half_open:{self.name}")
                self._probe_in_flight = True

    async def _on_failure(self) -> None:
        async with self._lock:
            now = self._clock()
            self._probe_in_flight = False
            self._failures.append(now)
            while self._failures and self._failures[0] < now - self.window_seconds:
                self._failures.popleft()
            if self._state == HALF_OPEN or len(self._failures) >= self.failure_threshold:
                self._opened_at = now
                self._transition(OPEN)
                logger.warning("circuit_opened", extra={"extra": {"name": self.name}})

    async def _on_success(self) -> None:
        async with self._lock:
            self._failures.clear()
            self._probe_in_flight = False
            if self._state != CLOSED:
                logger.info("circuit_closed", extra={"extra": {"name": self.name}})
            self._transition(CLOSED)

    def _transition(self, state: str) -> None:
        self._state = state
        metrics.record_circuit_state(self.name, state)
