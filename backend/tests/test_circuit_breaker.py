import asyncio

import pytest

from snapshare.shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError


def test_breaker_opens_and_recovers():
    clock = {"now": 1000.0}
    breaker = CircuitBreaker(
        name="test", failure_threshold=2, recovery_time=10, window_seconds=60, clock=lambda: clock["now"]
    )

    async def fail():
        raise RuntimeError("down")

    async def succeed():
        return "ok"

    async def scenario():
        for _ in range(2):
            with pytest.raises(RuntimeError):
                await breaker.call(fail)
        assert breaker.state == "open"
        with pytest.raises(CircuitBreakerOpenError):
            await breaker.call(succeed)

        clock["now"] += 11
        assert await breaker.call(succeed) == "ok"
        assert breaker.state == "closed"

    asyncio.run(scenario())


def test_failures_outside_window_do_not_count():
    clock = {"now": 0.0}
    breaker = CircuitBreaker(
        name="window", failure_threshold=2, recovery_time=10, window_seconds=5, clock=lambda: clock["now"]
    )

    def fail():
        raise RuntimeError("down")

    async def scenario():
        with pytest.raises(RuntimeError):
            await breaker.call(fail)
        clock["now"] += 6
        with pytest.raises(RuntimeError):
            await breaker.call(fail)
        assert breaker.state == "closed"

    asyncio.run(scenario())


def test_failed_probe_reopens():
    clock = {"now": 0.0}
    breaker = CircuitBreaker(
        name="probe", failure_threshold=1, recovery_time=5, window_seconds=60, clock=lambda: clock["now"]
    )

    def fail():
        raise RuntimeError("down")

    async def scenario():
        with pytest.raises(RuntimeError):
            await breaker.call(fail)
        clock["now"] += 6
        with pytest.raises(RuntimeError):
            await breaker.call(fail)
        assert breaker.state == "open"

    asyncio.run(scenario())
