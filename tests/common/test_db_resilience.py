"""Tests for database resilience utilities."""

from datetime import datetime, timedelta
from unittest.mock import Mock

import pytest

from common.db_resilience import CircuitBreaker, CircuitBreakerConfig, CircuitOpenError, CircuitState, ExponentialBackoff


async def _fail() -> None:
    raise RuntimeError("Failed")


async def _succeed() -> str:
    return "success"


class TestCircuitBreaker:
    """Tests for CircuitBreaker class."""

    def test_init(self) -> None:
        config = CircuitBreakerConfig(name="TestBreaker", failure_threshold=3, recovery_timeout=30)
        breaker = CircuitBreaker(config)

        assert breaker.config == config
        assert breaker.failure_count == 0
        assert breaker.last_failure_time is None
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_call_async_success(self) -> None:
        breaker = CircuitBreaker(CircuitBreakerConfig(name="TestBreaker"))

        result = await breaker.call_async(_succeed)

        assert result == "success"
        assert breaker.failure_count == 0
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_call_async_accepts_plain_callable(self) -> None:
        breaker = CircuitBreaker(CircuitBreakerConfig(name="TestBreaker"))
        func = Mock(return_value=42)

        assert await breaker.call_async(func, 1, key="v") == 42
        func.assert_called_once_with(1, key="v")

    @pytest.mark.asyncio
    async def test_call_async_failure(self) -> None:
        breaker = CircuitBreaker(CircuitBreakerConfig(name="TestBreaker", failure_threshold=3))

        with pytest.raises(RuntimeError, match="Failed"):
            await breaker.call_async(_fail)

        assert breaker.failure_count == 1
        assert breaker.last_failure_time is not None
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_circuit_opens_after_threshold(self) -> None:
        breaker = CircuitBreaker(CircuitBreakerConfig(name="TestBreaker", failure_threshold=2))

        for _ in range(2):
            with pytest.raises(RuntimeError):
                await breaker.call_async(_fail)

        assert breaker.failure_count == 2
        assert breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_circuit_rejects_calls_when_open(self) -> None:
        breaker = CircuitBreaker(CircuitBreakerConfig(name="TestBreaker", failure_threshold=2, recovery_timeout=10))
        for _ in range(2):
            with pytest.raises(RuntimeError):
                await breaker.call_async(_fail)

        func = Mock(return_value="success")
        with pytest.raises(CircuitOpenError, match="TestBreaker: Circuit breaker is OPEN"):
            await breaker.call_async(func)
        func.assert_not_called()

    @pytest.mark.asyncio
    async def test_circuit_closes_after_recovery_timeout(self) -> None:
        breaker = CircuitBreaker(CircuitBreakerConfig(name="TestBreaker", failure_threshold=2, recovery_timeout=1))
        for _ in range(2):
            with pytest.raises(RuntimeError):
                await breaker.call_async(_fail)
        assert breaker.state == CircuitState.OPEN

        breaker.last_failure_time = datetime.now() - timedelta(seconds=2)

        assert await breaker.call_async(_succeed) == "success"
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_custom_exception_type(self) -> None:
        class CustomError(Exception):
            pass

        breaker = CircuitBreaker(CircuitBreakerConfig(name="TestBreaker", failure_threshold=2, expected_exception=CustomError))

        with pytest.raises(CustomError):
            await breaker.call_async(Mock(side_effect=CustomError("Custom error")))
        assert breaker.failure_count == 1

        # Other exceptions pass through without counting
        with pytest.raises(ValueError):
            await breaker.call_async(Mock(side_effect=ValueError("Different error")))
        assert breaker.failure_count == 1


class TestExponentialBackoff:
    """Tests for ExponentialBackoff class."""

    def test_init(self) -> None:
        backoff = ExponentialBackoff(initial_delay=1.0, max_delay=60.0, exponential_base=2.0, jitter=True)

        assert backoff.initial_delay == 1.0
        assert backoff.max_delay == 60.0
        assert backoff.exponential_base == 2.0
        assert backoff.jitter is True

    def test_get_delay_no_jitter(self) -> None:
        backoff = ExponentialBackoff(initial_delay=1.0, max_delay=60.0, exponential_base=2.0, jitter=False)

        assert backoff.get_delay(0) == 1.0
        assert backoff.get_delay(1) == 2.0
        assert backoff.get_delay(2) == 4.0
        assert backoff.get_delay(3) == 8.0

    def test_get_delay_respects_max(self) -> None:
        backoff = ExponentialBackoff(initial_delay=1.0, max_delay=10.0, exponential_base=2.0, jitter=False)

        assert backoff.get_delay(10) == 10.0
        assert backoff.get_delay(20) == 10.0

    def test_jitter_stays_within_a_quarter_and_under_max(self) -> None:
        backoff = ExponentialBackoff(initial_delay=1.0, max_delay=60.0, exponential_base=2.0, jitter=True)

        for _ in range(50):
            assert 2.0 <= backoff.get_delay(1) <= 2.5

        capped = ExponentialBackoff(initial_delay=1.0, max_delay=5.0, jitter=True)
        assert capped.get_delay(10) == 5.0

    def test_custom_initial_delay(self) -> None:
        backoff = ExponentialBackoff(initial_delay=5.0, max_delay=100.0, exponential_base=2.0, jitter=False)

        assert backoff.get_delay(0) == 5.0
        assert backoff.get_delay(1) == 10.0
        assert backoff.get_delay(2) == 20.0
