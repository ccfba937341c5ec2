"""Resilience utilities for handling storage connection failures and recovery."""

import inspect
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
import random
from threading import Lock
from typing import Any

import structlog


logger = structlog.get_logger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failures exceeded threshold, rejecting calls
    HALF_OPEN = "half_open"  # Testing if service recovered


class CircuitOpenError(Exception):
    """Raised when a call is rejected because the circuit is open."""


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""

    failure_threshold: int = 5  # Number of failures before opening
    recovery_timeout: int = 60  # Seconds before trying half-open
    expected_exception: type[Exception] | tuple[type[Exception], ...] = Exception
    name: str = "CircuitBreaker"


class CircuitBreaker:
    """Circuit breaker pattern implementation for database connections."""

    def __init__(self, config: CircuitBreakerConfig):
        self.config = config
        self.failure_count = 0
        self.last_failure_time: datetime | None = None
        self.state = CircuitState.CLOSED
        self._lock = Lock()

    async def call_async(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Execute an async (or plain) callable with circuit breaker protection."""
        with self._lock:
            if self.state == CircuitState.OPEN:
                if self._should_attempt_reset():
                    self.state = CircuitState.HALF_OPEN
                    logger.info("🔄 Circuit breaker entering HALF_OPEN state", breaker=self.config.name)
                else:
                    raise CircuitOpenError(f"{self.config.name}: Circuit breaker is OPEN")

        try:
            if inspect.iscoroutinefunction(func):
                result = await func(*args, **kwargs)
            else:
                result = func(*args, **kwargs)
            self._on_success()
            return result
        except self.config.expected_exception:
            self._on_failure()
            raise

    def _should_attempt_reset(self) -> bool:
        """Check if enough time has passed to try reset."""
        return self.last_failure_time is not None and datetime.now() - self.last_failure_time > timedelta(seconds=self.config.recovery_timeout)

    def _on_success(self) -> None:
        """Handle successful call."""
        with self._lock:
            self.failure_count = 0
            if self.state != CircuitState.CLOSED:
                logger.info("✅ Circuit breaker reset to CLOSED", breaker=self.config.name)
                self.state = CircuitState.CLOSED

    def _on_failure(self) -> None:
        """Handle failed call."""
        with self._lock:
            self.failure_count += 1
            self.last_failure_time = datetime.now()

            if self.failure_count >= self.config.failure_threshold and self.state != CircuitState.OPEN:
                logger.error("🚨 Circuit breaker OPEN", breaker=self.config.name, failures=self.failure_count)
                self.state = CircuitState.OPEN


class ExponentialBackoff:
    """Exponential backoff retry strategy."""

    def __init__(self, initial_delay: float = 1.0, max_delay: float = 60.0, exponential_base: float = 2.0, jitter: bool = True):
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter

    def get_delay(self, retry_count: int) -> float:
        """Calculate delay for given retry count."""
        delay = min(self.initial_delay * (self.exponential_base**retry_count), self.max_delay)

        if self.jitter:
            # Up to 25% extra, never above max_delay
            delay = min(delay * (1 + random.random() * 0.25), self.max_delay)  # noqa: S311  # nosec B311

        return delay
