"""Common utilities and configuration for the mind map services."""

from common.config import (
    DEFAULT_AUTOSAVE_DELAY_SECONDS,
    STORE_BACKENDS,
    ApiConfig,
    ClientConfig,
    get_secret,
    setup_logging,
)
from common.db_resilience import CircuitBreaker, CircuitBreakerConfig, CircuitOpenError, ExponentialBackoff
from common.postgres_resilient import AsyncPostgreSQLPool, PoolUnavailableError


__all__ = [
    "DEFAULT_AUTOSAVE_DELAY_SECONDS",
    "STORE_BACKENDS",
    "ApiConfig",
    "AsyncPostgreSQLPool",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitOpenError",
    "ClientConfig",
    "ExponentialBackoff",
    "PoolUnavailableError",
    "get_secret",
    "setup_logging",
]
