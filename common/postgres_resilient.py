"""Resilient async PostgreSQL connection pool with circuit breaker and retry logic."""

import asyncio
from collections.abc import AsyncGenerator
import contextlib
from contextlib import asynccontextmanager
from typing import Any

import psycopg
from psycopg.errors import DatabaseError, InterfaceError, OperationalError
import structlog

from common.db_resilience import CircuitBreaker, CircuitBreakerConfig, ExponentialBackoff


logger = structlog.get_logger(__name__)


class PoolUnavailableError(Exception):
    """Raised when no healthy connection could be obtained from the pool."""


class AsyncPostgreSQLPool:
    """Bounded pool of autocommit async psycopg connections.

    Connections are health-checked on checkout and periodically in the
    background. Transactions are opened explicitly by callers with
    ``conn.transaction()``.
    """

    def __init__(
        self,
        connection_params: dict[str, Any],
        max_connections: int = 10,
        min_connections: int = 2,
        max_retries: int = 3,
        health_check_interval: int = 30,
        acquire_timeout: float = 10.0,
    ):
        self.connection_params = connection_params
        self.max_connections = max_connections
        self.min_connections = min_connections
        self.max_retries = max_retries
        self.health_check_interval = health_check_interval
        self.acquire_timeout = acquire_timeout

        self.connections: asyncio.Queue[psycopg.AsyncConnection[Any]] = asyncio.Queue(maxsize=max_connections)
        self.active_connections = 0
        self._closed = False
        self._initialized = False
        self._health_check_task: asyncio.Task[None] | None = None

        self.circuit_breaker = CircuitBreaker(
            CircuitBreakerConfig(
                name="AsyncPostgreSQL",
                failure_threshold=3,
                recovery_timeout=30,
                expected_exception=(DatabaseError, InterfaceError, OperationalError),
            )
        )
        self.backoff = ExponentialBackoff(initial_delay=0.5, max_delay=30.0, exponential_base=2.0)

    async def initialize(self) -> None:
        """Open the minimum number of connections and start the health check loop."""
        if self._initialized:
            return

        logger.info("🔗 Initializing PostgreSQL connection pool", min=self.min_connections, max=self.max_connections)
        for _ in range(self.min_connections):
            try:
                conn = await self._create_connection()
            except Exception as e:
                logger.warning("⚠️ Failed to create initial connection", error=str(e))
                break
            self.active_connections += 1
            self.connections.put_nowait(conn)

        self._health_check_task = asyncio.create_task(self._health_check_loop())
        self._initialized = True

    async def _create_connection(self) -> psycopg.AsyncConnection[Any]:
        """Create a new async PostgreSQL connection behind the circuit breaker."""

        async def create() -> psycopg.AsyncConnection[Any]:
            conn = await psycopg.AsyncConnection.connect(**self.connection_params)
            await conn.set_autocommit(True)
            async with conn.cursor() as cursor:
                await cursor.execute("SELECT 1")
            return conn

        conn: psycopg.AsyncConnection[Any] = await self.circuit_breaker.call_async(create)
        return conn

    async def _test_connection(self, conn: psycopg.AsyncConnection[Any]) -> bool:
        """Test if a connection is healthy."""
        try:
            if conn.closed:
                return False
            async with conn.cursor() as cursor:
                await cursor.execute("SELECT 1")
                result = await cursor.fetchone()
                return result is not None and result[0] == 1
        except Exception:
            return False

    async def _discard(self, conn: psycopg.AsyncConnection[Any]) -> None:
        with contextlib.suppress(Exception):
            await conn.close()
        self.active_connections = max(0, self.active_connections - 1)

    async def _health_check_loop(self) -> None:
        """Drop unhealthy idle connections and replenish to the minimum."""
        while not self._closed:
            await asyncio.sleep(self.health_check_interval)

            healthy = []
            for _ in range(self.connections.qsize()):
                try:
                    conn = self.connections.get_nowait()
                except asyncio.QueueEmpty:
                    break
                if await self._test_connection(conn):
                    healthy.append(conn)
                else:
                    logger.warning("⚠️ Removing unhealthy connection from pool")
                    await self._discard(conn)
            for conn in healthy:
                self.connections.put_nowait(conn)

            while self.active_connections < self.min_connections and not self._closed:
                try:
                    conn = await self._create_connection()
                except Exception as e:
                    logger.warning("⚠️ Failed to replenish connection", error=str(e))
                    break
                self.active_connections += 1
                self.connections.put_nowait(conn)

    async def _acquire(self) -> psycopg.AsyncConnection[Any]:
        """Take an idle connection, open a new one, or wait for one to be returned."""
        try:
            conn = self.connections.get_nowait()
        except asyncio.QueueEmpty:
            if self.active_connections < self.max_connections:
                self.active_connections += 1
                try:
                    return await self._create_connection()
                except Exception:
                    self.active_connections -= 1
                    raise
            try:
                conn = await asyncio.wait_for(self.connections.get(), timeout=self.acquire_timeout)
            except TimeoutError as e:
                raise PoolUnavailableError("Timed out waiting for a PostgreSQL connection") from e

        if not await self._test_connection(conn):
            logger.warning("⚠️ Got unhealthy connection from pool, creating new one")
            await self._discard(conn)
            self.active_connections += 1
            try:
                return await self._create_connection()
            except Exception:
                self.active_connections -= 1
                raise
        return conn

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[psycopg.AsyncConnection[Any]]:
        """Check out a connection, retrying with backoff when PostgreSQL is unavailable."""
        if self._closed:
            raise RuntimeError("Connection pool is closed")

        conn: psycopg.AsyncConnection[Any] | None = None
        last_error: Exception | None = None
        for attempt in range(self.max_retries):
            try:
                conn = await self._acquire()
                break
            except PoolUnavailableError:
                raise
            except Exception as e:
                last_error = e
                if attempt + 1 < self.max_retries:
                    delay = self.backoff.get_delay(attempt)
                    logger.warning("⚠️ PostgreSQL connection attempt failed", attempt=attempt + 1, error=str(e), retry_in=round(delay, 1))
                    await asyncio.sleep(delay)

        if conn is None:
            raise PoolUnavailableError(f"Failed to get PostgreSQL connection after {self.max_retries} attempts") from last_error

        try:
            yield conn
        except (InterfaceError, OperationalError) as e:
            # Connection error during use - don't return to pool
            logger.warning("⚠️ Connection error during operation", error=str(e))
            await self._discard(conn)
            conn = None
            raise
        finally:
            if conn is not None:
                if not conn.closed and not self._closed:
                    self.connections.put_nowait(conn)
                else:
                    await self._discard(conn)

    async def close(self) -> None:
        """Stop the health check loop and close all idle connections."""
        logger.info("🔌 Closing PostgreSQL connection pool")
        self._closed = True

        if self._health_check_task is not None:
            self._health_check_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._health_check_task

        while not self.connections.empty():
            conn = self.connections.get_nowait()
            await self._discard(conn)

        logger.info("✅ PostgreSQL connection pool closed")
