"""One-shot schema initializer for mind map storage.

  1. Ensures the PostgreSQL database exists (admin-level CREATE DATABASE).
  2. Creates / verifies all tables and indexes via store.postgres_schema.

All DDL statements are idempotent (IF NOT EXISTS) so subsequent runs are no-ops.
Exits 0 on success, 1 if any step fails.
"""

import asyncio
from os import getenv
from pathlib import Path
import sys

import psycopg
from psycopg import sql
import structlog

from common import AsyncPostgreSQLPool, get_secret, setup_logging
from store.postgres_schema import create_postgres_schema


logger = structlog.get_logger(__name__)


def postgres_connection_params() -> dict[str, str | int]:
    """Read connection parameters from the environment; POSTGRES_ADDRESS is host[:port]."""
    address = getenv("POSTGRES_ADDRESS", "localhost:5432")
    if ":" in address:
        host, port_str = address.rsplit(":", 1)
        port = int(port_str)
    else:
        host, port = address, 5432
    return {
        "host": host,
        "port": port,
        "dbname": getenv("POSTGRES_DATABASE", "mindmaps"),
        "user": getenv("POSTGRES_USERNAME", "mindmaps"),
        "password": get_secret("POSTGRES_PASSWORD") or "mindmaps",
    }


def ensure_postgres_database(params: dict[str, str | int]) -> None:
    """Create the target database if it does not already exist (synchronous)."""
    database = str(params["dbname"])
    admin_params = {**params, "dbname": "postgres"}
    logger.info("🔧 Ensuring PostgreSQL database exists...", database=database)
    with psycopg.connect(**admin_params) as conn:  # type: ignore[arg-type]
        conn.autocommit = True
        with conn.cursor() as cursor:
            cursor.execute("SELECT 1 FROM pg_database WHERE datname = %s", (database,))
            if cursor.fetchone():
                logger.info("✅ PostgreSQL database already exists", database=database)
            else:
                cursor.execute(sql.SQL("CREATE DATABASE {}").format(sql.Identifier(database)))
                logger.info("✅ PostgreSQL database created", database=database)


async def init_postgres(params: dict[str, str | int]) -> bool:
    """Create all tables and indexes. Returns True on success."""
    pool: AsyncPostgreSQLPool | None = None
    try:
        pool = AsyncPostgreSQLPool(
            connection_params=params,
            max_connections=2,
            min_connections=1,
            max_retries=5,
        )
        await pool.initialize()
        failures = await create_postgres_schema(pool)
        return failures == 0
    except Exception as e:
        logger.error("❌ PostgreSQL schema init failed", error=str(e))
        return False
    finally:
        if pool:
            await pool.close()


async def run() -> int:
    logger.info("🚀 Schema initializer starting...")
    params = postgres_connection_params()

    # Must happen before pool creation
    try:
        ensure_postgres_database(params)
    except Exception as e:
        logger.error("❌ Failed to ensure PostgreSQL database exists", error=str(e))
        return 1

    if await init_postgres(params):
        logger.info("✅ Schema initialization complete")
        return 0
    logger.error("❌ Schema initialization failed")
    return 1


def main() -> None:  # pragma: no cover
    """Entry point for the schema initializer."""
    log_file = getenv("LOG_FILE")
    setup_logging("schema-init", level=getenv("LOG_LEVEL", "INFO"), log_file=Path(log_file) if log_file else None)
    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()
