"""PostgreSQL schema definitions for mind map storage.

Single source of truth for all PostgreSQL tables and indexes.
All statements use IF NOT EXISTS, so running them on every startup is safe.
Schema is never dropped.
"""

from typing import Any, cast

import structlog


logger = structlog.get_logger(__name__)


# Accounts, mind maps and their graphs, in dependency order.
# Nodes and edges are keyed by (mindmap_id, id) so no two mind maps share one;
# ordinal preserves the client's node/edge order across a round trip.
_SCHEMA_STATEMENTS: list[tuple[str, str]] = [
    (
        "users table",
        """
        CREATE TABLE IF NOT EXISTS users (
            id              UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            email           VARCHAR(255) UNIQUE NOT NULL,
            hashed_password VARCHAR(255) NOT NULL,
            is_active       BOOLEAN NOT NULL DEFAULT TRUE,
            created_at      TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
            updated_at      TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
        )
        """,
    ),
    (
        "idx_users_email",
        "CREATE INDEX IF NOT EXISTS idx_users_email ON users (email)",
    ),
    (
        "mindmaps table",
        """
        CREATE TABLE IF NOT EXISTS mindmaps (
            id          UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            owner_id    UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            title       VARCHAR(500) NOT NULL,
            description TEXT,
            created_at  TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
            updated_at  TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
        )
        """,
    ),
    (
        "idx_mindmaps_owner_updated",
        "CREATE INDEX IF NOT EXISTS idx_mindmaps_owner_updated ON mindmaps (owner_id, updated_at DESC)",
    ),
    (
        "mindmap_nodes table",
        """
        CREATE TABLE IF NOT EXISTS mindmap_nodes (
            mindmap_id    UUID NOT NULL REFERENCES mindmaps(id) ON DELETE CASCADE,
            id            TEXT NOT NULL,
            ordinal       INTEGER NOT NULL,
            type          TEXT,
            label         TEXT NOT NULL,
            description   TEXT,
            position_x    DOUBLE PRECISION NOT NULL,
            position_y    DOUBLE PRECISION NOT NULL,
            background    TEXT,
            color         TEXT,
            border        TEXT,
            border_radius TEXT,
            PRIMARY KEY (mindmap_id, id)
        )
        """,
    ),
    (
        "mindmap_edges table",
        """
        CREATE TABLE IF NOT EXISTS mindmap_edges (
            mindmap_id   UUID NOT NULL REFERENCES mindmaps(id) ON DELETE CASCADE,
            id           TEXT NOT NULL,
            ordinal      INTEGER NOT NULL,
            source       TEXT NOT NULL,
            target       TEXT NOT NULL,
            type         TEXT,
            stroke       TEXT,
            stroke_width DOUBLE PRECISION,
            PRIMARY KEY (mindmap_id, id),
            FOREIGN KEY (mindmap_id, source) REFERENCES mindmap_nodes (mindmap_id, id) ON DELETE CASCADE,
            FOREIGN KEY (mindmap_id, target) REFERENCES mindmap_nodes (mindmap_id, id) ON DELETE CASCADE
        )
        """,
    ),
    (
        "idx_mindmap_edges_source",
        "CREATE INDEX IF NOT EXISTS idx_mindmap_edges_source ON mindmap_edges (mindmap_id, source)",
    ),
    (
        "idx_mindmap_edges_target",
        "CREATE INDEX IF NOT EXISTS idx_mindmap_edges_target ON mindmap_edges (mindmap_id, target)",
    ),
]


async def create_postgres_schema(pool: Any) -> int:
    """Create all PostgreSQL tables and indexes.

    Safe to call on every startup. Each statement is attempted independently;
    failures are logged and counted rather than aborting the remaining ones.

    Args:
        pool: An AsyncPostgreSQLPool instance (from common.postgres_resilient).

    Returns:
        The number of statements that failed.
    """
    logger.info("🔧 Creating PostgreSQL schema (tables and indexes)...")

    success_count = 0
    failure_count = 0

    async with pool.connection() as conn:
        # psycopg async cursor types are not fully inferred by mypy
        async with conn.cursor() as cursor_cm:
            cursor = cast(Any, cursor_cm)
            for name, stmt in _SCHEMA_STATEMENTS:
                try:
                    await cursor.execute(stmt)
                    logger.info("✅ Schema object ready", name=name)
                    success_count += 1
                except Exception as e:
                    logger.error("❌ Failed to create schema object", name=name, error=str(e))
                    failure_count += 1

    logger.info(
        "✅ PostgreSQL schema creation complete",
        succeeded=success_count,
        failed=failure_count,
        total=len(_SCHEMA_STATEMENTS),
    )
    return failure_count
