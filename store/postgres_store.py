"""Durable, multi-user mind map store on PostgreSQL."""

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from typing import Any
from uuid import UUID

from psycopg.errors import DataError, ForeignKeyViolation, IntegrityError, InterfaceError, OperationalError
from psycopg.rows import dict_row
import structlog

from common.db_resilience import CircuitOpenError
from common.postgres_resilient import AsyncPostgreSQLPool, PoolUnavailableError
from graph.errors import MindMapConflictError, MindMapNotFoundError, StorageFailure, UnauthenticatedError
from graph.model import Edge, EdgeStyle, MindMap, MindMapSummary, Node, NodeStyle, Position
from graph.validation import GraphValidationError, Violation, validate_graph


logger = structlog.get_logger(__name__)

_MINDMAP_COLUMNS = "id, owner_id, title, description, created_at, updated_at"

_INSERT_NODE = """
    INSERT INTO mindmap_nodes (
        mindmap_id, id, ordinal, type, label, description,
        position_x, position_y, background, color, border, border_radius
    )
    VALUES (%s::uuid, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
"""

_INSERT_EDGE = """
    INSERT INTO mindmap_edges (mindmap_id, id, ordinal, source, target, type, stroke, stroke_width)
    VALUES (%s::uuid, %s, %s, %s, %s, %s, %s, %s)
"""


def _is_uuid(value: str) -> bool:
    try:
        UUID(value)
    except (ValueError, TypeError, AttributeError):
        return False
    return True


@contextmanager
def _storage_errors(mind_map_id: str) -> Iterator[None]:
    """Translate driver errors into the mind map error taxonomy."""
    try:
        yield
    except IntegrityError as e:
        # A concurrent delete won the race; the rows we reference are gone
        logger.warning("⚠️ Integrity violation on mind map write", mind_map_id=mind_map_id, error=str(e))
        raise MindMapNotFoundError(mind_map_id) from e
    except DataError as e:
        # Values the graph model accepts but a column does not, e.g. an over-long title
        logger.warning("⚠️ Value rejected by storage", mind_map_id=mind_map_id, error=str(e))
        raise GraphValidationError(
            [Violation(entity="mindmap", id=mind_map_id, field="*", message=f"Rejected by storage: {e}")]
        ) from e
    except (OperationalError, InterfaceError, PoolUnavailableError, CircuitOpenError) as e:
        logger.error("❌ Storage failure", mind_map_id=mind_map_id, error=str(e))
        raise StorageFailure(str(e)) from e


def _node_row(mind_map_id: str, ordinal: int, node: Node) -> tuple[Any, ...]:
    style = node.style or NodeStyle()
    return (
        mind_map_id,
        node.id,
        ordinal,
        node.type,
        node.label,
        node.description,
        node.position.x,
        node.position.y,
        style.background,
        style.color,
        style.border,
        style.border_radius,
    )


def _edge_row(mind_map_id: str, ordinal: int, edge: Edge) -> tuple[Any, ...]:
    style = edge.style or EdgeStyle()
    return (mind_map_id, edge.id, ordinal, edge.source, edge.target, edge.type, style.stroke, style.stroke_width)


def _node_from_row(row: dict[str, Any]) -> Node:
    style = NodeStyle(
        background=row["background"],
        color=row["color"],
        border=row["border"],
        border_radius=row["border_radius"],
    )
    return Node(
        id=row["id"],
        type=row["type"],
        label=row["label"],
        description=row["description"],
        position=Position(x=row["position_x"], y=row["position_y"]),
        style=style if style != NodeStyle() else None,
    )


def _edge_from_row(row: dict[str, Any]) -> Edge:
    style = EdgeStyle(stroke=row["stroke"], stroke_width=row["stroke_width"])
    return Edge(
        id=row["id"],
        source=row["source"],
        target=row["target"],
        type=row["type"],
        style=style if style != EdgeStyle() else None,
    )


def _mind_map_from_row(row: dict[str, Any], nodes: Sequence[Node] = (), edges: Sequence[Edge] = ()) -> MindMap:
    return MindMap(
        id=str(row["id"]),
        owner_id=str(row["owner_id"]),
        title=row["title"],
        description=row["description"],
        nodes=tuple(nodes),
        edges=tuple(edges),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PostgresMindMapStore:
    """Mind map store backed by the mindmaps, mindmap_nodes and mindmap_edges tables.

    Graph replaces run in one transaction that first locks the mind map row
    with ``FOR UPDATE``; reads take ``FOR SHARE`` so they wait for an
    in-flight replace instead of observing a half-written graph.
    """

    def __init__(self, pool: AsyncPostgreSQLPool) -> None:
        self._pool = pool

    async def list_mind_maps(self, owner_id: str) -> list[MindMapSummary]:
        if not _is_uuid(owner_id):
            return []

        with _storage_errors("*"):
            async with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    """
                    SELECT m.id, m.title, m.description, m.created_at, m.updated_at,
                           (SELECT COUNT(*) FROM mindmap_nodes n WHERE n.mindmap_id = m.id) AS node_count,
                           (SELECT COUNT(*) FROM mindmap_edges e WHERE e.mindmap_id = m.id) AS edge_count
                    FROM mindmaps m
                    WHERE m.owner_id = %s::uuid
                    ORDER BY m.updated_at DESC
                    """,
                    (owner_id,),
                )
                rows = await cur.fetchall()

        return [
            MindMapSummary(
                id=str(row["id"]),
                title=row["title"],
                description=row["description"],
                created_at=row["created_at"],
                updated_at=row["updated_at"],
                node_count=row["node_count"],
                edge_count=row["edge_count"],
            )
            for row in rows
        ]

    async def get_mind_map(self, mind_map_id: str, owner_id: str) -> MindMap:
        if not (_is_uuid(mind_map_id) and _is_uuid(owner_id)):
            raise MindMapNotFoundError(mind_map_id)

        with _storage_errors(mind_map_id):
            async with self._pool.connection() as conn, conn.transaction(), conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    f"SELECT {_MINDMAP_COLUMNS} FROM mindmaps WHERE id = %s::uuid AND owner_id = %s::uuid FOR SHARE",
                    (mind_map_id, owner_id),
                )
                row = await cur.fetchone()
                if row is None:
                    raise MindMapNotFoundError(mind_map_id)

                await cur.execute(
                    """
                    SELECT id, type, label, description, position_x, position_y,
                           background, color, border, border_radius
                    FROM mindmap_nodes
                    WHERE mindmap_id = %s::uuid
                    ORDER BY ordinal
                    """,
                    (mind_map_id,),
                )
                node_rows = await cur.fetchall()

                await cur.execute(
                    """
                    SELECT id, source, target, type, stroke, stroke_width
                    FROM mindmap_edges
                    WHERE mindmap_id = %s::uuid
                    ORDER BY ordinal
                    """,
                    (mind_map_id,),
                )
                edge_rows = await cur.fetchall()

        return _mind_map_from_row(
            row,
            [_node_from_row(r) for r in node_rows],
            [_edge_from_row(r) for r in edge_rows],
        )

    async def create_mind_map(self, owner_id: str, title: str, description: str | None = None) -> MindMap:
        if not _is_uuid(owner_id):
            raise UnauthenticatedError("Unknown user")

        try:
            with _storage_errors("new"):
                async with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cur:
                    await cur.execute(
                        f"""
                        INSERT INTO mindmaps (owner_id, title, description)
                        VALUES (%s::uuid, %s, %s)
                        RETURNING {_MINDMAP_COLUMNS}
                        """,
                        (owner_id, title, description),
                    )
                    row = await cur.fetchone()
        except MindMapNotFoundError as e:
            if isinstance(e.__cause__, ForeignKeyViolation):
                raise UnauthenticatedError("Unknown user") from e.__cause__
            raise

        if row is None:
            raise StorageFailure("Mind map insert returned no row")

        mind_map = _mind_map_from_row(row)
        logger.info("✅ Mind map created", mind_map_id=mind_map.id, owner_id=owner_id)
        return mind_map

    async def replace_mind_map_graph(
        self,
        mind_map_id: str,
        owner_id: str,
        title: str,
        description: str | None,
        nodes: Sequence[Node],
        edges: Sequence[Edge],
        expected_updated_at: datetime | None = None,
    ) -> MindMap:
        validate_graph(nodes, edges)
        if not (_is_uuid(mind_map_id) and _is_uuid(owner_id)):
            raise MindMapNotFoundError(mind_map_id)

        with _storage_errors(mind_map_id):
            async with self._pool.connection() as conn, conn.transaction(), conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    "SELECT updated_at FROM mindmaps WHERE id = %s::uuid AND owner_id = %s::uuid FOR UPDATE",
                    (mind_map_id, owner_id),
                )
                locked = await cur.fetchone()
                if locked is None:
                    raise MindMapNotFoundError(mind_map_id)
                if expected_updated_at is not None and locked["updated_at"] != expected_updated_at:
                    raise MindMapConflictError(mind_map_id)

                await cur.execute(
                    f"""
                    UPDATE mindmaps
                    SET title = %s,
                        description = %s,
                        updated_at = GREATEST(NOW(), updated_at + INTERVAL '1 microsecond')
                    WHERE id = %s::uuid
                    RETURNING {_MINDMAP_COLUMNS}
                    """,
                    (title, description, mind_map_id),
                )
                row = await cur.fetchone()

                # Edges reference nodes: drop edges first, insert them last
                await cur.execute("DELETE FROM mindmap_edges WHERE mindmap_id = %s::uuid", (mind_map_id,))
                await cur.execute("DELETE FROM mindmap_nodes WHERE mindmap_id = %s::uuid", (mind_map_id,))
                if nodes:
                    await cur.executemany(_INSERT_NODE, [_node_row(mind_map_id, i, node) for i, node in enumerate(nodes)])
                if edges:
                    await cur.executemany(_INSERT_EDGE, [_edge_row(mind_map_id, i, edge) for i, edge in enumerate(edges)])

        if row is None:
            raise MindMapNotFoundError(mind_map_id)

        logger.debug("💾 Mind map graph replaced", mind_map_id=mind_map_id, nodes=len(nodes), edges=len(edges))
        return _mind_map_from_row(row, nodes, edges)

    async def delete_mind_map(self, mind_map_id: str, owner_id: str) -> None:
        if not (_is_uuid(mind_map_id) and _is_uuid(owner_id)):
            raise MindMapNotFoundError(mind_map_id)

        with _storage_errors(mind_map_id):
            async with self._pool.connection() as conn, conn.cursor() as cur:
                # Nodes and edges go with it through ON DELETE CASCADE
                await cur.execute(
                    "DELETE FROM mindmaps WHERE id = %s::uuid AND owner_id = %s::uuid RETURNING id",
                    (mind_map_id, owner_id),
                )
                deleted = await cur.fetchone()

        if deleted is None:
            raise MindMapNotFoundError(mind_map_id)
        logger.info("🗑️ Mind map deleted", mind_map_id=mind_map_id, owner_id=owner_id)

    async def close(self) -> None:
        await self._pool.close()
