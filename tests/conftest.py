"""Shared pytest fixtures and sample mind map builders."""

from datetime import UTC, datetime
from typing import Any

import pytest

from graph.model import Edge, MindMap, Node, Position


OWNER_ID = "00000000-0000-0000-0000-000000000001"
OTHER_OWNER_ID = "00000000-0000-0000-0000-000000000002"
MIND_MAP_ID = "10000000-0000-0000-0000-000000000001"


def make_node(node_id: str = "n1", label: str | None = None, x: float = 0.0, y: float = 0.0, **kwargs: Any) -> Node:
    return Node(id=node_id, label=label if label is not None else node_id.upper(), position=Position(x=x, y=y), **kwargs)


def make_edge(edge_id: str = "e1", source: str = "n1", target: str = "n2", **kwargs: Any) -> Edge:
    return Edge(id=edge_id, source=source, target=target, **kwargs)


def make_mind_map(
    nodes: tuple[Node, ...] = (),
    edges: tuple[Edge, ...] = (),
    mind_map_id: str = MIND_MAP_ID,
    owner_id: str = OWNER_ID,
    title: str = "Plan",
    updated_at: datetime | None = None,
) -> MindMap:
    created = datetime(2024, 1, 1, tzinfo=UTC)
    return MindMap(
        id=mind_map_id,
        owner_id=owner_id,
        title=title,
        nodes=nodes,
        edges=edges,
        created_at=created,
        updated_at=updated_at or created,
    )


@pytest.fixture
def two_node_graph() -> tuple[tuple[Node, ...], tuple[Edge, ...]]:
    """n1 -> n2 joined by e1."""
    return (make_node("n1"), make_node("n2", x=100, y=50)), (make_edge("e1", "n1", "n2"),)
