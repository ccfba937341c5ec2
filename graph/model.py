"""Value types for mind maps and their node/edge graphs.

All types are immutable. On the wire they use camelCase keys (``ownerId``,
``borderRadius``); snake_case attribute names are accepted as well.
"""

from collections.abc import Iterable
from datetime import datetime
from typing import Any
import uuid

from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from pydantic.alias_generators import to_camel


def new_id() -> str:
    """Generate a random identifier for a node, edge or mind map."""
    return str(uuid.uuid4())


class GraphModel(BaseModel):
    """Base for all frozen, camelCase-aliased graph types."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_json_dict(self) -> dict[str, Any]:
        """Dump with wire aliases, JSON-compatible values and no unset style fields."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Position(GraphModel):
    """Canvas coordinates of a node."""

    x: float
    y: float


class NodeStyle(GraphModel):
    """Optional visual attributes of a node."""

    model_config = ConfigDict(extra="forbid")

    background: str | None = None
    color: str | None = None
    border: str | None = None
    border_radius: str | None = None


class EdgeStyle(GraphModel):
    """Optional visual attributes of an edge."""

    model_config = ConfigDict(extra="forbid")

    stroke: str | None = None
    stroke_width: float | None = None


class Node(GraphModel):
    """A labeled point on the canvas."""

    id: str
    type: str | None = None
    label: str = ""
    description: str | None = None
    position: Position
    style: NodeStyle | None = None

    @model_validator(mode="before")
    @classmethod
    def lift_data_envelope(cls, value: Any) -> Any:
        """Accept ``{"data": {"label", "description"}}`` as sent by canvas clients."""
        if isinstance(value, dict) and isinstance(value.get("data"), dict):
            data = value["data"]
            value = {k: v for k, v in value.items() if k != "data"}
            if "label" in data:
                value.setdefault("label", data["label"])
            if "description" in data:
                value.setdefault("description", data["description"])
        return value

    @field_validator("label", mode="before")
    @classmethod
    def missing_label_is_empty(cls, v: Any) -> Any:
        # A null label is reported by graph validation, not rejected as a type error
        return "" if v is None else v


class Edge(GraphModel):
    """A directed connection between two nodes of the same mind map."""

    id: str
    source: str
    target: str
    type: str | None = None
    style: EdgeStyle | None = None


class MindMap(GraphModel):
    """A titled, owned graph of nodes and edges."""

    id: str
    owner_id: str
    title: str
    description: str | None = None
    nodes: tuple[Node, ...] = ()
    edges: tuple[Edge, ...] = ()
    created_at: datetime
    updated_at: datetime

    def node_ids(self) -> set[str]:
        return {node.id for node in self.nodes}

    def get_node(self, node_id: str) -> Node | None:
        return next((node for node in self.nodes if node.id == node_id), None)

    def get_edge(self, edge_id: str) -> Edge | None:
        return next((edge for edge in self.edges if edge.id == edge_id), None)

    def with_graph(self, nodes: Iterable[Node], edges: Iterable[Edge]) -> "MindMap":
        """Return a copy holding a different node/edge set."""
        return self.model_copy(update={"nodes": tuple(nodes), "edges": tuple(edges)})

    def without_node(self, node_id: str) -> "MindMap":
        """Return a copy without the node and without every edge touching it."""
        return self.with_graph(
            (node for node in self.nodes if node.id != node_id),
            (edge for edge in self.edges if node_id not in (edge.source, edge.target)),
        )


class MindMapSummary(GraphModel):
    """Listing entry for a mind map: metadata and counts only."""

    id: str
    title: str
    description: str | None = None
    created_at: datetime
    updated_at: datetime
    node_count: int = 0
    edge_count: int = 0


class MindMapDraft(GraphModel):
    """A mind map body without identity, as carried by import documents."""

    title: str
    description: str | None = None
    nodes: tuple[Node, ...] = ()
    edges: tuple[Edge, ...] = ()
