"""Shape and referential-integrity checks for mind map graphs.

Validation is pure and aggregating: every problem in a graph is collected so a
caller can report all of them at once. Self-referencing edges
(``source == target``) are allowed.
"""

from collections import Counter
from collections.abc import Collection, Iterable
import math
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, ValidationError

from graph.errors import MindMapError
from graph.model import Edge, Node


Entity = Literal["mindmap", "node", "edge"]


class Violation(BaseModel):
    """One machine-readable validation failure."""

    model_config = ConfigDict(frozen=True)

    entity: Entity
    id: str
    field: str
    message: str


class GraphValidationError(MindMapError):
    """Raised when a node, an edge or a whole graph fails validation."""

    def __init__(self, violations: Iterable[Violation]) -> None:
        self.violations: list[Violation] = list(violations)
        summary = "; ".join(v.message for v in self.violations[:3])
        if len(self.violations) > 3:
            summary += f"; and {len(self.violations) - 3} more"
        super().__init__(f"Graph validation failed: {summary}")


def _nul_violations(entity: Entity, entity_id: str, values: dict[str, str | None]) -> list[Violation]:
    # Text columns cannot hold NUL, so no backend accepts it
    return [
        Violation(entity=entity, id=entity_id, field=field, message=f"{entity.capitalize()} {entity_id!r} has a NUL character in {field}")
        for field, value in values.items()
        if value is not None and "\x00" in value
    ]


def node_violations(node: Node) -> list[Violation]:
    """Return every problem with a single node."""
    violations = []
    if not node.label.strip():
        violations.append(Violation(entity="node", id=node.id, field="label", message=f"Node {node.id!r} has an empty label"))
    for axis in ("x", "y"):
        value = getattr(node.position, axis)
        if not math.isfinite(value):
            violations.append(
                Violation(
                    entity="node",
                    id=node.id,
                    field=f"position.{axis}",
                    message=f"Node {node.id!r} has a non-finite position.{axis}",
                )
            )
    style = node.style
    violations.extend(
        _nul_violations(
            "node",
            node.id,
            {
                "id": node.id,
                "type": node.type,
                "label": node.label,
                "description": node.description,
                "style.background": style.background if style else None,
                "style.color": style.color if style else None,
                "style.border": style.border if style else None,
                "style.borderRadius": style.border_radius if style else None,
            },
        )
    )
    return violations


def edge_violations(edge: Edge, node_ids: Collection[str]) -> list[Violation]:
    """Return every problem with a single edge against the given node id set."""
    violations = []
    for end in ("source", "target"):
        ref = getattr(edge, end)
        if ref not in node_ids:
            violations.append(
                Violation(
                    entity="edge",
                    id=edge.id,
                    field=end,
                    message=f"Edge {edge.id!r} references missing {end} node {ref!r}",
                )
            )
    violations.extend(
        _nul_violations(
            "edge",
            edge.id,
            {"id": edge.id, "type": edge.type, "style.stroke": edge.style.stroke if edge.style else None},
        )
    )
    return violations


def graph_violations(nodes: Iterable[Node], edges: Iterable[Edge], known_node_ids: Collection[str] = ()) -> list[Violation]:
    """Return every problem with a full node/edge set, nodes first.

    ``known_node_ids`` names nodes that exist but failed to parse; edges
    pointing at them are not reported as dangling a second time.
    """
    nodes = list(nodes)
    edges = list(edges)
    violations: list[Violation] = []

    for node in nodes:
        violations.extend(node_violations(node))
    for node_id, count in Counter(node.id for node in nodes).items():
        if count > 1:
            violations.append(Violation(entity="node", id=node_id, field="id", message=f"Node id {node_id!r} is used {count} times"))

    node_ids = {node.id for node in nodes} | set(known_node_ids)
    for edge in edges:
        violations.extend(edge_violations(edge, node_ids))
    for edge_id, count in Counter(edge.id for edge in edges).items():
        if count > 1:
            violations.append(Violation(entity="edge", id=edge_id, field="id", message=f"Edge id {edge_id!r} is used {count} times"))

    return violations


def _raw_id(entity: Literal["node", "edge"], raw: Any, index: int) -> str:
    entity_id = raw.get("id") if isinstance(raw, dict) else None
    return entity_id if isinstance(entity_id, str) else f"{entity}s[{index}]"


def _shape_violations(entity: Literal["node", "edge"], raw: Any, index: int, exc: ValidationError) -> list[Violation]:
    entity_id = _raw_id(entity, raw, index)
    return [
        Violation(
            entity=entity,
            id=entity_id,
            field=".".join(str(part) for part in error["loc"]) or entity,
            message=f"{entity.capitalize()} {entity_id!r}: {error['msg']}",
        )
        for error in exc.errors()
    ]


def _unparsed_node_violations(raw: Any, index: int, exc: ValidationError) -> list[Violation]:
    """Shape errors of a node that failed to parse, plus its empty label if it has one."""
    violations = _shape_violations("node", raw, index, exc)
    if not isinstance(raw, dict) or any(v.field == "label" for v in violations):
        return violations
    data = raw.get("data") if isinstance(raw.get("data"), dict) else {}
    label = raw["label"] if "label" in raw else data.get("label")
    if label is None or (isinstance(label, str) and not label.strip()):
        node_id = _raw_id("node", raw, index)
        violations.append(Violation(entity="node", id=node_id, field="label", message=f"Node {node_id!r} has an empty label"))
    return violations


def parse_graph(raw_nodes: Iterable[Any], raw_edges: Iterable[Any]) -> tuple[list[Node], list[Edge]]:
    """Build nodes and edges from decoded JSON, reporting every problem at once.

    Shape problems (a missing position, a non-numeric coordinate, an edge
    without a target) are collected alongside the graph-level ones, and the
    lot is raised as one GraphValidationError with node violations first.
    """
    nodes: list[Node] = []
    edges: list[Edge] = []
    violations: list[Violation] = []
    unparsed_node_ids: set[str] = set()

    for index, raw in enumerate(raw_nodes):
        try:
            nodes.append(Node.model_validate(raw))
        except ValidationError as e:
            violations.extend(_unparsed_node_violations(raw, index, e))
            if isinstance(raw, dict) and isinstance(raw.get("id"), str):
                unparsed_node_ids.add(raw["id"])
    for index, raw in enumerate(raw_edges):
        try:
            edges.append(Edge.model_validate(raw))
        except ValidationError as e:
            violations.extend(_shape_violations("edge", raw, index, e))

    violations.extend(graph_violations(nodes, edges, unparsed_node_ids))
    if violations:
        violations.sort(key=lambda v: v.entity != "node")
        raise GraphValidationError(violations)
    return nodes, edges


def validate_node(node: Node) -> None:
    """Raise GraphValidationError if the node is malformed."""
    violations = node_violations(node)
    if violations:
        raise GraphValidationError(violations)


def validate_edge(edge: Edge, node_ids: Collection[str]) -> None:
    """Raise GraphValidationError if either end of the edge is not in node_ids."""
    violations = edge_violations(edge, node_ids)
    if violations:
        raise GraphValidationError(violations)


def validate_graph(nodes: Iterable[Node], edges: Iterable[Edge]) -> None:
    """Raise GraphValidationError listing every problem in the graph."""
    violations = graph_violations(nodes, edges)
    if violations:
        raise GraphValidationError(violations)
