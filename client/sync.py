"""In-memory editing session for one mind map, kept in sync with durable storage."""

from collections.abc import Callable
from datetime import datetime
from enum import Enum
from typing import Any, Protocol

import structlog

from client.autosave import AutosaveScheduler, AutosaveState
from common.config import DEFAULT_AUTOSAVE_DELAY_SECONDS
from common.db_resilience import ExponentialBackoff
from graph.model import Edge, EdgeStyle, MindMap, Node, NodeStyle, Position, new_id
from graph.validation import GraphValidationError, Violation, validate_edge, validate_node
from store.base import MindMapStore


logger = structlog.get_logger(__name__)

Listener = Callable[[MindMap], None]
StatusListener = Callable[["SaveStatus"], None]

_NODE_FIELDS = frozenset({"label", "description", "type", "style"})


class SaveStatus(Enum):
    """Whether the in-memory mind map matches what was last durably written."""

    SAVED = "saved"
    UNSAVED = "unsaved"
    SAVING = "saving"
    ERROR = "error"


class MindMapSaver(Protocol):
    """Where a SyncEngine loads from and writes to."""

    async def load_mind_map(self, mind_map_id: str) -> MindMap: ...

    async def save_mind_map(self, mind_map: MindMap, expected_updated_at: datetime | None = None) -> MindMap: ...


class StoreSaver:
    """Adapts a MindMapStore and an owner id to the saver interface."""

    def __init__(self, store: MindMapStore, owner_id: str) -> None:
        self.store = store
        self.owner_id = owner_id

    async def load_mind_map(self, mind_map_id: str) -> MindMap:
        return await self.store.get_mind_map(mind_map_id, self.owner_id)

    async def save_mind_map(self, mind_map: MindMap, expected_updated_at: datetime | None = None) -> MindMap:
        return await self.store.replace_mind_map_graph(
            mind_map.id,
            self.owner_id,
            mind_map.title,
            mind_map.description,
            mind_map.nodes,
            mind_map.edges,
            expected_updated_at=expected_updated_at,
        )


class SyncEngine:
    """Holds the single in-memory copy of an open mind map.

    Mutations are synchronous: each one validates, swaps in a new immutable
    snapshot, notifies listeners and pokes the autosave scheduler. Writes
    happen later, in the background, always with the latest snapshot.

    The baseline is the snapshot most recently confirmed as written. It only
    advances on success, to the snapshot that was actually sent.
    """

    def __init__(
        self,
        mind_map: MindMap,
        saver: MindMapSaver,
        autosave_delay: float = DEFAULT_AUTOSAVE_DELAY_SECONDS,
        compare_and_swap: bool = False,
        backoff: ExponentialBackoff | None = None,
    ) -> None:
        self._snapshot = mind_map
        self._baseline = mind_map
        self._saver = saver
        self._compare_and_swap = compare_and_swap
        self._status = SaveStatus.SAVED
        self.last_error: Exception | None = None
        self._listeners: list[Listener] = []
        self._status_listeners: list[StatusListener] = []
        self._scheduler = AutosaveScheduler(self._write, self._is_dirty, delay=autosave_delay, backoff=backoff)

    @classmethod
    async def open(cls, saver: MindMapSaver, mind_map_id: str, **kwargs: Any) -> "SyncEngine":
        """Load a mind map and start an editing session on it."""
        mind_map = await saver.load_mind_map(mind_map_id)
        logger.info("📂 Mind map opened", mind_map_id=mind_map_id, nodes=len(mind_map.nodes), edges=len(mind_map.edges))
        return cls(mind_map, saver, **kwargs)

    @property
    def snapshot(self) -> MindMap:
        return self._snapshot

    @property
    def baseline(self) -> MindMap:
        return self._baseline

    @property
    def status(self) -> SaveStatus:
        return self._status

    @property
    def autosave_state(self) -> AutosaveState:
        return self._scheduler.state

    @property
    def is_dirty(self) -> bool:
        return self._is_dirty()

    def _is_dirty(self) -> bool:
        return self._snapshot is not self._baseline

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` with every new snapshot. Returns an unsubscribe function."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def subscribe_status(self, listener: StatusListener) -> Callable[[], None]:
        self._status_listeners.append(listener)
        return lambda: self._status_listeners.remove(listener)

    def _set_status(self, status: SaveStatus) -> None:
        if status is self._status:
            return
        self._status = status
        for listener in list(self._status_listeners):
            listener(status)

    def _apply(self, mind_map: MindMap) -> None:
        self._snapshot = mind_map
        for listener in list(self._listeners):
            listener(mind_map)
        if self._status is not SaveStatus.SAVING:
            self._set_status(SaveStatus.UNSAVED)
        self._scheduler.notify_mutation()

    def _require_node(self, node_id: str) -> Node:
        node = self._snapshot.get_node(node_id)
        if node is None:
            raise KeyError(node_id)
        return node

    # Mutations

    def add_node(
        self,
        label: str,
        position: Position | tuple[float, float],
        *,
        node_id: str | None = None,
        type: str | None = None,  # noqa: A002
        description: str | None = None,
        style: NodeStyle | None = None,
    ) -> Node:
        if isinstance(position, tuple):
            position = Position(x=position[0], y=position[1])
        node = Node(
            id=node_id or new_id(),
            type=type,
            label=label,
            description=description,
            position=position,
            style=style,
        )
        validate_node(node)
        if node.id in self._snapshot.node_ids():
            raise GraphValidationError([Violation(entity="node", id=node.id, field="id", message=f"Node id {node.id!r} already exists")])
        self._apply(self._snapshot.with_graph((*self._snapshot.nodes, node), self._snapshot.edges))
        return node

    def update_node(self, node_id: str, **changes: Any) -> Node:
        """Change a node's label, description, type or style."""
        unknown = set(changes) - _NODE_FIELDS
        if unknown:
            raise TypeError(f"Cannot update node field(s): {', '.join(sorted(unknown))}")
        node = self._require_node(node_id)
        updated = Node.model_validate({**node.model_dump(), **changes})
        validate_node(updated)
        self._apply(self._snapshot.with_graph((updated if n.id == node_id else n for n in self._snapshot.nodes), self._snapshot.edges))
        return updated

    def move_node(self, node_id: str, x: float, y: float) -> Node:
        node = self._require_node(node_id)
        moved = node.model_copy(update={"position": Position(x=x, y=y)})
        validate_node(moved)
        self._apply(self._snapshot.with_graph((moved if n.id == node_id else n for n in self._snapshot.nodes), self._snapshot.edges))
        return moved

    def remove_node(self, node_id: str) -> None:
        """Remove a node and every edge touching it."""
        self._require_node(node_id)
        self._apply(self._snapshot.without_node(node_id))

    def add_edge(
        self,
        source: str,
        target: str,
        *,
        edge_id: str | None = None,
        type: str | None = None,  # noqa: A002
        style: EdgeStyle | None = None,
    ) -> Edge:
        edge = Edge(id=edge_id or new_id(), source=source, target=target, type=type, style=style)
        validate_edge(edge, self._snapshot.node_ids())
        if self._snapshot.get_edge(edge.id) is not None:
            raise GraphValidationError([Violation(entity="edge", id=edge.id, field="id", message=f"Edge id {edge.id!r} already exists")])
        self._apply(self._snapshot.with_graph(self._snapshot.nodes, (*self._snapshot.edges, edge)))
        return edge

    def remove_edge(self, edge_id: str) -> None:
        if self._snapshot.get_edge(edge_id) is None:
            raise KeyError(edge_id)
        self._apply(self._snapshot.with_graph(self._snapshot.nodes, (e for e in self._snapshot.edges if e.id != edge_id)))

    def rename(self, title: str, description: str | None = None) -> None:
        title = title.strip()
        if not title:
            raise ValueError("title must not be empty")
        self._apply(self._snapshot.model_copy(update={"title": title, "description": description}))

    # Persistence

    async def _write(self) -> None:
        snapshot = self._snapshot
        expected = self._baseline.updated_at if self._compare_and_swap else None
        self._set_status(SaveStatus.SAVING)
        try:
            stored = await self._saver.save_mind_map(snapshot, expected_updated_at=expected)
        except Exception as e:
            self.last_error = e
            self._set_status(SaveStatus.ERROR)
            logger.warning("⚠️ Mind map save failed", mind_map_id=snapshot.id, error=str(e), error_type=type(e).__name__)
            raise

        self._baseline = stored
        if self._snapshot is snapshot:
            # Nothing changed while saving; adopt the stored copy and its new updatedAt
            self._snapshot = stored
        self.last_error = None
        self._set_status(SaveStatus.UNSAVED if self._is_dirty() else SaveStatus.SAVED)
        logger.debug("💾 Mind map saved", mind_map_id=stored.id, updated_at=stored.updated_at.isoformat())

    async def save(self) -> None:
        """Write pending changes now. Errors are raised to the caller."""
        if self._scheduler.state is AutosaveState.IDLE and self._is_dirty():
            # A failed save left changes behind with nothing scheduled
            self._scheduler.notify_mutation()
        await self._scheduler.flush_now()

    async def close(self) -> None:
        """Stop autosaving, writing any unsaved changes first."""
        await self._scheduler.close()
        logger.info("📕 Mind map closed", mind_map_id=self._snapshot.id, status=self._status.value)
