"""The storage interface shared by every mind map backend."""

from collections.abc import Sequence
from datetime import datetime
from typing import Protocol, runtime_checkable

from graph.model import Edge, MindMap, MindMapSummary, Node


@runtime_checkable
class MindMapStore(Protocol):
    """Ownership-scoped, durable storage for mind maps.

    Every operation takes the caller's owner id. A mind map that exists but
    belongs to someone else is reported exactly like a missing one, with
    MindMapNotFoundError. Transient I/O failures surface as StorageFailure.
    """

    async def list_mind_maps(self, owner_id: str) -> list[MindMapSummary]:
        """Summaries of the owner's mind maps, most recently updated first."""
        ...

    async def get_mind_map(self, mind_map_id: str, owner_id: str) -> MindMap: ...

    async def create_mind_map(self, owner_id: str, title: str, description: str | None = None) -> MindMap:
        """Create an empty mind map with a fresh id."""
        ...

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
        """Atomically replace metadata and the whole node/edge set.

        The graph is validated before storage is touched. When
        ``expected_updated_at`` is given and the stored map has a different
        ``updated_at``, MindMapConflictError is raised and nothing is written.
        """
        ...

    async def delete_mind_map(self, mind_map_id: str, owner_id: str) -> None:
        """Delete the mind map with all of its nodes and edges."""
        ...

    async def close(self) -> None: ...
