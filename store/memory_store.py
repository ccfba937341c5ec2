"""Process-local mind map store."""

import asyncio
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta

import structlog

from graph.errors import MindMapConflictError, MindMapNotFoundError
from graph.model import Edge, MindMap, MindMapSummary, Node, new_id
from graph.validation import validate_graph


logger = structlog.get_logger(__name__)


def next_timestamp(previous: datetime | None = None) -> datetime:
    """Current UTC time, nudged past ``previous`` so updated_at always advances."""
    now = datetime.now(UTC)
    if previous is not None and now <= previous:
        now = previous + timedelta(microseconds=1)
    return now


def summarize(mind_map: MindMap) -> MindMapSummary:
    return MindMapSummary(
        id=mind_map.id,
        title=mind_map.title,
        description=mind_map.description,
        created_at=mind_map.created_at,
        updated_at=mind_map.updated_at,
        node_count=len(mind_map.nodes),
        edge_count=len(mind_map.edges),
    )


class MemoryMindMapStore:
    """Keeps every mind map in a dict of immutable snapshots.

    Writes build the next state, hand it to ``_persist`` and only then adopt
    it, all under one lock. Readers always see either the old or the new
    snapshot of a mind map, never a partial one.
    """

    def __init__(self, mind_maps: Sequence[MindMap] = ()) -> None:
        self._maps: dict[str, MindMap] = {m.id: m for m in mind_maps}
        self._write_lock = asyncio.Lock()

    async def _persist(self, mind_maps: dict[str, MindMap]) -> None:
        """Durably record the next state before it is adopted. No-op in memory."""

    async def _commit(self, mind_maps: dict[str, MindMap]) -> None:
        await self._persist(mind_maps)
        self._maps = mind_maps

    def _owned(self, mind_map_id: str, owner_id: str) -> MindMap:
        mind_map = self._maps.get(mind_map_id)
        if mind_map is None or mind_map.owner_id != owner_id:
            raise MindMapNotFoundError(mind_map_id)
        return mind_map

    async def list_mind_maps(self, owner_id: str) -> list[MindMapSummary]:
        owned = [m for m in self._maps.values() if m.owner_id == owner_id]
        owned.sort(key=lambda m: m.updated_at, reverse=True)
        return [summarize(m) for m in owned]

    async def get_mind_map(self, mind_map_id: str, owner_id: str) -> MindMap:
        return self._owned(mind_map_id, owner_id)

    async def create_mind_map(self, owner_id: str, title: str, description: str | None = None) -> MindMap:
        now = next_timestamp()
        mind_map = MindMap(
            id=new_id(),
            owner_id=owner_id,
            title=title,
            description=description,
            created_at=now,
            updated_at=now,
        )
        async with self._write_lock:
            await self._commit({**self._maps, mind_map.id: mind_map})
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

        async with self._write_lock:
            current = self._owned(mind_map_id, owner_id)
            if expected_updated_at is not None and current.updated_at != expected_updated_at:
                raise MindMapConflictError(mind_map_id)

            updated = current.model_copy(
                update={
                    "title": title,
                    "description": description,
                    "nodes": tuple(nodes),
                    "edges": tuple(edges),
                    "updated_at": next_timestamp(current.updated_at),
                }
            )
            await self._commit({**self._maps, mind_map_id: updated})

        logger.debug("💾 Mind map graph replaced", mind_map_id=mind_map_id, nodes=len(nodes), edges=len(edges))
        return updated

    async def delete_mind_map(self, mind_map_id: str, owner_id: str) -> None:
        async with self._write_lock:
            self._owned(mind_map_id, owner_id)
            await self._commit({k: v for k, v in self._maps.items() if k != mind_map_id})
        logger.info("🗑️ Mind map deleted", mind_map_id=mind_map_id, owner_id=owner_id)

    async def close(self) -> None:
        pass
