"""Tests for the single-file JSON store."""

from pathlib import Path
from unittest.mock import patch

import orjson
import pytest

from graph.errors import StorageFailure
from graph.transfer import EXPORT_VERSION, load_document
from store.local_store import LocalMindMapStore, read_mind_maps, write_mind_maps
from tests.conftest import OWNER_ID, make_mind_map


@pytest.fixture
def store_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "mindmaps.json"


def test_missing_file_is_empty_store(store_path: Path) -> None:
    assert read_mind_maps(store_path) == []


def test_write_then_read(store_path: Path, two_node_graph) -> None:
    nodes, edges = two_node_graph
    mind_map = make_mind_map(nodes, edges)

    write_mind_maps(store_path, [mind_map])

    assert read_mind_maps(store_path) == [mind_map]
    assert not store_path.with_suffix(".json.tmp").exists()


def test_file_is_an_importable_export_document(store_path: Path, two_node_graph) -> None:
    nodes, edges = two_node_graph
    write_mind_maps(store_path, [make_mind_map(nodes, edges, title="Trip")])

    [draft] = load_document(store_path.read_bytes())

    assert draft.title == "Trip"
    assert draft.nodes == nodes


@pytest.mark.parametrize(
    "content",
    [
        b"{truncated",
        orjson.dumps({"version": EXPORT_VERSION + 1, "mindMaps": []}),
        orjson.dumps({"version": EXPORT_VERSION, "mindMaps": [{"title": "no id"}]}),
        orjson.dumps([]),
    ],
)
def test_unreadable_file_is_storage_failure(store_path: Path, content: bytes) -> None:
    store_path.parent.mkdir(parents=True)
    store_path.write_bytes(content)

    with pytest.raises(StorageFailure):
        LocalMindMapStore(store_path)


@pytest.mark.asyncio
async def test_survives_restart(store_path: Path, two_node_graph) -> None:
    nodes, edges = two_node_graph
    store = LocalMindMapStore(store_path)
    created = await store.create_mind_map(OWNER_ID, "Plan")
    saved = await store.replace_mind_map_graph(created.id, OWNER_ID, "Plan", "kept", nodes, edges)
    await store.close()

    reopened = LocalMindMapStore(store_path)

    assert await reopened.get_mind_map(created.id, OWNER_ID) == saved


@pytest.mark.asyncio
async def test_failed_write_keeps_previous_state(store_path: Path, two_node_graph) -> None:
    nodes, edges = two_node_graph
    store = LocalMindMapStore(store_path)
    created = await store.create_mind_map(OWNER_ID, "Plan")

    with (
        patch("store.local_store.write_mind_maps", side_effect=OSError("disk full")),
        pytest.raises(StorageFailure, match="disk full"),
    ):
        await store.replace_mind_map_graph(created.id, OWNER_ID, "Lost", None, nodes, edges)

    assert await store.get_mind_map(created.id, OWNER_ID) == created
    assert read_mind_maps(store_path) == [created]


def test_failed_write_removes_temp_file(store_path: Path) -> None:
    with patch("store.local_store.os.fsync", side_effect=OSError("io error")), pytest.raises(OSError):
        write_mind_maps(store_path, [make_mind_map()])

    assert not store_path.exists()
    assert not store_path.with_suffix(".json.tmp").exists()
