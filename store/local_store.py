"""Single-file JSON mind map store for standalone and offline use."""

import asyncio
import contextlib
import os
from pathlib import Path
from typing import Any

import orjson
from pydantic import ValidationError
import structlog

from graph.errors import StorageFailure
from graph.model import MindMap
from graph.transfer import EXPORT_VERSION, export_document
from store.memory_store import MemoryMindMapStore


logger = structlog.get_logger(__name__)


def read_mind_maps(path: Path) -> list[MindMap]:
    """Load every mind map from a store file. A missing file is an empty store."""
    if not path.exists():
        return []

    try:
        data: Any = orjson.loads(path.read_bytes())
    except (OSError, orjson.JSONDecodeError) as e:
        raise StorageFailure(f"Cannot read mind map store {path}: {e}") from e

    if not isinstance(data, dict) or data.get("version") != EXPORT_VERSION or not isinstance(data.get("mindMaps"), list):
        raise StorageFailure(f"Unrecognized mind map store format in {path}")

    try:
        return [MindMap.model_validate(entry) for entry in data["mindMaps"]]
    except ValidationError as e:
        raise StorageFailure(f"Corrupt mind map entry in {path}: {e.error_count()} error(s)") from e


def write_mind_maps(path: Path, mind_maps: list[MindMap]) -> None:
    """Atomically rewrite the store file: write a temp file, fsync, then rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        with temp_path.open("wb") as f:
            f.write(export_document(mind_maps))
            f.flush()
            os.fsync(f.fileno())
        temp_path.replace(path)
    except OSError:
        with contextlib.suppress(OSError):
            temp_path.unlink()
        raise


class LocalMindMapStore(MemoryMindMapStore):
    """Memory store whose every write is first committed to one JSON file.

    The file uses the export document layout, so it can be imported into a
    server-backed account as is.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        mind_maps = read_mind_maps(path)
        super().__init__(mind_maps)
        logger.info("📂 Local mind map store loaded", path=str(path), mind_maps=len(mind_maps))

    async def _persist(self, mind_maps: dict[str, MindMap]) -> None:
        try:
            await asyncio.to_thread(write_mind_maps, self.path, list(mind_maps.values()))
        except OSError as e:
            logger.error("❌ Failed to write local mind map store", path=str(self.path), error=str(e))
            raise StorageFailure(f"Cannot write mind map store {self.path}: {e}") from e
