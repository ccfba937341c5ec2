"""JSON export and import of mind maps."""

from collections.abc import Iterable
from typing import Any

import orjson
from pydantic import ValidationError

from graph.model import MindMap, MindMapDraft
from graph.validation import parse_graph


EXPORT_FORMAT = "mindmap"
EXPORT_VERSION = 1


class InvalidDocumentError(ValueError):
    """Raised when an import document is not valid JSON or not a mind map."""


def export_document(mind_maps: Iterable[MindMap]) -> bytes:
    """Serialize mind maps into an indented JSON export document."""
    payload = {
        "format": EXPORT_FORMAT,
        "version": EXPORT_VERSION,
        "mindMaps": [mind_map.to_json_dict() for mind_map in mind_maps],
    }
    return orjson.dumps(payload, option=orjson.OPT_INDENT_2)


def load_document(raw: bytes | str) -> list[MindMapDraft]:
    """Parse an export document into validated drafts.

    Accepts the export envelope, a bare list of mind maps or a single mind map
    object. Every draft's graph is validated; the first invalid one raises
    GraphValidationError.
    """
    try:
        data: Any = orjson.loads(raw)
    except orjson.JSONDecodeError as exc:
        raise InvalidDocumentError("Invalid JSON document") from exc

    if isinstance(data, dict) and "mindMaps" in data:
        version = data.get("version", EXPORT_VERSION)
        if version != EXPORT_VERSION:
            raise InvalidDocumentError(f"Unsupported export version: {version}")
        data = data["mindMaps"]
    entries = data if isinstance(data, list) else [data]

    drafts = []
    for entry in entries:
        if not isinstance(entry, dict):
            raise InvalidDocumentError("Invalid mind map entry: expected an object")
        raw_nodes = entry.get("nodes") or []
        raw_edges = entry.get("edges") or []
        if not isinstance(raw_nodes, list) or not isinstance(raw_edges, list):
            raise InvalidDocumentError("Invalid mind map entry: nodes and edges must be lists")
        try:
            draft = MindMapDraft.model_validate({k: v for k, v in entry.items() if k not in ("nodes", "edges")})
        except ValidationError as exc:
            raise InvalidDocumentError(f"Invalid mind map entry: {exc.error_count()} error(s)") from exc
        nodes, edges = parse_graph(raw_nodes, raw_edges)
        drafts.append(draft.model_copy(update={"nodes": tuple(nodes), "edges": tuple(edges)}))
    return drafts
