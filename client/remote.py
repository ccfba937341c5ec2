"""Async HTTP client for the mind map API.

HTTP failures are mapped back into the same error taxonomy the stores raise,
so the sync engine treats a remote API and a local store alike.
"""

from collections.abc import Sequence
from datetime import datetime
from types import TracebackType
from typing import Any

import httpx
import structlog

from common.config import ClientConfig
from graph.errors import MindMapConflictError, MindMapError, MindMapNotFoundError, StorageFailure, UnauthenticatedError
from graph.model import Edge, MindMap, MindMapSummary, Node
from graph.validation import GraphValidationError, Violation


logger = structlog.get_logger(__name__)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        return str(body.get("error") or body.get("detail") or body)
    return str(body)


def raise_for_response(response: httpx.Response, mind_map_id: str = "") -> None:
    """Raise the mind map error matching an unsuccessful response."""
    code = response.status_code
    if code < 400:
        return
    if code == 400:
        try:
            body = response.json()
        except ValueError:
            body = {}
        violations = body.get("violations") if isinstance(body, dict) else None
        if violations:
            raise GraphValidationError(Violation.model_validate(v) for v in violations)
        raise MindMapError(f"Request rejected: {_error_message(response)}")
    if code == 401:
        raise UnauthenticatedError(_error_message(response))
    if code == 404:
        raise MindMapNotFoundError(mind_map_id)
    if code == 409:
        raise MindMapConflictError(mind_map_id)
    if code == 429 or code >= 500:
        raise StorageFailure(f"Server error {code}: {_error_message(response)}")
    raise MindMapError(f"Request rejected ({code}): {_error_message(response)}")


class MindMapClient:
    """Client for the ``/api`` endpoints, authenticated with a bearer token."""

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._token = token
        self._http = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    @classmethod
    def from_config(cls, config: ClientConfig, token: str | None = None) -> "MindMapClient":
        return cls(config.api_url, token=token, timeout=config.request_timeout_seconds)

    async def __aenter__(self) -> "MindMapClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, path: str, mind_map_id: str = "", **kwargs: Any) -> httpx.Response:
        headers = kwargs.pop("headers", {})
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        try:
            response = await self._http.request(method, path, headers=headers, **kwargs)
        except httpx.TransportError as e:
            logger.warning("⚠️ Mind map API unreachable", method=method, path=path, error=str(e))
            raise StorageFailure(f"Cannot reach mind map API: {e}") from e
        raise_for_response(response, mind_map_id)
        return response

    async def login(self, email: str, password: str) -> str:
        """Log in and keep the returned access token for later requests."""
        response = await self._request("POST", "/api/auth/login", json={"email": email, "password": password})
        self._token = response.json()["access_token"]
        return self._token

    async def logout(self) -> None:
        await self._request("POST", "/api/auth/logout")
        self._token = None

    async def list_mind_maps(self) -> list[MindMapSummary]:
        response = await self._request("GET", "/api/mindmaps")
        return [MindMapSummary.model_validate(item) for item in response.json()]

    async def get_mind_map(self, mind_map_id: str) -> MindMap:
        response = await self._request("GET", f"/api/mindmaps/{mind_map_id}", mind_map_id)
        return MindMap.model_validate(response.json())

    async def create_mind_map(self, title: str, description: str | None = None) -> MindMap:
        payload: dict[str, Any] = {"title": title}
        if description is not None:
            payload["description"] = description
        response = await self._request("POST", "/api/mindmaps", json=payload)
        return MindMap.model_validate(response.json())

    async def replace_mind_map_graph(
        self,
        mind_map_id: str,
        title: str,
        description: str | None,
        nodes: Sequence[Node],
        edges: Sequence[Edge],
        expected_updated_at: datetime | None = None,
    ) -> MindMap:
        payload: dict[str, Any] = {
            "title": title,
            "description": description,
            "nodes": [node.to_json_dict() for node in nodes],
            "edges": [edge.to_json_dict() for edge in edges],
        }
        if expected_updated_at is not None:
            payload["expectedUpdatedAt"] = expected_updated_at.isoformat()
        response = await self._request("PUT", f"/api/mindmaps/{mind_map_id}", mind_map_id, json=payload)
        return MindMap.model_validate(response.json())

    async def delete_mind_map(self, mind_map_id: str) -> None:
        await self._request("DELETE", f"/api/mindmaps/{mind_map_id}", mind_map_id)

    async def export_mind_map(self, mind_map_id: str) -> bytes:
        response = await self._request("GET", f"/api/mindmaps/{mind_map_id}/export", mind_map_id)
        return response.content

    async def import_mind_maps(self, document: bytes) -> list[MindMap]:
        response = await self._request(
            "POST",
            "/api/mindmaps/import",
            content=document,
            headers={"Content-Type": "application/json"},
        )
        return [MindMap.model_validate(item) for item in response.json()["mindMaps"]]

    # Saver interface used by the sync engine

    async def load_mind_map(self, mind_map_id: str) -> MindMap:
        return await self.get_mind_map(mind_map_id)

    async def save_mind_map(self, mind_map: MindMap, expected_updated_at: datetime | None = None) -> MindMap:
        return await self.replace_mind_map_graph(
            mind_map.id,
            mind_map.title,
            mind_map.description,
            mind_map.nodes,
            mind_map.edges,
            expected_updated_at=expected_updated_at,
        )
