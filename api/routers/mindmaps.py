"""Mind map endpoints: CRUD on the caller's own mind maps plus JSON export and import."""

import re
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import structlog

from api.auth import Identity, RevocationList, authenticate
from api.limiter import limiter
from api.models import CreateMindMapRequest, ReplaceMindMapRequest
from graph.errors import MindMapError, UnauthenticatedError
from graph.transfer import InvalidDocumentError, export_document, load_document
from graph.validation import parse_graph
from store.base import MindMapStore


logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/mindmaps")
_security = HTTPBearer(auto_error=False)

_store: MindMapStore | None = None
_jwt_secret: str | None = None
_revoked: RevocationList | None = None

_MAX_IMPORT_BYTES = 5 * 1024 * 1024


def configure(store: MindMapStore | None, jwt_secret: str | None, revoked: RevocationList | None = None) -> None:
    global _store, _jwt_secret, _revoked
    _store = store
    _jwt_secret = jwt_secret
    _revoked = revoked


async def require_identity(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_security)],
) -> Identity:
    """Resolve the bearer token; owner ids are only ever taken from here."""
    if _jwt_secret is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service not ready")
    try:
        return await authenticate(credentials.credentials if credentials else None, _jwt_secret, _revoked)
    except UnauthenticatedError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc


def get_store() -> MindMapStore:
    if _store is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service not ready")
    return _store


CurrentIdentity = Annotated[Identity, Depends(require_identity)]
Store = Annotated[MindMapStore, Depends(get_store)]


def _export_filename(title: str) -> str:
    slug = re.sub(r"[^A-Za-z0-9]+", "-", title).strip("-").lower()
    return f"{slug or 'mindmap'}.json"


@router.get("")
async def list_mind_maps(identity: CurrentIdentity, store: Store) -> JSONResponse:
    summaries = await store.list_mind_maps(identity.user_id)
    return JSONResponse(content=[s.to_json_dict() for s in summaries])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_mind_map(body: CreateMindMapRequest, identity: CurrentIdentity, store: Store) -> JSONResponse:
    mind_map = await store.create_mind_map(identity.user_id, body.title, body.description)
    return JSONResponse(content=mind_map.to_json_dict(), status_code=status.HTTP_201_CREATED)


@router.post("/import", status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
async def import_mind_maps(request: Request, identity: CurrentIdentity, store: Store) -> JSONResponse:
    """Create new mind maps for the caller from an export document.

    Mind map ids in the document are not reused; node and edge ids are kept.
    """
    raw = await request.body()
    if len(raw) > _MAX_IMPORT_BYTES:
        return JSONResponse(content={"error": "Document too large"}, status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE)
    try:
        drafts = load_document(raw)
    except InvalidDocumentError as exc:
        return JSONResponse(content={"error": "Invalid document", "detail": str(exc)}, status_code=status.HTTP_400_BAD_REQUEST)

    imported = []
    created_ids: list[str] = []
    try:
        for draft in drafts:
            created = await store.create_mind_map(identity.user_id, draft.title, draft.description)
            created_ids.append(created.id)
            imported.append(
                await store.replace_mind_map_graph(
                    created.id, identity.user_id, draft.title, draft.description, draft.nodes, draft.edges
                )
            )
    except MindMapError:
        # All or nothing: drop every map this import already created
        for created_id in created_ids:
            try:
                await store.delete_mind_map(created_id, identity.user_id)
            except MindMapError as cleanup_error:
                logger.error("❌ Failed to roll back imported mind map", mind_map_id=created_id, error=str(cleanup_error))
        logger.warning("⚠️ Import rolled back", owner_id=identity.user_id, rolled_back=len(created_ids))
        raise

    logger.info("📥 Mind maps imported", owner_id=identity.user_id, count=len(imported))
    return JSONResponse(content={"mindMaps": [m.to_json_dict() for m in imported]}, status_code=status.HTTP_201_CREATED)


@router.get("/{mind_map_id}")
async def get_mind_map(mind_map_id: str, identity: CurrentIdentity, store: Store) -> JSONResponse:
    mind_map = await store.get_mind_map(mind_map_id, identity.user_id)
    return JSONResponse(content=mind_map.to_json_dict())


@router.put("/{mind_map_id}")
async def replace_mind_map(mind_map_id: str, body: ReplaceMindMapRequest, identity: CurrentIdentity, store: Store) -> JSONResponse:
    nodes, edges = parse_graph(body.nodes, body.edges)
    mind_map = await store.replace_mind_map_graph(
        mind_map_id,
        identity.user_id,
        body.title,
        body.description,
        nodes,
        edges,
        expected_updated_at=body.expected_updated_at,
    )
    return JSONResponse(content=mind_map.to_json_dict())


@router.delete("/{mind_map_id}")
async def delete_mind_map(mind_map_id: str, identity: CurrentIdentity, store: Store) -> JSONResponse:
    await store.delete_mind_map(mind_map_id, identity.user_id)
    return JSONResponse(content={"deleted": True})


@router.get("/{mind_map_id}/export")
async def export_mind_map(mind_map_id: str, identity: CurrentIdentity, store: Store) -> Response:
    mind_map = await store.get_mind_map(mind_map_id, identity.user_id)
    return Response(
        content=export_document([mind_map]),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{_export_filename(mind_map.title)}"'},
    )
