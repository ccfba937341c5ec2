"""Mind map API service: user accounts, JWT authentication and mind map storage."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
import os
from pathlib import Path
from typing import Annotated, Any
from uuid import UUID

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from psycopg.errors import InterfaceError, OperationalError, UniqueViolation
from psycopg.rows import dict_row
import redis.asyncio as aioredis
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
import structlog
import uvicorn

from api.auth import DUMMY_HASH, Identity, RevocationList, create_token, hash_password, verify_password
from api.limiter import limiter
from api.middleware import RequestIDMiddleware
from api.models import LoginRequest, LoginResponse, RegisterRequest, UserResponse
import api.routers.mindmaps as _mindmaps_router
from common import ApiConfig, AsyncPostgreSQLPool, CircuitOpenError, PoolUnavailableError, setup_logging
from common.config import cors_origins_from_env
from graph.errors import MindMapConflictError, MindMapNotFoundError, StorageFailure, UnauthenticatedError
from graph.validation import GraphValidationError
from store.base import MindMapStore
from store.local_store import LocalMindMapStore
from store.postgres_store import PostgresMindMapStore


logger = structlog.get_logger(__name__)

# Module-level state
_pool: AsyncPostgreSQLPool | None = None
_config: ApiConfig | None = None
_redis: aioredis.Redis | None = None
_revoked: RevocationList | None = None
_store: MindMapStore | None = None

API_PORT = 8004
_DB_ERRORS = (OperationalError, InterfaceError, PoolUnavailableError, CircuitOpenError)


def get_health_data() -> dict[str, Any]:
    """Return health status for the API service."""
    return {
        "status": "healthy" if _store else "starting",
        "service": "mindmap-api",
        "backend": _config.store_backend if _config else None,
        "timestamp": datetime.now(UTC).isoformat(),
    }


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None]:  # pragma: no cover
    """Manage API service lifecycle."""
    global _pool, _config, _redis, _revoked, _store

    logger.info("🚀 API service starting...")
    _config = ApiConfig.from_env()

    if _config.store_backend == "postgres":
        _pool = AsyncPostgreSQLPool(
            connection_params=_config.postgres_connection_params,
            max_connections=10,
            min_connections=2,
        )
        await _pool.initialize()
        _store = PostgresMindMapStore(_pool)
        logger.info("💾 Database pool initialized")
    else:
        _store = LocalMindMapStore(_config.local_store_path)
        logger.info("📂 Using local mind map store", path=str(_config.local_store_path))

    if _config.redis_url:
        _redis = aioredis.from_url(_config.redis_url, decode_responses=True)
        _revoked = RevocationList(_redis)
        redis_host = _config.redis_url.split("@")[-1].split("://")[-1]
        logger.info("🔴 Redis connected for token revocation", host=redis_host)

    _mindmaps_router.configure(_store, _config.jwt_secret_key, _revoked)
    logger.info("✅ API service ready", port=API_PORT, backend=_config.store_backend)

    yield

    logger.info("🔧 API service shutting down...")
    _mindmaps_router.configure(None, None)
    if _store:
        await _store.close()
    if _redis:
        await _redis.aclose()
    _store = None
    _pool = None
    _redis = None
    _revoked = None
    logger.info("✅ API service stopped")


# Read CORS origins at module load time (config not available yet at this point)
_cors_origins = cors_origins_from_env()

app = FastAPI(
    title="Mind Map API",
    version="0.1.0",
    description="Ownership-scoped storage and synchronization for mind map graphs",
    default_response_class=JSONResponse,
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)  # type: ignore[arg-type]

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins or ["http://localhost:3000", "http://localhost:5173"],
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestIDMiddleware)


@app.middleware("http")
async def security_headers(request: Request, call_next: Any) -> Any:
    """Add security headers to all responses."""
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


@app.exception_handler(GraphValidationError)
async def graph_validation_handler(_request: Request, exc: GraphValidationError) -> JSONResponse:
    return JSONResponse(
        content={"error": "Validation failed", "violations": [v.model_dump() for v in exc.violations]},
        status_code=status.HTTP_400_BAD_REQUEST,
    )


@app.exception_handler(MindMapNotFoundError)
async def not_found_handler(_request: Request, _exc: MindMapNotFoundError) -> JSONResponse:
    return JSONResponse(content={"error": "Mind map not found"}, status_code=status.HTTP_404_NOT_FOUND)


@app.exception_handler(MindMapConflictError)
async def conflict_handler(_request: Request, _exc: MindMapConflictError) -> JSONResponse:
    return JSONResponse(content={"error": "Mind map was modified concurrently"}, status_code=status.HTTP_409_CONFLICT)


@app.exception_handler(UnauthenticatedError)
async def unauthenticated_handler(_request: Request, exc: UnauthenticatedError) -> JSONResponse:
    return JSONResponse(
        content={"error": str(exc)},
        status_code=status.HTTP_401_UNAUTHORIZED,
        headers={"WWW-Authenticate": "Bearer"},
    )


@app.exception_handler(StorageFailure)
async def storage_failure_handler(_request: Request, exc: StorageFailure) -> JSONResponse:
    logger.error("❌ Storage unavailable", error=str(exc))
    return JSONResponse(content={"error": "Storage unavailable"}, status_code=status.HTTP_503_SERVICE_UNAVAILABLE)


app.include_router(_mindmaps_router.router)


def _accounts_pool() -> AsyncPostgreSQLPool:
    if _pool is None:
        if _config is not None and _config.store_backend != "postgres":
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Accounts are not available with the local store backend",
            )
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service not ready")
    return _pool


@app.get("/api/health")
async def health_check() -> JSONResponse:
    """Service health check endpoint."""
    return JSONResponse(content=get_health_data())


@app.post("/api/auth/register", status_code=status.HTTP_201_CREATED)
@limiter.limit("3/minute")
async def register(request: Request, body: RegisterRequest) -> JSONResponse:  # noqa: ARG001
    """Register a new user account."""
    pool = _accounts_pool()
    hashed_password = hash_password(body.password)

    try:
        async with pool.connection() as conn, conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                """
                INSERT INTO users (email, hashed_password)
                VALUES (%s, %s)
                RETURNING id
                """,
                (body.email, hashed_password),
            )
            await cur.fetchone()
    except UniqueViolation:
        # Same response for an existing email, so accounts cannot be enumerated
        logger.info("ℹ️ Registration attempt for existing email (blind)")
        return JSONResponse(content={"message": "Registration processed"}, status_code=status.HTTP_201_CREATED)
    except _DB_ERRORS as exc:
        raise StorageFailure(str(exc)) from exc

    logger.info("✅ User registered", email=body.email)
    return JSONResponse(content={"message": "Registration processed"}, status_code=status.HTTP_201_CREATED)


@app.post("/api/auth/login")
@limiter.limit("5/minute")
async def login(request: Request, body: LoginRequest) -> JSONResponse:  # noqa: ARG001
    """Authenticate and receive a JWT access token."""
    pool = _accounts_pool()
    if _config is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service not ready")

    try:
        async with pool.connection() as conn, conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                "SELECT id, email, hashed_password, is_active FROM users WHERE email = %s",
                (body.email,),
            )
            user = await cur.fetchone()
    except _DB_ERRORS as exc:
        raise StorageFailure(str(exc)) from exc

    if user is None:
        verify_password(body.password, DUMMY_HASH)
        raise UnauthenticatedError("Incorrect email or password")
    if not user["is_active"] or not verify_password(body.password, user["hashed_password"]):
        raise UnauthenticatedError("Incorrect email or password")

    access_token, expires_in = create_token(str(user["id"]), user["email"], _config.jwt_secret_key, _config.jwt_expire_minutes)
    logger.info("✅ User logged in", email=body.email)
    return JSONResponse(content=LoginResponse(access_token=access_token, expires_in=expires_in).model_dump())


@app.post("/api/auth/logout")
async def logout(identity: Annotated[Identity, Depends(_mindmaps_router.require_identity)]) -> JSONResponse:
    """Logout and revoke the current JWT token."""
    if _revoked is not None and identity.jti:
        await _revoked.revoke(identity.jti, identity.exp)
    return JSONResponse(content={"logged_out": True})


@app.get("/api/auth/me")
async def get_me(identity: Annotated[Identity, Depends(_mindmaps_router.require_identity)]) -> JSONResponse:
    """Get the current authenticated user's information."""
    pool = _accounts_pool()
    try:
        UUID(identity.user_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found") from exc

    try:
        async with pool.connection() as conn, conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                "SELECT id, email, is_active, created_at FROM users WHERE id = %s::uuid",
                (identity.user_id,),
            )
            user = await cur.fetchone()
    except _DB_ERRORS as exc:
        raise StorageFailure(str(exc)) from exc

    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    return JSONResponse(content=UserResponse.model_validate(user).model_dump(mode="json"))


def main() -> None:  # pragma: no cover
    """Entry point for the API service."""
    log_file = os.environ.get("LOG_FILE")
    setup_logging(
        "mindmap-api",
        level=os.environ.get("LOG_LEVEL", "INFO"),
        log_file=Path(log_file) if log_file else None,
        json_logs=os.environ.get("LOG_FORMAT", "console").lower() == "json",
    )
    uvicorn.run(app, host=os.environ.get("API_HOST", "0.0.0.0"), port=int(os.environ.get("API_PORT", API_PORT)))  # noqa: S104  # nosec B104


if __name__ == "__main__":
    main()
