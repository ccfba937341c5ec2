"""Configuration management for the mind map services."""

from dataclasses import dataclass
import logging
from os import getenv
from pathlib import Path
import sys

import structlog


logger = structlog.get_logger(__name__)

STORE_BACKENDS = ("postgres", "local")
DEFAULT_AUTOSAVE_DELAY_SECONDS = 2.0
DEFAULT_JWT_EXPIRE_MINUTES = 30


def get_secret(name: str) -> str | None:
    """Read a secret from the environment or from the file named by ``<NAME>_FILE``."""
    value = getenv(name)
    if value:
        return value
    secret_file = getenv(f"{name}_FILE")
    if secret_file:
        path = Path(secret_file)
        if path.is_file():
            return path.read_text(encoding="utf-8").strip()
        logger.warning("⚠️ Secret file not found", name=name, path=secret_file)
    return None


def cors_origins_from_env() -> list[str]:
    """Allowed CORS origins from the comma-separated ``CORS_ORIGINS``; empty when unset."""
    return [o.strip() for o in getenv("CORS_ORIGINS", "").split(",") if o.strip()]


@dataclass(frozen=True)
class ApiConfig:
    """Configuration for the mind map API service."""

    jwt_secret_key: str
    postgres_address: str = ""
    postgres_username: str = ""
    postgres_password: str = ""
    postgres_database: str = ""
    jwt_expire_minutes: int = DEFAULT_JWT_EXPIRE_MINUTES
    redis_url: str | None = None
    store_backend: str = "postgres"
    local_store_path: Path = Path("./data/mindmaps.json")

    @property
    def postgres_connection_params(self) -> dict[str, str | int]:
        """psycopg connection parameters; POSTGRES_ADDRESS is host[:port]."""
        if ":" in self.postgres_address:
            host, port_str = self.postgres_address.rsplit(":", 1)
            port = int(port_str)
        else:
            host, port = self.postgres_address, 5432
        return {
            "host": host,
            "port": port,
            "dbname": self.postgres_database,
            "user": self.postgres_username,
            "password": self.postgres_password,
        }

    @classmethod
    def from_env(cls) -> "ApiConfig":
        """Create configuration from environment variables."""
        store_backend = getenv("STORE_BACKEND", "postgres").strip().lower()
        if store_backend not in STORE_BACKENDS:
            raise ValueError(f"STORE_BACKEND must be one of {', '.join(STORE_BACKENDS)}, got {store_backend!r}")

        jwt_secret_key = get_secret("JWT_SECRET_KEY")
        postgres_address = getenv("POSTGRES_ADDRESS", "")
        postgres_username = getenv("POSTGRES_USERNAME", "")
        postgres_password = get_secret("POSTGRES_PASSWORD") or ""
        postgres_database = getenv("POSTGRES_DATABASE", "")

        missing_vars = []
        if not jwt_secret_key:
            missing_vars.append("JWT_SECRET_KEY")
        if store_backend == "postgres":
            if not postgres_address:
                missing_vars.append("POSTGRES_ADDRESS")
            if not postgres_username:
                missing_vars.append("POSTGRES_USERNAME")
            if not postgres_password:
                missing_vars.append("POSTGRES_PASSWORD")
            if not postgres_database:
                missing_vars.append("POSTGRES_DATABASE")

        if missing_vars:
            raise ValueError(f"Missing required environment variables: {', '.join(missing_vars)}")

        jwt_expire_minutes = DEFAULT_JWT_EXPIRE_MINUTES
        jwt_expire_env = getenv("JWT_EXPIRE_MINUTES")
        if jwt_expire_env:
            try:
                jwt_expire_minutes = int(jwt_expire_env)
                if jwt_expire_minutes < 1:
                    raise ValueError(jwt_expire_env)
            except ValueError:
                logger.warning("⚠️ Invalid JWT_EXPIRE_MINUTES value, using default", value=jwt_expire_env, default=DEFAULT_JWT_EXPIRE_MINUTES)
                jwt_expire_minutes = DEFAULT_JWT_EXPIRE_MINUTES

        return cls(
            jwt_secret_key=jwt_secret_key,  # type: ignore[arg-type]
            postgres_address=postgres_address,
            postgres_username=postgres_username,
            postgres_password=postgres_password,
            postgres_database=postgres_database,
            jwt_expire_minutes=jwt_expire_minutes,
            redis_url=getenv("REDIS_URL") or None,
            store_backend=store_backend,
            local_store_path=Path(getenv("LOCAL_STORE_PATH", "./data/mindmaps.json")),
        )


@dataclass(frozen=True)
class ClientConfig:
    """Configuration for the editing client (remote API and autosave)."""

    api_url: str = "http://localhost:8004"
    autosave_delay_seconds: float = DEFAULT_AUTOSAVE_DELAY_SECONDS
    request_timeout_seconds: float = 10.0

    @classmethod
    def from_env(cls) -> "ClientConfig":
        """Create configuration from environment variables."""
        api_url = getenv("MINDMAP_API_URL", "http://localhost:8004").rstrip("/")

        autosave_delay = DEFAULT_AUTOSAVE_DELAY_SECONDS
        delay_env = getenv("AUTOSAVE_DELAY_SECONDS")
        if delay_env:
            try:
                autosave_delay = float(delay_env)
                if autosave_delay <= 0:
                    raise ValueError(delay_env)
            except ValueError:
                logger.warning("⚠️ Invalid AUTOSAVE_DELAY_SECONDS value, using default", value=delay_env, default=DEFAULT_AUTOSAVE_DELAY_SECONDS)
                autosave_delay = DEFAULT_AUTOSAVE_DELAY_SECONDS

        return cls(api_url=api_url, autosave_delay_seconds=autosave_delay)


def setup_logging(
    service_name: str,
    level: str = "INFO",
    log_file: Path | None = None,
    json_logs: bool = False,
) -> None:
    """Set up stdlib logging handlers and route structlog through them."""
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    if log_file:
        # Create parent directory if it doesn't exist
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(message)s",
        handlers=handlers,
        force=True,
    )

    # Suppress verbose third-party logs
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("psycopg").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    renderer: structlog.types.Processor = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    structlog.contextvars.bind_contextvars(service=service_name)

    logger.info("✅ Logging configured", service=service_name)
