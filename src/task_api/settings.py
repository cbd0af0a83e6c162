from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class Settings:
    """
    Application settings loaded from environment variables.

    Env vars:
    - ENVIRONMENT: 'development' (default) or 'production'; production hides diagnostics
    - API_PREFIX: prefix for all API routes. Default '/api'
    - PERSISTENCE_BACKEND: 'memory' (default) or 'sqlite'
    - SQLITE_DB_PATH: path to sqlite db file. Default './data/tasks.db'
    - CORS_ALLOW_ORIGINS: comma-separated list of allowed origins; '*' by default
    - JWT_SECRET: HS256 signing key for bearer tokens
    - JWT_EXPIRES_IN: token lifetime in seconds (default: 86400)
    - DEFAULT_PAGE_SIZE / MAX_PAGE_SIZE: task list paging (defaults: 10 / 100)
    - AUTH_RATE_LIMIT_WINDOW_SECONDS: window for auth attempts (default: 900)
    - AUTH_RATE_LIMIT_MAX_REQUESTS: attempts per window and client; 0 disables (default: 5)
    - LOG_LEVEL: root log level (default: INFO)
    """

    environment: str = "development"
    api_prefix: str = "/api"
    persistence_backend: str = "memory"
    sqlite_db_path: str = "./data/tasks.db"
    cors_allow_origins: List[str] = field(default_factory=lambda: ["*"])
    jwt_secret: str = "change-me-in-production-set-jwt-secret"
    jwt_expires_in: int = 86400
    default_page_size: int = 10
    max_page_size: int = 100
    auth_rate_limit_window_seconds: int = 900
    auth_rate_limit_max_requests: int = 5
    log_level: str = "INFO"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


def _get_env(name: str, default: str) -> str:
    value = os.getenv(name, default)
    if value is None or value == "":
        return default
    return value


def _parse_int(value: str, default: int, minimum: int = 0) -> int:
    try:
        parsed = int(value.strip())
    except ValueError:
        return default
    return parsed if parsed >= minimum else default


def _parse_origins(origins_value: str) -> List[str]:
    """
    Parse CORS origins from env. Supports:
    - '*' to allow all origins
    - Comma-separated list of origins
    """
    value = origins_value.strip()
    if value == "*":
        return ["*"]
    return [o.strip() for o in value.split(",") if o.strip()]


# PUBLIC_INTERFACE
def get_settings() -> Settings:
    """Return application settings loaded from environment variables."""
    backend = _get_env("PERSISTENCE_BACKEND", "memory").strip().lower()
    if backend not in {"memory", "sqlite"}:
        # Fallback to memory if unsupported
        backend = "memory"

    environment = _get_env("ENVIRONMENT", "development").strip().lower()
    prefix = "/" + _get_env("API_PREFIX", "/api").strip().strip("/")

    max_page_size = _parse_int(_get_env("MAX_PAGE_SIZE", "100"), 100, minimum=1)
    default_page_size = min(_parse_int(_get_env("DEFAULT_PAGE_SIZE", "10"), 10, minimum=1), max_page_size)

    return Settings(
        environment=environment,
        api_prefix="" if prefix == "/" else prefix,
        persistence_backend=backend,
        sqlite_db_path=_get_env("SQLITE_DB_PATH", "./data/tasks.db").strip(),
        cors_allow_origins=_parse_origins(_get_env("CORS_ALLOW_ORIGINS", "*")),
        jwt_secret=_get_env("JWT_SECRET", "change-me-in-production-set-jwt-secret"),
        jwt_expires_in=_parse_int(_get_env("JWT_EXPIRES_IN", "86400"), 86400, minimum=1),
        default_page_size=default_page_size,
        max_page_size=max_page_size,
        auth_rate_limit_window_seconds=_parse_int(
            _get_env("AUTH_RATE_LIMIT_WINDOW_SECONDS", "900"), 900, minimum=1
        ),
        auth_rate_limit_max_requests=_parse_int(_get_env("AUTH_RATE_LIMIT_MAX_REQUESTS", "5"), 5),
        log_level=_get_env("LOG_LEVEL", "INFO").strip().upper(),
    )
