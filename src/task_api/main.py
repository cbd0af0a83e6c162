from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .errors import register_exception_handlers
from .logging_setup import configure_logging
from .ratelimit import FixedWindowRateLimiter
from .repositories import build_repositories
from .routers import tasks as tasks_router
from .routers import users as users_router
from .security import CredentialService
from .settings import Settings, get_settings

logger = logging.getLogger(__name__)

openapi_tags = [
    {"name": "health", "description": "Service health and status endpoints."},
    {"name": "users", "description": "Registration, login and the current user's identity."},
    {
        "name": "tasks",
        "description": "Owner-scoped task CRUD with filtering, pagination, soft delete and bulk operations.",
    },
]


# PUBLIC_INTERFACE
def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build a fully wired application.

    Stores, the credential service and the auth rate limiter live on app.state,
    so every app instance (one per test, typically) is isolated.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    if settings.is_production and settings.jwt_secret == Settings.jwt_secret:
        logger.warning("JWT_SECRET is not set; tokens are signed with the built-in default key")

    app = FastAPI(
        title="Task Tracker Backend",
        description="Multi-tenant task tracking API with bearer-token auth and pluggable storage backends.",
        version="0.1.0",
        openapi_tags=openapi_tags,
    )

    users, tasks = build_repositories(settings)
    app.state.settings = settings
    app.state.users = users
    app.state.tasks = tasks
    app.state.credentials = CredentialService(settings.jwt_secret, settings.jwt_expires_in)
    app.state.auth_limiter = FixedWindowRateLimiter(
        settings.auth_rate_limit_max_requests,
        settings.auth_rate_limit_window_seconds,
    )

    # Configure CORS based on settings (.env -> CORS_ALLOW_ORIGINS), with '*' fallback
    allow_all = (settings.cors_allow_origins == ["*"]) or (len(settings.cors_allow_origins) == 0)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if allow_all else settings.cors_allow_origins,
        allow_credentials=not allow_all,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app, settings)

    # PUBLIC_INTERFACE
    @app.get("/", summary="Health Check", tags=["health"])
    def health_check():
        """
        Health check endpoint.

        Returns:
            A JSON object indicating service health.
        """
        return {"message": "Healthy", "backend": settings.persistence_backend}

    app.include_router(users_router.router, prefix=settings.api_prefix)
    app.include_router(tasks_router.router, prefix=settings.api_prefix)

    logger.info("Task API ready (backend=%s, environment=%s)", settings.persistence_backend, settings.environment)
    return app


app = create_app()
