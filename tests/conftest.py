from __future__ import annotations

import os
from pathlib import Path
from typing import Callable, Dict

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

# Importing task_api.main builds a default app; keep it off the filesystem.
os.environ.setdefault("PERSISTENCE_BACKEND", "memory")

from task_api.main import create_app  # noqa: E402
from task_api.settings import Settings  # noqa: E402

TEST_SECRET = "test-secret-key-that-is-long-enough-for-hs256"
PASSWORD = "password123"


@pytest.fixture(params=["memory", "sqlite"])
def backend(request) -> str:
    return request.param


@pytest.fixture()
def settings(backend: str, tmp_path: Path) -> Settings:
    """Per-test settings: isolated storage, no auth rate limiting."""
    return Settings(
        persistence_backend=backend,
        sqlite_db_path=str(tmp_path / "tasks.db"),
        jwt_secret=TEST_SECRET,
        auth_rate_limit_max_requests=0,
    )


@pytest.fixture()
def app(settings: Settings) -> FastAPI:
    return create_app(settings)


@pytest.fixture()
def client(app: FastAPI) -> TestClient:
    return TestClient(app)


@pytest.fixture()
def register(client: TestClient) -> Callable[..., dict]:
    """Register a user through the API and return the response's data block."""

    def _register(email: str = "ada@example.com", name: str = "Ada", password: str = PASSWORD) -> dict:
        res = client.post("/api/users", json={"name": name, "email": email, "password": password})
        assert res.status_code == 201, res.text
        return res.json()["data"]

    return _register


@pytest.fixture()
def auth_headers(register: Callable[..., dict]) -> Callable[..., Dict[str, str]]:
    """Register a user and return Authorization headers carrying their token."""

    def _headers(email: str = "ada@example.com", name: str = "Ada") -> Dict[str, str]:
        data = register(email=email, name=name)
        return {"Authorization": f"Bearer {data['token']}"}

    return _headers
