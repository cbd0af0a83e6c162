import dataclasses

import pytest
from fastapi.testclient import TestClient

from task_api.errors import RateLimited
from task_api.main import create_app
from task_api.ratelimit import FixedWindowRateLimiter


def test_malformed_json(client, auth_headers):
    headers = {**auth_headers(), "Content-Type": "application/json"}
    res = client.post("/api/tasks", content=b'{"title": "oops",', headers=headers)
    assert res.status_code == 400
    assert res.json() == {"success": False, "error": {"message": "Invalid JSON payload"}}


def test_unknown_route(client):
    res = client.get("/api/nothing-here")
    assert res.status_code == 404
    assert res.json() == {"success": False, "error": {"message": "Route not found: GET /api/nothing-here"}}


def test_validation_runs_before_authentication(client):
    res = client.post("/api/tasks", json={})
    assert res.status_code == 400
    assert res.json()["error"]["details"] == [{"field": "body.title", "message": "Title is required"}]


class TestUnhandledErrors:
    def _boom(self, owner_id):
        raise RuntimeError("storage exploded")

    def _call(self, settings):
        app = create_app(settings)
        app.state.tasks.complete_all = self._boom
        client = TestClient(app, raise_server_exceptions=False)
        token = client.post(
            "/api/users", json={"name": "Ada", "email": "ada@example.com", "password": "password123"}
        ).json()["data"]["token"]
        return client.patch("/api/tasks/complete-all", headers={"Authorization": f"Bearer {token}"})

    def test_development_includes_stack(self, settings):
        res = self._call(settings)
        assert res.status_code == 500
        error = res.json()["error"]
        assert error["message"] == "Internal server error"
        assert "RuntimeError: storage exploded" in error["stack"]

    def test_production_hides_stack(self, settings):
        res = self._call(dataclasses.replace(settings, environment="production"))
        assert res.status_code == 500
        assert res.json() == {"success": False, "error": {"message": "Internal server error"}}


class TestRateLimiter:
    class FakeClock:
        def __init__(self):
            self.now = 1000.0

        def __call__(self):
            return self.now

    def test_window_budget_and_reset(self):
        clock = self.FakeClock()
        limiter = FixedWindowRateLimiter(max_requests=2, window_seconds=60, clock=clock)
        limiter.hit("a")
        limiter.hit("a")
        limiter.hit("b")

        clock.now += 20
        with pytest.raises(RateLimited) as info:
            limiter.hit("a")
        assert info.value.retry_after == 40
        assert info.value.headers == {"Retry-After": "40"}

        clock.now += 40
        limiter.hit("a")

    def test_expired_windows_are_evicted(self):
        clock = self.FakeClock()
        limiter = FixedWindowRateLimiter(max_requests=3, window_seconds=60, clock=clock)
        for host in ["10.0.0.1", "10.0.0.2", "10.0.0.3"]:
            limiter.hit(host)
        assert limiter.tracked_clients == 3

        clock.now += 60
        limiter.hit("10.0.0.4")
        assert limiter.tracked_clients == 1

    def test_reset_clears_counts(self):
        limiter = FixedWindowRateLimiter(max_requests=1, window_seconds=60, clock=self.FakeClock())
        limiter.hit("a")
        limiter.reset()
        limiter.hit("a")

    def test_zero_disables(self):
        limiter = FixedWindowRateLimiter(max_requests=0, window_seconds=60)
        assert limiter.enabled is False
        for _ in range(50):
            limiter.hit("a")

    def test_login_attempts_are_limited(self, settings):
        app = create_app(dataclasses.replace(settings, auth_rate_limit_max_requests=2))
        client = TestClient(app)
        attempt = {"email": "ada@example.com", "password": "wrong-password"}

        assert client.post("/api/users/login", json=attempt).status_code == 401
        assert client.post("/api/users/login", json=attempt).status_code == 401
        res = client.post("/api/users/login", json=attempt)
        assert res.status_code == 429
        assert res.json()["error"]["message"] == "Too many authentication attempts, please try again later"
        assert int(res.headers["Retry-After"]) > 0

        # Task routes are not behind the auth limiter.
        assert client.get("/api/tasks").status_code == 401


def test_wrong_method_uses_failure_envelope(client):
    res = client.put("/api/users/login", json={})
    assert res.status_code == 405
    body = res.json()
    assert body["success"] is False
    assert body["error"]["message"] == "Method Not Allowed"
