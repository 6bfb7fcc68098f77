"""
HTTP surface tests (FastAPI TestClient) over the fake-backed pipeline.
"""

import pytest
from fastapi.testclient import TestClient

from conftest import make_session
from session_bootstrap import runtime
from session_bootstrap.main import create_app


@pytest.fixture
def client(bootstrap):
    app = create_app(factory=lambda: bootstrap)
    with TestClient(app) as test_client:
        yield test_client


class TestHealth:
    def test_healthz(self, client):
        response = client.get("/healthz")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["auth_status"] == "unauthenticated"
        assert body["redis"] == "ok"

    def test_not_started_returns_503(self, monkeypatch):
        monkeypatch.setattr(runtime, "bootstrap", None)
        app = create_app(factory=lambda: None)

        response = TestClient(app).get("/auth/state")

        assert response.status_code == 503


class TestAuthEndpoints:
    def test_auth_state(self, client):
        response = client.get("/auth/state")

        assert response.status_code == 200
        assert response.json() == {"status": "unauthenticated", "identity": None, "error": None}

    def test_callback_redirects_to_joined_home(self, client, bootstrap, provider, profile_store):
        bootstrap.intents.capture_join_event("482913")
        profile_store.rows["user-1"] = {"id": "user-1", "name": "Ana", "role": "attendee"}
        provider.redirect_session = make_session("user-1")

        response = client.get("/auth/callback", params={"code": "abc"}, follow_redirects=False)

        assert response.status_code == 307
        assert response.headers["location"] == "/attendee?joined=true"
        assert response.headers["x-auth-target"] == "route:/attendee?joined=true"
        assert response.headers["x-auth-notice"] == "Welcome to Spring Expo"

    def test_callback_without_session_goes_to_login(self, client):
        response = client.get("/auth/callback", follow_redirects=False)

        assert response.status_code == 307
        assert response.headers["location"] == "/login?error=no_session"
        assert response.headers["x-auth-target"] == "unauthenticated"

    def test_sign_out(self, client, bootstrap, provider):
        response = client.post("/auth/signout")

        assert response.status_code == 200
        assert response.json() == {"ok": True}
        assert bootstrap.manager.status.value == "unauthenticated"
