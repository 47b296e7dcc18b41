"""
Unit tests for API endpoints.

Tests endpoint behavior using FastAPI TestClient against the in-memory
database and the fake Figma API.
"""

from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient

from collator.api.main import create_app
from collator.services.webhooks import generate_signature
from conftest import comment_payload


@pytest.fixture
def client(container):
    """Create test client wired to the test container."""
    with TestClient(create_app(container=container)) as client:
        yield client


@pytest.fixture
def login(container, make_user):
    """Create a user and a session; returns the Authorization headers."""

    def _login(handle: str, file_key: str = "file-1") -> dict[str, str]:
        user = make_user(handle)
        token = container.sessions.create(user.id, file_key)
        return {"Authorization": f"Bearer {token}"}

    return _login


class TestHealthEndpoint:
    """Test /health endpoint."""

    def test_health_check(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["version"] == "0.1.0"
        assert data["database_connected"] is True
        assert data["environment"] == "development"

    def test_health_check_has_request_id(self, client):
        response = client.get("/health")

        assert "X-Request-ID" in response.headers

    def test_webhook_health(self, client):
        assert client.get("/webhooks/health").json()["status"] == "healthy"


class TestAuthEndpoints:
    """Test the /auth routes."""

    def test_login_redirects_to_figma(self, client):
        response = client.get("/auth/figma", follow_redirects=False)

        assert response.status_code == 302
        assert response.headers["location"].startswith("https://www.figma.com/oauth?")

    def test_full_login_round_trip(self, client):
        started = client.get("/auth/figma", params={"mode": "json", "file_key": "xyz"}).json()
        state = parse_qs(urlparse(started["auth_url"]).query)["state"][0]
        assert state == started["state"]

        response = client.get("/auth/figma/callback", params={"code": "auth-code", "state": state})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["file_key"] == "xyz"
        assert data["user"]["handle"] == "designer"

        verified = client.post("/auth/verify", json={"session_token": data["session_token"]})
        assert verified.json()["valid"] is True
        assert verified.json()["file_key"] == "xyz"

    def test_callback_with_unknown_state(self, client):
        response = client.get("/auth/figma/callback", params={"code": "c", "state": "forged"})

        assert response.status_code == 400
        data = response.json()
        assert data["success"] is False
        assert data["reason"] == "invalid_or_expired_state"
        assert data["retry_url"].endswith("/auth/figma")
        assert "session_token" not in data

    def test_callback_exchange_failure(self, client, fake_figma):
        fake_figma.token_status = 400
        state = client.get("/auth/figma", params={"mode": "json"}).json()["state"]

        response = client.get("/auth/figma/callback", params={"code": "bad", "state": state})

        assert response.status_code == 502
        assert response.json()["reason"] == "exchange_failed"

    def test_verify_invalid_token(self, client):
        response = client.post("/auth/verify", json={"session_token": "nope"})

        assert response.status_code == 401
        assert response.json()["error_type"] == "authentication_error"

    def test_verify_empty_token_is_validation_error(self, client):
        response = client.post("/auth/verify", json={"session_token": ""})

        assert response.status_code == 400
        assert response.json()["error_type"] == "validation_error"

    def test_refresh(self, client, make_user):
        make_user("alice", refresh_token="r-alice")

        response = client.post("/auth/refresh", json={"refresh_token": "r-alice"})

        assert response.status_code == 200
        assert response.json()["access_token"] == "figma-access-refreshed"

    def test_refresh_upstream_failure(self, client, fake_figma):
        fake_figma.token_status = 400

        response = client.post("/auth/refresh", json={"refresh_token": "r"})

        assert response.status_code == 502
        assert response.json()["error_type"] == "upstream_error"

    def test_check_session(self, client, login):
        login("alice", file_key="file-1")

        found = client.get("/auth/check-session", params={"file_key": "file-1"}).json()
        missing = client.get("/auth/check-session", params={"file_key": "file-2"}).json()

        assert found["valid"] is True
        assert found["user"]["handle"] == "alice"
        assert missing == {"valid": False, "session_token": None, "user": None, "file_key": None}


class TestApiEndpoints:
    """Test the /api routes."""

    @pytest.mark.parametrize("headers", [{}, {"Authorization": "Bearer nope"}, {"Authorization": "Basic abc"}])
    def test_requires_session(self, client, headers):
        response = client.get("/api/user/profile", headers=headers)

        assert response.status_code == 401

    def test_profile(self, client, login):
        response = client.get("/api/user/profile", headers=login("alice"))

        data = response.json()
        assert data["user"]["handle"] == "alice"
        assert data["file_key"] == "file-1"

    def test_file_info_registers_owner(self, client, login, fake_figma):
        fake_figma.files["file-1"] = {"name": "Design System"}

        response = client.get("/api/files/file-1", headers=login("alice"))

        assert response.status_code == 200
        assert response.json()["file_name"] == "Design System"
        assert response.json()["permission_level"] == "admin"

        files = client.get("/api/user/files", headers=login("bob")).json()
        assert files == {"files": [], "total": 0}

    def test_sync_and_stats(self, client, login, fake_figma):
        headers = login("alice")
        fake_figma.comments["file-1"] = [
            comment_payload("c1"),
            comment_payload("c2", resolved_at="2026-01-11T00:00:00Z"),
        ]

        synced = client.post("/api/files/file-1/sync", headers=headers)
        stats = client.get("/api/files/file-1/stats", headers=headers).json()

        assert synced.status_code == 200
        assert synced.json()["upserted"] == 2
        assert stats["total_comments"] == 2
        assert stats["resolved_comments"] == 1
        assert stats["last_synced_at"] is not None

    def test_sync_upstream_failure(self, client, login, fake_figma):
        fake_figma.comments_status = 403

        response = client.post("/api/files/file-1/sync", headers=login("alice"))

        assert response.status_code == 502
        assert response.json()["error_type"] == "upstream_error"

    def test_grant_permission(self, client, login):
        admin = login("alice")
        bob = login("bob")
        client.get("/api/files/file-1/stats", headers=admin)

        response = client.post(
            "/api/files/file-1/permissions",
            json={"user_handle": "bob", "permission_level": "write"},
            headers=admin,
        )

        assert response.status_code == 200
        assert response.json()["permission_level"] == "write"
        forbidden = client.post(
            "/api/files/file-1/permissions",
            json={"user_handle": "alice", "permission_level": "read"},
            headers=bob,
        )
        assert forbidden.status_code == 403

    def test_grant_unknown_handle(self, client, login):
        response = client.post(
            "/api/files/file-1/permissions",
            json={"user_handle": "ghost", "permission_level": "read"},
            headers=login("alice"),
        )

        assert response.status_code == 404

    def test_update_selected_node(self, client, login, container):
        headers = login("alice")

        response = client.put("/api/session/node", json={"file_key": "file-1", "node_id": "1:2"}, headers=headers)
        wrong_file = client.put("/api/session/node", json={"file_key": "file-2", "node_id": "1:2"}, headers=headers)

        assert response.status_code == 200
        assert wrong_file.status_code == 400
        profile = client.get("/api/user/profile", headers=headers).json()
        assert profile["current_node_id"] == "1:2"


class TestCommentEndpoints:
    """Test the /api/comments routes."""

    def test_list_and_thread(self, client, login, fake_figma):
        headers = login("alice")
        fake_figma.comments["file-1"] = [
            comment_payload("c1", node_id="1:2"),
            comment_payload("c2", parent_id="c1", created_at="2026-01-10T10:00:00Z"),
        ]
        client.post("/api/files/file-1/sync", headers=headers)

        listing = client.get("/api/comments/file-1", headers=headers).json()
        thread = client.get("/api/comments/file-1/c1/thread", headers=headers).json()
        canvas = client.get("/api/comments/file-1/canvas", headers=headers).json()

        assert [c["id"] for c in listing["comments"]] == ["c2", "c1"]
        assert thread["comment"]["id"] == "c1"
        assert [r["id"] for r in thread["replies"]] == ["c2"]
        assert [c["id"] for c in canvas["comments"]] == ["c2"]

    def test_summary(self, client, login, fake_figma):
        headers = login("alice")
        fake_figma.comments["file-1"] = [comment_payload("c1")]
        client.post("/api/files/file-1/sync", headers=headers)

        summary = client.get("/api/comments/file-1/summary", headers=headers).json()

        assert summary["total"] == 1
        assert summary["by_author"] == {"Alice": 1}

    def test_post_resolve_unresolve(self, client, login):
        headers = login("alice")

        posted = client.post("/api/comments/file-1", json={"message": "  Bump contrast  "}, headers=headers)
        assert posted.status_code == 201
        comment_id = posted.json()["id"]
        assert posted.json()["message"] == "Bump contrast"

        resolved = client.put(f"/api/comments/file-1/{comment_id}/resolve", headers=headers)
        assert resolved.json()["is_resolved"] is True

        reopened = client.put(f"/api/comments/file-1/{comment_id}/unresolve", headers=headers)
        assert reopened.json()["is_resolved"] is False

    def test_read_user_cannot_post(self, client, login):
        client.get("/api/comments/file-1", headers=login("alice"))

        response = client.post("/api/comments/file-1", json={"message": "Hi"}, headers=login("bob"))

        assert response.status_code == 403
        assert response.json()["error_type"] == "authorization_error"

    def test_empty_message_rejected(self, client, login):
        response = client.post("/api/comments/file-1", json={"message": "   "}, headers=login("alice"))

        assert response.status_code == 400

    def test_resolve_unknown_comment(self, client, login):
        response = client.put("/api/comments/file-1/missing/resolve", headers=login("alice"))

        assert response.status_code == 404


class TestWebhookEndpoints:
    """Test the /webhooks routes."""

    def test_signed_delivery(self, client, container):
        body = b'{"event_type": "FILE_UPDATE", "file_key": "file-1"}'

        response = client.post(
            "/webhooks/figma",
            content=body,
            headers={"X-Figma-Webhook-Signature": generate_signature(body, "test-webhook-secret")},
        )

        assert response.status_code == 200
        assert response.json()["handled"] is True
        assert container.files.get("file-1").last_synced_at is not None

    def test_bad_signature(self, client, container):
        response = client.post(
            "/webhooks/figma",
            content=b'{"event_type": "FILE_DELETE", "file_key": "file-1"}',
            headers={"X-Figma-Webhook-Signature": "bad"},
        )

        assert response.status_code == 401

    def test_test_endpoint_in_development(self, client, container):
        response = client.post(
            "/webhooks/test",
            json={"event_type": "FILE_COMMENT", "file_key": "file-1", "comment": comment_payload("c1")},
        )

        assert response.status_code == 200
        assert container.comments.get("file-1", "c1").message == "Looks good"

    def test_register_records_subscription(self, client, login, container):
        admin = login("alice")
        reader = login("bob")
        registration = {
            "file_key": "file-1",
            "event_type": "FILE_COMMENT",
            "endpoint": "https://collator.example.com/webhooks/figma",
        }

        response = client.post("/webhooks/register", json=registration, headers=admin)
        forbidden = client.post("/webhooks/register", json=registration, headers=reader)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["status"] == "registered"
        assert data["endpoint"] == registration["endpoint"]
        assert forbidden.status_code == 403

    @pytest.mark.parametrize("overrides", [
        {"event_type": "LIBRARY_PUBLISH"},
        {"endpoint": "http://collator.example.com/webhooks/figma"},
        {"file_key": ""},
    ])
    def test_register_validation(self, client, login, overrides):
        registration = {
            "file_key": "file-1",
            "event_type": "FILE_UPDATE",
            "endpoint": "https://collator.example.com/webhooks/figma",
            **overrides,
        }

        response = client.post("/webhooks/register", json=registration, headers=login("alice"))

        assert response.status_code == 400

    def test_register_requires_session(self, client):
        response = client.post(
            "/webhooks/register",
            json={"file_key": "file-1", "event_type": "FILE_UPDATE", "endpoint": "https://x.example.com"},
        )

        assert response.status_code == 401

    def test_test_endpoint_hidden_in_production(self, container, settings):
        container.settings = settings.model_copy(update={"python_env": "production"})
        app = create_app(settings=settings, container=container)

        with TestClient(app) as client:
            response = client.post("/webhooks/test", json={"event_type": "PING"})

        assert response.status_code == 404


class TestErrorHandling:
    """Test unexpected error rendering."""

    def test_unexpected_error_is_500(self, container, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(container.sessions, "find_most_recent_valid_for_file", boom)

        with TestClient(create_app(container=container), raise_server_exceptions=False) as client:
            response = client.get("/auth/check-session", params={"file_key": "file-1"})

        assert response.status_code == 500
        assert response.json()["error_type"] == "internal_error"
        assert response.json()["detail"] == "RuntimeError: boom"
