"""
Pytest configuration and fixtures for Comments Collator tests.

Provides an in-memory database, a controllable clock, the stores built on
them, and a fake Figma API served through httpx.MockTransport.
"""

import json
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Generator, Optional
from urllib.parse import parse_qs

import httpx
import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from collator.auth.figma_oauth import FigmaUserInfo, OAuthTokens
from collator.auth.identities import IdentityStore
from collator.auth.sessions import SessionStore
from collator.auth.state_store import MemoryStateBackend, SqlStateBackend, TokenStore
from collator.config import Settings
from collator.container import ServiceContainer
from collator.database import create_db_engine, create_session_factory, drop_all_tables, init_db
from collator.models.base import utc_now
from collator.models.identity import UserIdentity
from collator.services.comments import CommentRepository
from collator.services.files import FileRepository
from collator.services.permissions import PermissionService


# =============================================================================
# Clock
# =============================================================================


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = (start or utc_now()).replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# =============================================================================
# Database
# =============================================================================


@pytest.fixture(scope="function")
def engine() -> Generator[Engine, None, None]:
    """
    Create a clean in-memory database for each test.

    Yields:
        Engine: SQLAlchemy engine with all tables created
    """
    engine = create_db_engine("sqlite://")
    init_db(engine)
    try:
        yield engine
    finally:
        drop_all_tables(engine)
        engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker:
    return create_session_factory(engine)


# =============================================================================
# Stores
# =============================================================================


@pytest.fixture
def token_store(session_factory: sessionmaker, clock: FakeClock) -> TokenStore:
    return TokenStore(SqlStateBackend(session_factory), MemoryStateBackend(), clock=clock)


@pytest.fixture
def identities(session_factory: sessionmaker, clock: FakeClock) -> IdentityStore:
    return IdentityStore(session_factory, clock=clock)


@pytest.fixture
def sessions(session_factory: sessionmaker, clock: FakeClock) -> SessionStore:
    return SessionStore(session_factory, clock=clock)


@pytest.fixture
def permissions(session_factory: sessionmaker, clock: FakeClock) -> PermissionService:
    return PermissionService(session_factory, clock=clock)


@pytest.fixture
def comments(session_factory: sessionmaker, clock: FakeClock) -> CommentRepository:
    return CommentRepository(session_factory, clock=clock)


@pytest.fixture
def files(session_factory: sessionmaker, clock: FakeClock) -> FileRepository:
    return FileRepository(session_factory, clock=clock)


@pytest.fixture
def make_user(identities: IdentityStore, clock: FakeClock) -> Callable[..., UserIdentity]:
    """
    Factory for stored identities.

    Usage:
        alice = make_user("alice")
        expired = make_user("bob", expires_in=-60)
    """

    def _make(
        handle: str,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        expires_in: int = 3600,
    ) -> UserIdentity:
        profile = FigmaUserInfo(
            id=f"figma-{handle}",
            handle=handle,
            email=f"{handle}@example.com",
            name=handle.title(),
        )
        tokens = OAuthTokens(
            access_token=access_token or f"access-{handle}",
            refresh_token=refresh_token or f"refresh-{handle}",
            expires_in=expires_in,
            issued_at=clock(),
        )
        return identities.upsert(profile, tokens)

    return _make


# =============================================================================
# Fake Figma API
# =============================================================================


def comment_payload(
    comment_id: str,
    message: str = "Looks good",
    node_id: Optional[str] = None,
    handle: str = "alice",
    created_at: str = "2026-01-10T09:00:00Z",
    resolved_at: Optional[str] = None,
    parent_id: Optional[str] = None,
    x: float = 10.0,
    y: float = 20.0,
) -> dict[str, Any]:
    """Build a comment object shaped like Figma's GET /comments entries."""
    if node_id:
        client_meta = {"node_id": node_id, "node_offset": {"x": x, "y": y}}
    else:
        client_meta = {"x": x, "y": y}
    return {
        "id": comment_id,
        "message": message,
        "file_key": "file-1",
        "parent_id": parent_id or "",
        "user": {"id": f"figma-{handle}", "handle": handle, "name": handle.title()},
        "created_at": created_at,
        "resolved_at": resolved_at,
        "client_meta": client_meta,
    }


class FakeFigma:
    """
    In-memory stand-in for the Figma REST and OAuth endpoints.

    Tests mutate the public attributes to shape responses, then inspect
    `requests` to see what was called.
    """

    def __init__(self):
        self.comments: dict[str, list[dict]] = {}
        self.files: dict[str, dict] = {}
        self.node_names: dict[str, str] = {}
        self.comments_status = 200
        self.token_status = 200
        self.token_response: dict[str, Any] = {
            "access_token": "figma-access",
            "refresh_token": "figma-refresh",
            "expires_in": 7776000,
        }
        self.me_status = 200
        self.me: dict[str, Any] = {
            "id": "figma-42",
            "handle": "designer",
            "email": "designer@example.com",
            "img_url": "https://example.com/avatar.png",
        }
        self.requests: list[httpx.Request] = []
        self._posted = 0

    def paths(self, method: Optional[str] = None) -> list[str]:
        return [r.url.path for r in self.requests if method is None or r.method == method]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/v1/oauth/token":
            form = parse_qs(request.content.decode())
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "invalid_grant"})
            body = dict(self.token_response)
            if form.get("grant_type") == ["refresh_token"]:
                body.pop("refresh_token", None)
                body["access_token"] = "figma-access-refreshed"
            return httpx.Response(200, json=body)

        if path == "/v1/me":
            if self.me_status != 200:
                return httpx.Response(self.me_status, json={"err": "Invalid token"})
            return httpx.Response(200, json=self.me)

        match = re.fullmatch(r"/v1/files/([^/]+)/comments", path)
        if match:
            file_key = match.group(1)
            if request.method == "POST":
                return self._post_comment(file_key, json.loads(request.content))
            if self.comments_status != 200:
                return httpx.Response(self.comments_status, json={"err": "Forbidden"})
            return httpx.Response(200, json={"comments": self.comments.get(file_key, [])})

        match = re.fullmatch(r"/v1/files/([^/]+)/nodes", path)
        if match:
            node_id = request.url.params.get("ids")
            if node_id not in self.node_names:
                return httpx.Response(404, json={"err": "Not found"})
            return httpx.Response(
                200,
                json={"nodes": {node_id: {"document": {"id": node_id, "name": self.node_names[node_id]}}}},
            )

        match = re.fullmatch(r"/v1/files/([^/]+)", path)
        if match:
            info = self.files.get(match.group(1))
            if info is None:
                return httpx.Response(404, json={"err": "Not found"})
            return httpx.Response(200, json=info)

        return httpx.Response(404, json={"err": f"Unknown path {path}"})

    def _post_comment(self, file_key: str, body: dict) -> httpx.Response:
        self._posted += 1
        created = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        payload = {
            "id": f"posted-{self._posted}",
            "message": body.get("message"),
            "file_key": file_key,
            "parent_id": body.get("comment_id", ""),
            "user": {"id": "figma-42", "handle": "designer", "name": "Designer"},
            "created_at": created,
            "resolved_at": None,
            "client_meta": body.get("client_meta"),
        }
        self.comments.setdefault(file_key, []).append(payload)
        return httpx.Response(200, json=payload)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def fake_figma() -> FakeFigma:
    return FakeFigma()


# =============================================================================
# Application
# =============================================================================


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        python_env="development",
        database_url="sqlite://",
        figma_client_id="client-id",
        figma_client_secret="client-secret",
        figma_redirect_uri="http://testserver/auth/figma/callback",
        webhook_secret="test-webhook-secret",
        node_lookup_batch_delay_seconds=0,
    )


@pytest.fixture
def container(
    settings: Settings,
    engine: Engine,
    clock: FakeClock,
    fake_figma: FakeFigma,
) -> Generator[ServiceContainer, None, None]:
    """All services wired against the test database and fake Figma."""
    container = ServiceContainer.build(
        settings,
        engine=engine,
        clock=clock,
        transport=fake_figma.transport,
    )
    try:
        yield container
    finally:
        container.db_executor.shutdown(wait=True)
