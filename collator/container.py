"""
Application service wiring.

Every store and service is built once at startup from Settings and an
engine, then shared by request handlers through app.state.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar

import httpx
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker

from collator.auth.figma_oauth import FigmaOAuthClient
from collator.auth.flow import OAuthFlow
from collator.auth.identities import IdentityStore
from collator.auth.sessions import SessionStore
from collator.auth.state_store import MemoryStateBackend, SqlStateBackend, TokenStore
from collator.config import Settings
from collator.database import (
    create_db_engine,
    create_db_executor,
    create_session_factory,
    run_blocking,
)
from collator.integrations.figma.client import FigmaClient
from collator.models.base import utc_now
from collator.services.comments import CommentRepository
from collator.services.files import FileRepository
from collator.services.permissions import PermissionService
from collator.services.sync import CommentSyncEngine
from collator.services.webhooks import WebhookProcessor

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class ServiceContainer:
    """Holds the process-wide stores and services."""

    settings: Settings
    engine: Engine
    session_factory: sessionmaker
    db_executor: ThreadPoolExecutor
    token_store: TokenStore
    identities: IdentityStore
    sessions: SessionStore
    oauth_flow: OAuthFlow
    figma: FigmaClient
    permissions: PermissionService
    comments: CommentRepository
    files: FileRepository
    sync_engine: CommentSyncEngine
    webhooks: WebhookProcessor

    async def run(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run a blocking store call on the database thread pool."""
        return await run_blocking(self.db_executor, func, *args, **kwargs)

    @classmethod
    def build(
        cls,
        settings: Settings,
        engine: Optional[Engine] = None,
        clock: Callable[[], datetime] = utc_now,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "ServiceContainer":
        """
        Wire up every service.

        Args:
            settings: Application settings
            engine: Database engine (created from settings.database_url if None)
            clock: Time source shared by all stores
            transport: httpx transport for every Figma call (tests inject a mock)
        """
        if engine is None:
            _ensure_sqlite_directory(settings.database_url)
            engine = create_db_engine(settings.database_url)
        session_factory = create_session_factory(engine)
        db_executor = create_db_executor(str(engine.url))

        token_store = TokenStore(
            primary=SqlStateBackend(session_factory),
            fallback=MemoryStateBackend(),
            clock=clock,
            default_ttl_seconds=settings.oauth_state_ttl_seconds,
        )
        identities = IdentityStore(session_factory, clock=clock)
        sessions = SessionStore(
            session_factory,
            clock=clock,
            max_age=timedelta(hours=settings.session_max_age_hours),
        )
        oauth_flow = OAuthFlow(
            oauth_client=FigmaOAuthClient(settings, transport=transport),
            token_store=token_store,
            identities=identities,
            sessions=sessions,
            session_factory=session_factory,
            state_ttl_seconds=settings.oauth_state_ttl_seconds,
            executor=db_executor,
        )
        figma = FigmaClient(
            identities,
            token_refresher=oauth_flow.refresh,
            base_url=settings.figma_api_base_url,
            timeout=settings.figma_request_timeout,
            transport=transport,
            clock=clock,
            executor=db_executor,
        )
        comments = CommentRepository(session_factory, clock=clock)
        files = FileRepository(session_factory, clock=clock, executor=db_executor)

        return cls(
            settings=settings,
            engine=engine,
            session_factory=session_factory,
            db_executor=db_executor,
            token_store=token_store,
            identities=identities,
            sessions=sessions,
            oauth_flow=oauth_flow,
            figma=figma,
            permissions=PermissionService(session_factory, clock=clock),
            comments=comments,
            files=files,
            sync_engine=CommentSyncEngine(
                figma,
                comments,
                files,
                clock=clock,
                batch_size=settings.node_lookup_batch_size,
                batch_delay_seconds=settings.node_lookup_batch_delay_seconds,
                executor=db_executor,
            ),
            webhooks=WebhookProcessor(
                settings.webhook_secret,
                session_factory,
                comments,
                files,
                identities,
                figma,
                clock=clock,
                executor=db_executor,
            ),
        )


def _ensure_sqlite_directory(database_url: str) -> None:
    """Create the parent directory of a file-backed SQLite database."""
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite" or not url.database or url.database == ":memory:":
        return
    Path(url.database).parent.mkdir(parents=True, exist_ok=True)
