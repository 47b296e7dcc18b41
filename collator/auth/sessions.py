"""
Plugin session storage.

Sessions are opaque bearer tokens issued at the end of the OAuth flow.
They expire a fixed time after creation; activity updates
last_activity_at but never extends the lifetime.
"""

import logging
import secrets
import uuid
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session, joinedload, sessionmaker

from collator.database import transaction
from collator.models.base import utc_now
from collator.models.identity import PluginSession, UserIdentity

logger = logging.getLogger(__name__)

SESSION_TOKEN_BYTES = 32
DEFAULT_SESSION_MAX_AGE = timedelta(hours=24)


class SessionStore:
    """Creates, validates and looks up plugin sessions."""

    def __init__(
        self,
        session_factory: sessionmaker,
        clock: Callable[[], datetime] = utc_now,
        max_age: timedelta = DEFAULT_SESSION_MAX_AGE,
    ):
        self._session_factory = session_factory
        self._clock = clock
        self.max_age = max_age

    def create(
        self,
        user_id: uuid.UUID,
        file_key_hint: Optional[str] = None,
        db: Optional[Session] = None,
    ) -> str:
        """
        Mint a new session for a user.

        Args:
            user_id: Owning identity
            file_key_hint: File the login was started from, if any
            db: Session to join (for callers composing a larger transaction)

        Returns:
            The bearer session token
        """
        now = self._clock()
        token = secrets.token_hex(SESSION_TOKEN_BYTES)
        with transaction(self._session_factory, db) as session:
            session.add(PluginSession(
                session_token=token,
                user_id=user_id,
                scoped_file_key=file_key_hint,
                created_at=now,
                last_activity_at=now,
            ))
            session.flush()

        logger.info(f"Plugin session created: {token[:8]}... (file={file_key_hint})")
        return token

    def validate(self, session_token: str) -> Optional[PluginSession]:
        """
        Look up a session, rejecting it once past its absolute lifetime.

        Returns:
            The session with its identity loaded, or None
        """
        if not session_token:
            return None

        with transaction(self._session_factory) as session:
            plugin_session = session.execute(
                select(PluginSession)
                .options(joinedload(PluginSession.user))
                .where(PluginSession.session_token == session_token)
            ).scalar_one_or_none()

        if plugin_session is None:
            return None

        if plugin_session.is_expired(self.max_age, self._clock()):
            logger.info(f"Rejected expired session {session_token[:8]}...")
            return None

        return plugin_session

    def touch(self, session_token: str) -> None:
        """Record activity on a session."""
        with transaction(self._session_factory) as session:
            session.execute(
                update(PluginSession)
                .where(PluginSession.session_token == session_token)
                .values(last_activity_at=self._clock())
            )

    def update_context(self, session_token: str, node_id: Optional[str]) -> None:
        """Record the node currently selected in the plugin."""
        with transaction(self._session_factory) as session:
            session.execute(
                update(PluginSession)
                .where(PluginSession.session_token == session_token)
                .values(current_node_id=node_id, last_activity_at=self._clock())
            )

    def find_most_recent_valid_for_file(self, file_key: str) -> Optional[PluginSession]:
        """
        Find a session the plugin can silently resume for a file.

        Matches sessions scoped to file_key and unscoped sessions, created
        within the lifetime window, whose identity still holds an unexpired
        access token. Most recently active first.

        An unscoped session started from another file also matches here.
        """
        # TODO: drop the unscoped match once the plugin always sends file_key at login
        now = self._clock()
        with transaction(self._session_factory) as session:
            return session.execute(
                select(PluginSession)
                .join(PluginSession.user)
                .options(joinedload(PluginSession.user))
                .where(
                    or_(
                        PluginSession.scoped_file_key == file_key,
                        PluginSession.scoped_file_key.is_(None),
                    ),
                    PluginSession.created_at > now - self.max_age,
                    UserIdentity.access_token.is_not(None),
                    or_(
                        UserIdentity.token_expires_at.is_(None),
                        UserIdentity.token_expires_at > now,
                    ),
                )
                .order_by(PluginSession.last_activity_at.desc())
                .limit(1)
            ).scalar_one_or_none()
