"""
Storage for Figma user identities and their OAuth credentials.
"""

import logging
import uuid
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session, sessionmaker

from collator.auth.figma_oauth import FigmaUserInfo, OAuthTokens
from collator.database import transaction
from collator.models.base import utc_now
from collator.models.identity import UserIdentity

logger = logging.getLogger(__name__)


class IdentityStore:
    """Upserts and looks up UserIdentity rows."""

    def __init__(
        self,
        session_factory: sessionmaker,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._session_factory = session_factory
        self._clock = clock

    def upsert(
        self,
        profile: FigmaUserInfo,
        tokens: OAuthTokens,
        db: Optional[Session] = None,
    ) -> UserIdentity:
        """
        Create or update the identity for a Figma user.

        Existing rows keep their id; profile and credential fields are
        overwritten with the latest login.

        Args:
            profile: Profile from the Figma /me endpoint
            tokens: Tokens from the code exchange
            db: Session to join (for callers composing a larger transaction)

        Returns:
            The stored UserIdentity
        """
        now = self._clock()
        with transaction(self._session_factory, db) as session:
            user = session.execute(
                select(UserIdentity).where(UserIdentity.external_user_id == profile.id)
            ).scalar_one_or_none()

            if user is None:
                user = UserIdentity(external_user_id=profile.id, created_at=now)
                session.add(user)
                action = "Created"
            else:
                action = "Updated"

            user.email = profile.email
            user.display_name = profile.name
            user.handle = profile.handle
            user.avatar_url = profile.img_url
            user.access_token = tokens.access_token
            user.refresh_token = tokens.refresh_token
            user.token_expires_at = tokens.expiry
            user.updated_at = now
            session.flush()

        logger.info(f"{action} identity for Figma user {profile.id} ({profile.handle})")
        return user

    def get(self, user_id: uuid.UUID) -> Optional[UserIdentity]:
        with transaction(self._session_factory) as session:
            return session.get(UserIdentity, user_id)

    def get_by_external_id(self, external_user_id: str) -> Optional[UserIdentity]:
        with transaction(self._session_factory) as session:
            return session.execute(
                select(UserIdentity).where(UserIdentity.external_user_id == external_user_id)
            ).scalar_one_or_none()

    def get_by_handle(self, handle: str) -> Optional[UserIdentity]:
        with transaction(self._session_factory) as session:
            return session.execute(
                select(UserIdentity).where(UserIdentity.handle == handle).limit(1)
            ).scalar_one_or_none()

    def get_any_valid(self) -> Optional[UserIdentity]:
        """
        Most recently updated identity holding an unexpired access token.

        Used for upstream lookups that have no acting user, such as
        webhook deliveries.
        """
        now = self._clock()
        with transaction(self._session_factory) as session:
            return session.execute(
                select(UserIdentity)
                .where(
                    UserIdentity.access_token.is_not(None),
                    or_(
                        UserIdentity.token_expires_at.is_(None),
                        UserIdentity.token_expires_at > now,
                    ),
                )
                .order_by(UserIdentity.updated_at.desc())
                .limit(1)
            ).scalar_one_or_none()

    def update_tokens_by_refresh_token(self, old_refresh_token: str, tokens: OAuthTokens) -> int:
        """
        Store refreshed credentials for whoever holds old_refresh_token.

        Token fields are overwritten as a whole (last write wins).

        Returns:
            Number of identities updated
        """
        with transaction(self._session_factory) as session:
            result = session.execute(
                update(UserIdentity)
                .where(UserIdentity.refresh_token == old_refresh_token)
                .values(
                    access_token=tokens.access_token,
                    refresh_token=tokens.refresh_token or old_refresh_token,
                    token_expires_at=tokens.expiry,
                    updated_at=self._clock(),
                )
            )
            updated = result.rowcount or 0

        if updated:
            logger.info(f"Stored refreshed tokens for {updated} identity(ies)")
        else:
            logger.warning("Refreshed tokens matched no stored identity")
        return updated
