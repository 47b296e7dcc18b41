"""
User identity and plugin session models.

A UserIdentity holds the Figma profile and OAuth credentials of a user who
completed the login flow. A PluginSession is the opaque bearer credential
the plugin presents instead of the Figma token.
"""

import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from collator.models.base import BaseModel, UTCDateTime, utc_now

# Access tokens expiring within this window are refreshed before use
TOKEN_REFRESH_BUFFER = timedelta(minutes=5)


class UserIdentity(BaseModel):
    """
    A Figma user known to the backend.

    Upserted by external_user_id on every login: credential and profile
    fields are overwritten, the row (and its id) is kept.

    Attributes:
        external_user_id: Figma user ID
        email: Email from the Figma profile
        display_name: Display name from the Figma profile
        handle: Figma handle
        avatar_url: Profile image URL
        access_token: Current Figma access token
        refresh_token: Refresh token for obtaining new access tokens
        token_expires_at: When the access token expires
    """

    __tablename__ = "users"

    external_user_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        doc="Figma user ID"
    )

    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    handle: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    avatar_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    access_token: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        doc="Figma OAuth access token"
    )

    refresh_token: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        index=True,
        doc="Figma OAuth refresh token"
    )

    token_expires_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime,
        nullable=True,
        doc="When the access token expires"
    )

    sessions: Mapped[list["PluginSession"]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
    )

    def is_token_expired(self, now: Optional[datetime] = None) -> bool:
        """Check if the access token is expired."""
        if self.token_expires_at is None:
            return False
        return (now or utc_now()) >= self.token_expires_at

    def needs_refresh(self, now: Optional[datetime] = None) -> bool:
        """Check if token should be refreshed (expired or expiring soon)."""
        if self.token_expires_at is None:
            return False
        return (now or utc_now()) >= self.token_expires_at - TOKEN_REFRESH_BUFFER

    def summary(self) -> dict:
        """Identity fields safe to return to the plugin."""
        return {
            "id": str(self.id),
            "figma_user_id": self.external_user_id,
            "handle": self.handle,
            "name": self.display_name,
            "email": self.email,
        }

    def __repr__(self) -> str:
        return f"<UserIdentity(external_user_id={self.external_user_id}, handle={self.handle})>"


class PluginSession(BaseModel):
    """
    Bearer session issued at the end of the OAuth flow.

    Sessions expire a fixed time after creation regardless of activity.

    Attributes:
        session_token: Opaque bearer token
        user_id: Owning identity
        scoped_file_key: File the session was started from (NULL = any file)
        current_node_id: Node currently selected in the plugin
        last_activity_at: Last authenticated request
    """

    __tablename__ = "plugin_sessions"

    session_token: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        unique=True,
        doc="Opaque bearer token"
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    scoped_file_key: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    current_node_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    last_activity_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utc_now,
    )

    user: Mapped[UserIdentity] = relationship(back_populates="sessions")

    __table_args__ = (
        Index("ix_plugin_sessions_file_activity", "scoped_file_key", "last_activity_at"),
    )

    def is_expired(self, max_age: timedelta, now: Optional[datetime] = None) -> bool:
        """Check the absolute lifetime, ignoring activity."""
        return (now or utc_now()) - self.created_at >= max_age

    def __repr__(self) -> str:
        return f"<PluginSession(token={self.session_token[:8]}..., user_id={self.user_id})>"
