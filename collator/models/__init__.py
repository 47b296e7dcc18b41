"""
SQLAlchemy models for Comments Collator.

This module exports all database models for easy importing and
ensures Alembic can discover them for migrations.
"""

# Import base classes
from collator.models.base import Base, BaseModel, GUID, UTCDateTime, utc_now

# Import all models (must be imported for Alembic autogenerate)
from collator.models.identity import UserIdentity, PluginSession
from collator.models.oauth_state import OAuthState
from collator.models.files import DesignFile, FilePermission, PermissionLevel
from collator.models.comments import Comment
from collator.models.webhooks import WebhookEvent, WebhookRegistration

__all__ = [
    # Base classes
    "Base",
    "BaseModel",
    "GUID",
    "UTCDateTime",
    "utc_now",
    # Identity models
    "UserIdentity",
    "PluginSession",
    "OAuthState",
    # File models
    "DesignFile",
    "FilePermission",
    "PermissionLevel",
    # Comment cache
    "Comment",
    # Webhooks
    "WebhookEvent",
    "WebhookRegistration",
]
