"""
Webhook models.

webhook_events stores every signature-verified delivery received from
Figma, so processing can be inspected after the fact. webhook_registrations
records which files and event types a deployment asked to be notified of.
"""

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, ForeignKey, Index, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from collator.models.base import BaseModel, UTCDateTime

# JSONB on PostgreSQL (indexable), plain JSON elsewhere
JSONPayload = JSON().with_variant(JSONB(), "postgresql")


class WebhookEvent(BaseModel):
    """
    A received webhook delivery.

    Attributes:
        event_type: Figma event type (FILE_COMMENT, FILE_UPDATE, ...)
        file_key: File the event refers to, if any
        payload: Parsed request body
        processed_at: When the handler completed (NULL = not processed)
    """

    __tablename__ = "webhook_events"

    event_type: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        doc="Figma event type"
    )

    file_key: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    payload: Mapped[dict[str, Any]] = mapped_column(
        JSONPayload,
        nullable=False,
        default=dict,
    )

    processed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        Index("ix_webhook_events_unprocessed", "processed_at", "created_at"),
    )

    @property
    def is_processed(self) -> bool:
        return self.processed_at is not None

    def __repr__(self) -> str:
        return f"<WebhookEvent(event_type={self.event_type}, file_key={self.file_key})>"


class WebhookRegistration(BaseModel):
    """
    A request to receive Figma events for a file.

    Attributes:
        file_key: Figma file key
        event_type: Figma event type to subscribe to
        endpoint: HTTPS URL Figma should deliver to
        status: Registration state ("registered" until Figma confirms)
        registered_by_user_id: Identity that asked for it
    """

    __tablename__ = "webhook_registrations"

    file_key: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    endpoint: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        doc="HTTPS URL to send notifications to"
    )
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="registered")

    registered_by_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<WebhookRegistration(file_key={self.file_key}, event_type={self.event_type})>"
