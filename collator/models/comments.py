"""
Comment cache model.

The comments table is a read-mostly mirror of Figma. Rows are created and
refreshed by sync and webhooks, and hard-deleted when they disappear
upstream.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, Float, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from collator.models.base import BaseModel, UTCDateTime, utc_now


class Comment(BaseModel):
    """
    A Figma comment mirrored locally.

    Attributes:
        external_comment_id: Figma comment ID (reconciliation key)
        file_key: Figma file key
        node_id: Node the comment is pinned to (NULL = canvas-level)
        node_name: Display name of that node, best effort
        message: Comment text
        author_name / author_handle: Author identity at creation time
        parent_comment_id: Figma ID of the thread root for replies
        position_x / position_y: Offset within the node or canvas
        resolved_at / resolved_by_user_id: Resolution state
        resolved_locally: Resolved here rather than reported by Figma
        remote_created_at / remote_updated_at: Timestamps reported by Figma
        local_updated_at: Last local write
    """

    __tablename__ = "comments"

    external_comment_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        doc="Figma comment ID"
    )
    file_key: Mapped[str] = mapped_column(String(255), nullable=False)

    node_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    node_name: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)

    message: Mapped[str] = mapped_column(Text, nullable=False, default="")
    author_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    author_handle: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    parent_comment_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)

    position_x: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    position_y: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    resolved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    resolved_by_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    resolved_locally: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    remote_created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    remote_updated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    local_updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)

    __table_args__ = (
        Index("ix_comments_file_node", "file_key", "node_id"),
        Index("ix_comments_file_created", "file_key", "remote_created_at"),
    )

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None

    def __repr__(self) -> str:
        return f"<Comment(external_comment_id={self.external_comment_id}, file_key={self.file_key})>"
