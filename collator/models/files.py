"""
Design file and file permission models.
"""

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from collator.models.base import BaseModel, UTCDateTime, utc_now

PLACEHOLDER_FILE_NAME = "Unknown File"


class PermissionLevel(str, enum.Enum):
    """Access level on a file, ordered read < write < admin."""

    READ = "read"
    WRITE = "write"
    ADMIN = "admin"

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]

    def allows(self, minimum: "PermissionLevel") -> bool:
        """Check whether this level satisfies a required minimum."""
        return self.rank >= minimum.rank


_LEVEL_RANK = {
    PermissionLevel.READ: 1,
    PermissionLevel.WRITE: 2,
    PermissionLevel.ADMIN: 3,
}


class DesignFile(BaseModel):
    """
    A Figma file whose comments are mirrored locally.

    Attributes:
        file_key: Figma file key
        file_name: File name, or a placeholder until fetched from Figma
        team_id: Owning Figma team
        owner_user_id: Identity that first looked the file up
        last_synced_at: Last reconciliation or update notification
    """

    __tablename__ = "files"

    file_key: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    file_name: Mapped[str] = mapped_column(
        String(512),
        nullable=False,
        default=PLACEHOLDER_FILE_NAME,
    )
    team_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    owner_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    @property
    def is_placeholder(self) -> bool:
        return self.file_name == PLACEHOLDER_FILE_NAME

    def __repr__(self) -> str:
        return f"<DesignFile(file_key={self.file_key}, name={self.file_name})>"


class FilePermission(BaseModel):
    """
    Permission of one identity on one file.

    Attributes:
        user_id: Identity holding the permission
        file_key: Figma file key (no foreign key: files are created lazily)
        level: read, write or admin
        granted_by_user_id: Admin who granted it (NULL for automatic grants)
        granted_at: When the level was last set
    """

    __tablename__ = "file_permissions"

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    file_key: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    level: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=PermissionLevel.READ.value,
    )
    granted_by_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    granted_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)

    __table_args__ = (
        Index("ix_file_permissions_user_file", "user_id", "file_key", unique=True),
    )

    @property
    def permission_level(self) -> PermissionLevel:
        return PermissionLevel(self.level)

    def __repr__(self) -> str:
        return f"<FilePermission(user_id={self.user_id}, file_key={self.file_key}, level={self.level})>"
