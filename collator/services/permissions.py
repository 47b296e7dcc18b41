"""
File permission bookkeeping.

Bootstrap-owner rule: the first identity to touch a file that has no
permission rows at all becomes its admin. Everyone arriving after that
is granted read. The count and the insert run in the same transaction.
"""

import logging
import uuid
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from collator.database import transaction
from collator.exceptions import AuthorizationError, NotFoundError
from collator.models.base import utc_now
from collator.models.files import DesignFile, FilePermission, PermissionLevel
from collator.models.identity import UserIdentity

logger = logging.getLogger(__name__)


class PermissionService:
    """Grants and checks per-file permission levels."""

    def __init__(
        self,
        session_factory: sessionmaker,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._session_factory = session_factory
        self._clock = clock

    def get(
        self,
        user_id: uuid.UUID,
        file_key: str,
        db: Optional[Session] = None,
    ) -> Optional[FilePermission]:
        with transaction(self._session_factory, db) as session:
            return session.execute(
                select(FilePermission).where(
                    FilePermission.user_id == user_id,
                    FilePermission.file_key == file_key,
                )
            ).scalar_one_or_none()

    def ensure_file_permission(self, user_id: uuid.UUID, file_key: str) -> FilePermission:
        """
        Return the caller's permission on a file, creating it if missing.

        A file with no permissions yet is claimed by its first accessor,
        who is granted admin. Later accessors are granted read.

        Args:
            user_id: Accessing identity
            file_key: Figma file key

        Returns:
            The existing or newly created FilePermission
        """
        with transaction(self._session_factory) as session:
            existing = self.get(user_id, file_key, db=session)
            if existing is not None:
                return existing

            holders = session.execute(
                select(func.count(FilePermission.id)).where(FilePermission.file_key == file_key)
            ).scalar_one()
            level = PermissionLevel.ADMIN if holders == 0 else PermissionLevel.READ

            permission = FilePermission(
                user_id=user_id,
                file_key=file_key,
                level=level.value,
                granted_at=self._clock(),
            )
            session.add(permission)
            session.flush()

        logger.info(f"Granted {level.value} on file {file_key} to user {user_id}")
        return permission

    def require(
        self,
        user_id: uuid.UUID,
        file_key: str,
        minimum: PermissionLevel,
    ) -> FilePermission:
        """
        Ensure the caller holds at least the given level on a file.

        Raises:
            AuthorizationError: If the caller's level is below minimum
        """
        permission = self.ensure_file_permission(user_id, file_key)
        if not permission.permission_level.allows(minimum):
            logger.warning(
                f"User {user_id} has {permission.level} on {file_key}, "
                f"{minimum.value} required"
            )
            raise AuthorizationError(
                f"Insufficient permissions: {minimum.value} access required"
            )
        return permission

    def grant(
        self,
        user_id: uuid.UUID,
        file_key: str,
        level: PermissionLevel,
        granted_by: Optional[uuid.UUID] = None,
    ) -> FilePermission:
        """
        Set a user's level on a file, creating or overwriting the row.

        Raises:
            NotFoundError: If the target user does not exist
        """
        now = self._clock()
        with transaction(self._session_factory) as session:
            if session.get(UserIdentity, user_id) is None:
                raise NotFoundError("User not found")

            permission = self.get(user_id, file_key, db=session)
            if permission is None:
                permission = FilePermission(user_id=user_id, file_key=file_key)
                session.add(permission)

            permission.level = level.value
            permission.granted_by_user_id = granted_by
            permission.granted_at = now
            session.flush()

        logger.info(f"User {granted_by} set {level.value} on file {file_key} for user {user_id}")
        return permission

    def list_for_user(self, user_id: uuid.UUID) -> list[dict]:
        """
        List a user's files with their permission level, newest grant first.

        Returns:
            Dicts with file_key, file_name, permission_level, granted_at
            and last_synced_at (the last two may be None)
        """
        with transaction(self._session_factory) as session:
            rows = session.execute(
                select(FilePermission, DesignFile)
                .outerjoin(DesignFile, DesignFile.file_key == FilePermission.file_key)
                .where(FilePermission.user_id == user_id)
                .order_by(FilePermission.granted_at.desc())
            ).all()

        return [
            {
                "file_key": permission.file_key,
                "file_name": design_file.file_name if design_file else None,
                "permission_level": permission.level,
                "granted_at": permission.granted_at,
                "last_synced_at": design_file.last_synced_at if design_file else None,
            }
            for permission, design_file in rows
        ]
