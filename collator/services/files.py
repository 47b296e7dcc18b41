"""
Design file records.

File rows are created lazily, the first time a file is looked up,
synced or mentioned by a webhook. When Figma cannot be reached the row
gets a placeholder name, replaced on the next successful lookup.
"""

import logging
import uuid
from concurrent.futures import Executor
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, sessionmaker

from collator.database import run_blocking, transaction
from collator.exceptions import CollatorError
from collator.integrations.figma.adapter import RemoteFile
from collator.models.base import utc_now
from collator.models.comments import Comment
from collator.models.files import PLACEHOLDER_FILE_NAME, DesignFile, FilePermission

if TYPE_CHECKING:
    from collator.integrations.figma.client import FigmaClient

logger = logging.getLogger(__name__)


class FileRepository:
    """Reads and writes the files table."""

    def __init__(
        self,
        session_factory: sessionmaker,
        clock: Callable[[], datetime] = utc_now,
        executor: Optional[Executor] = None,
    ):
        self._session_factory = session_factory
        self._clock = clock
        self._executor = executor

    def get(self, file_key: str, db: Optional[Session] = None) -> Optional[DesignFile]:
        with transaction(self._session_factory, db) as session:
            return session.execute(
                select(DesignFile).where(DesignFile.file_key == file_key)
            ).scalar_one_or_none()

    def ensure(
        self,
        file_key: str,
        owner_user_id: Optional[uuid.UUID] = None,
        db: Optional[Session] = None,
    ) -> DesignFile:
        """Return the file row, creating a placeholder if missing."""
        with transaction(self._session_factory, db) as session:
            design_file = self.get(file_key, db=session)
            if design_file is None:
                design_file = DesignFile(
                    file_key=file_key,
                    file_name=PLACEHOLDER_FILE_NAME,
                    owner_user_id=owner_user_id,
                )
                session.add(design_file)
                session.flush()
                logger.info(f"Created placeholder record for file {file_key}")
        return design_file

    def record_info(
        self,
        remote: RemoteFile,
        owner_user_id: Optional[uuid.UUID] = None,
    ) -> DesignFile:
        """Store metadata fetched from Figma."""
        with transaction(self._session_factory) as session:
            design_file = self.ensure(remote.key, owner_user_id, db=session)
            if remote.name:
                design_file.file_name = remote.name
            if remote.team_id:
                design_file.team_id = remote.team_id
            design_file.updated_at = self._clock()
            session.flush()
        return design_file

    def mark_synced(
        self,
        file_key: str,
        synced_at: Optional[datetime] = None,
        db: Optional[Session] = None,
    ) -> DesignFile:
        with transaction(self._session_factory, db) as session:
            design_file = self.ensure(file_key, db=session)
            design_file.last_synced_at = synced_at or self._clock()
            session.flush()
        return design_file

    def delete(self, file_key: str) -> dict[str, int]:
        """
        Remove a file together with its cached comments and permissions.

        Returns:
            Number of rows removed per table
        """
        with transaction(self._session_factory) as session:
            comments = session.execute(delete(Comment).where(Comment.file_key == file_key))
            permissions = session.execute(
                delete(FilePermission).where(FilePermission.file_key == file_key)
            )
            files = session.execute(delete(DesignFile).where(DesignFile.file_key == file_key))

        counts = {
            "files": files.rowcount or 0,
            "comments": comments.rowcount or 0,
            "permissions": permissions.rowcount or 0,
        }
        logger.info(f"Deleted file {file_key}: {counts}")
        return counts

    async def lookup(
        self,
        file_key: str,
        figma: "FigmaClient",
        user_id: Optional[uuid.UUID] = None,
    ) -> DesignFile:
        """
        Get a file record, fetching its metadata from Figma when unknown.

        A failed fetch leaves (or creates) a placeholder record.

        Args:
            file_key: Figma file key
            figma: Client used for the metadata fetch
            user_id: Acting identity, recorded as owner for new files
        """
        design_file = await run_blocking(self._executor, self.get, file_key)
        if design_file is not None and not design_file.is_placeholder:
            return design_file

        try:
            remote = await figma.get_file_info(file_key, user_id)
        except CollatorError as e:
            logger.warning(f"Could not fetch info for file {file_key}: {e.message}")
            if design_file is not None:
                return design_file
            return await run_blocking(self._executor, self.ensure, file_key, owner_user_id=user_id)

        return await run_blocking(self._executor, self.record_info, remote, owner_user_id=user_id)
