"""
Local comment cache queries and mutations.

Provides:
- Upsert keyed by the Figma comment id (identity fields never change)
- Listing by file, node, canvas and thread
- Summary and stats aggregates
- Local resolution toggling, kept across syncs until Figma reports a
  newer edit
"""

import logging
import uuid
from collections import Counter
from datetime import datetime
from typing import Any, Callable, Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, sessionmaker

from collator.database import transaction
from collator.exceptions import NotFoundError
from collator.integrations.figma.adapter import RemoteComment
from collator.models.base import utc_now
from collator.models.comments import Comment

logger = logging.getLogger(__name__)

SUMMARY_RECENT_LIMIT = 5
SUMMARY_PREVIEW_CHARS = 100


def _preview(message: str) -> str:
    if len(message) <= SUMMARY_PREVIEW_CHARS:
        return message
    return message[:SUMMARY_PREVIEW_CHARS] + "..."


def _keeps_local_resolution(comment: Comment, remote: RemoteComment) -> bool:
    """
    Whether a locally resolved comment stays resolved despite Figma.

    Figma never learns of local resolutions, so it keeps reporting the
    comment as open. That report only wins once Figma has a newer edit
    than the cached one.
    """
    if not comment.resolved_locally or remote.resolved_at is not None:
        return False
    if remote.updated_at is None:
        return True
    return comment.remote_updated_at is not None and remote.updated_at <= comment.remote_updated_at


class CommentRepository:
    """Reads and writes the comments table."""

    def __init__(
        self,
        session_factory: sessionmaker,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._session_factory = session_factory
        self._clock = clock

    # =========================================================================
    # Writes
    # =========================================================================

    def upsert(
        self,
        remote: RemoteComment,
        file_key: str,
        node_name: Optional[str] = None,
        resolved_by_user_id: Optional[uuid.UUID] = None,
        db: Optional[Session] = None,
    ) -> Comment:
        """
        Insert or refresh a comment from its Figma representation.

        Mutable fields (message, node name, resolution, remote update time)
        are overwritten, except that a local resolution stands while Figma
        reports the comment open with no newer edit. Author, creation time
        and file key keep the values from the first insert.

        Args:
            remote: Comment as reported by Figma
            file_key: File the comment belongs to
            node_name: Display name of the anchored node, if known
            resolved_by_user_id: Local identity that resolved it, if known
            db: Session to join

        Returns:
            The stored Comment
        """
        now = self._clock()
        with transaction(self._session_factory, db) as session:
            comment = session.execute(
                select(Comment).where(Comment.external_comment_id == remote.id)
            ).scalar_one_or_none()

            if comment is None:
                comment = Comment(
                    external_comment_id=remote.id,
                    file_key=file_key,
                    node_id=remote.node_id,
                    author_name=remote.author_name,
                    author_handle=remote.author_handle,
                    parent_comment_id=remote.parent_id,
                    position_x=remote.position_x,
                    position_y=remote.position_y,
                    remote_created_at=remote.created_at,
                )
                session.add(comment)
            elif comment.file_key != file_key:
                logger.warning(
                    f"Comment {remote.id} reported for file {file_key} "
                    f"but cached under {comment.file_key}"
                )

            comment.message = remote.message
            comment.node_name = node_name
            if _keeps_local_resolution(comment, remote):
                logger.debug(f"Keeping local resolution of comment {remote.id}")
            else:
                if remote.resolved_at is None:
                    comment.resolved_by_user_id = None
                elif resolved_by_user_id is not None:
                    comment.resolved_by_user_id = resolved_by_user_id
                comment.resolved_at = remote.resolved_at
                comment.resolved_locally = False
            comment.remote_updated_at = remote.updated_at
            comment.local_updated_at = now
            session.flush()

        return comment

    def set_resolution(
        self,
        file_key: str,
        external_comment_id: str,
        resolved_by_user_id: Optional[uuid.UUID],
        resolved: bool = True,
        db: Optional[Session] = None,
    ) -> Comment:
        """
        Resolve or reopen a cached comment from the plugin. Only resolution
        fields change.

        Raises:
            NotFoundError: If the comment is not cached for this file
        """
        now = self._clock()
        with transaction(self._session_factory, db) as session:
            comment = self._get(session, file_key, external_comment_id)
            if resolved:
                comment.resolved_at = now
                comment.resolved_by_user_id = resolved_by_user_id
            else:
                comment.resolved_at = None
                comment.resolved_by_user_id = None
            comment.resolved_locally = resolved
            comment.local_updated_at = now
            session.flush()

        action = "resolved" if resolved else "unresolved"
        logger.info(f"Comment {external_comment_id} {action} on file {file_key}")
        return comment

    def delete(
        self,
        external_comment_id: str,
        file_key: Optional[str] = None,
        db: Optional[Session] = None,
    ) -> bool:
        """
        Hard-delete a cached comment. Returns True if a row was removed.

        With file_key, a comment cached under another file is left alone.
        """
        stmt = delete(Comment).where(Comment.external_comment_id == external_comment_id)
        if file_key is not None:
            stmt = stmt.where(Comment.file_key == file_key)
        with transaction(self._session_factory, db) as session:
            result = session.execute(stmt)
            return (result.rowcount or 0) > 0

    def delete_for_file(self, file_key: str, db: Optional[Session] = None) -> int:
        with transaction(self._session_factory, db) as session:
            result = session.execute(delete(Comment).where(Comment.file_key == file_key))
            return result.rowcount or 0

    # =========================================================================
    # Queries
    # =========================================================================

    def _get(self, session: Session, file_key: str, external_comment_id: str) -> Comment:
        comment = session.execute(
            select(Comment).where(
                Comment.file_key == file_key,
                Comment.external_comment_id == external_comment_id,
            )
        ).scalar_one_or_none()
        if comment is None:
            raise NotFoundError(f"Comment {external_comment_id} not found")
        return comment

    def get(self, file_key: str, external_comment_id: str) -> Comment:
        """
        Raises:
            NotFoundError: If the comment is not cached for this file
        """
        with transaction(self._session_factory) as session:
            return self._get(session, file_key, external_comment_id)

    def external_ids_for_file(self, file_key: str) -> set[str]:
        with transaction(self._session_factory) as session:
            return set(session.scalars(
                select(Comment.external_comment_id).where(Comment.file_key == file_key)
            ).all())

    def list_for_file(self, file_key: str, node_id: Optional[str] = None) -> Sequence[Comment]:
        """
        List cached comments for a file, newest first.

        Args:
            file_key: Figma file key
            node_id: Only comments anchored to this node
        """
        stmt = select(Comment).where(Comment.file_key == file_key)
        if node_id:
            stmt = stmt.where(Comment.node_id == node_id)
        stmt = stmt.order_by(Comment.remote_created_at.desc())

        with transaction(self._session_factory) as session:
            return session.scalars(stmt).all()

    def list_canvas(self, file_key: str) -> Sequence[Comment]:
        """List comments placed on the canvas rather than on a node."""
        with transaction(self._session_factory) as session:
            return session.scalars(
                select(Comment)
                .where(Comment.file_key == file_key, Comment.node_id.is_(None))
                .order_by(Comment.remote_created_at.desc())
            ).all()

    def get_thread(self, file_key: str, external_comment_id: str) -> tuple[Comment, Sequence[Comment]]:
        """
        Get a comment and its replies, oldest reply first.

        Raises:
            NotFoundError: If the parent comment is not cached
        """
        with transaction(self._session_factory) as session:
            parent = self._get(session, file_key, external_comment_id)
            replies = session.scalars(
                select(Comment)
                .where(
                    Comment.file_key == file_key,
                    Comment.parent_comment_id == external_comment_id,
                )
                .order_by(Comment.remote_created_at.asc())
            ).all()
        return parent, replies

    def summary(self, file_key: str, node_id: Optional[str] = None) -> dict[str, Any]:
        """
        Aggregate a file's (or node's) comments.

        Returns:
            total, active and resolved counts, comments per author and the
            most recent unresolved comments with shortened messages
        """
        comments = self.list_for_file(file_key, node_id)
        active = [c for c in comments if not c.is_resolved]

        return {
            "total": len(comments),
            "active": len(active),
            "resolved": len(comments) - len(active),
            "by_author": dict(Counter(c.author_name or "Unknown" for c in comments)),
            "recent_unresolved": [
                {
                    "id": c.external_comment_id,
                    "author": c.author_name,
                    "message": _preview(c.message),
                    "node_name": c.node_name,
                    "created_at": c.remote_created_at,
                }
                for c in active[:SUMMARY_RECENT_LIMIT]
            ],
        }

    def stats(self, file_key: str) -> dict[str, int]:
        comments = self.list_for_file(file_key)
        resolved = sum(1 for c in comments if c.is_resolved)
        return {
            "total_comments": len(comments),
            "resolved_comments": resolved,
            "active_comments": len(comments) - resolved,
            "unique_authors": len({c.author_name for c in comments if c.author_name}),
        }
