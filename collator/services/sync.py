"""
Comment synchronization.

Reconciles the full remote comment set of a file against the local
cache: every remote comment is upserted, every cached comment missing
from the remote set is deleted. The remote set is fetched in one call;
if that call fails nothing local is touched.

Node names are looked up in small concurrent batches with a pause
between batches to stay under Figma's rate limits. A failed lookup
leaves the name empty and never fails the sync.
"""

import asyncio
import logging
import uuid
from concurrent.futures import Executor
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from collator.database import run_blocking
from collator.exceptions import CollatorError
from collator.integrations.figma.adapter import RemoteComment
from collator.integrations.figma.client import FigmaClient
from collator.models.base import utc_now
from collator.models.comments import Comment
from collator.services.comments import CommentRepository
from collator.services.files import FileRepository

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 5
DEFAULT_BATCH_DELAY_SECONDS = 1.0


@dataclass
class SyncResult:
    """Counts from one reconciliation pass."""

    upserted: int
    deleted: int
    failed: int
    synced_at: datetime

    def to_dict(self) -> dict:
        return {
            "upserted": self.upserted,
            "deleted": self.deleted,
            "failed": self.failed,
            "synced_at": self.synced_at.isoformat(),
        }


class CommentSyncEngine:
    """
    Keeps the local comment cache in step with Figma.

    Usage:
        result = await engine.sync("abc123", user.id)
        print(result.upserted, result.deleted)
    """

    def __init__(
        self,
        figma: FigmaClient,
        comments: CommentRepository,
        files: FileRepository,
        clock: Callable[[], datetime] = utc_now,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_delay_seconds: float = DEFAULT_BATCH_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        executor: Optional[Executor] = None,
    ):
        """
        Initialize the engine.

        Args:
            figma: Figma API client
            comments: Local comment cache
            files: Local file records
            clock: Time source
            batch_size: Concurrent node lookups per batch
            batch_delay_seconds: Pause between node lookup batches
            sleep: Coroutine used for the pause (tests pass a no-op)
            executor: Thread pool for local store calls
        """
        self.figma = figma
        self.comments = comments
        self.files = files
        self._clock = clock
        self.batch_size = max(1, batch_size)
        self.batch_delay_seconds = batch_delay_seconds
        self._sleep = sleep
        self._executor = executor

    async def _node_name(
        self,
        file_key: str,
        node_id: str,
        user_id: uuid.UUID,
    ) -> Optional[str]:
        try:
            return await self.figma.get_node_name(file_key, node_id, user_id)
        except CollatorError as e:
            logger.warning(f"Node name lookup failed for {node_id} in {file_key}: {e.message}")
            return None

    async def resolve_node_names(
        self,
        file_key: str,
        node_ids: list[str],
        user_id: uuid.UUID,
    ) -> dict[str, Optional[str]]:
        """
        Look up display names for a set of nodes.

        Returns:
            Mapping of node id to name (None where the lookup failed)
        """
        names: dict[str, Optional[str]] = {}
        for start in range(0, len(node_ids), self.batch_size):
            if start > 0 and self.batch_delay_seconds > 0:
                await self._sleep(self.batch_delay_seconds)
            batch = node_ids[start:start + self.batch_size]
            results = await asyncio.gather(
                *(self._node_name(file_key, node_id, user_id) for node_id in batch)
            )
            names.update(zip(batch, results))
        return names

    async def sync(self, file_key: str, acting_user_id: uuid.UUID) -> SyncResult:
        """
        Reconcile a file's comments with Figma.

        Args:
            file_key: Figma file key
            acting_user_id: Identity whose credentials are used upstream

        Returns:
            SyncResult with upserted, deleted and failed counts

        Raises:
            UpstreamError: If the remote comment set cannot be fetched
        """
        logger.info(f"Syncing comments for file {file_key}")

        local_ids = await run_blocking(self._executor, self.comments.external_ids_for_file, file_key)
        remote_comments = await self.figma.get_file_comments(file_key, acting_user_id)

        node_ids = list(dict.fromkeys(c.node_id for c in remote_comments if c.node_id))
        node_names = await self.resolve_node_names(file_key, node_ids, acting_user_id)

        upserted = 0
        failed = 0
        for remote in remote_comments:
            try:
                await run_blocking(
                    self._executor,
                    self.comments.upsert,
                    remote,
                    file_key,
                    node_name=node_names.get(remote.node_id) if remote.node_id else None,
                )
                upserted += 1
            except SQLAlchemyError as e:
                failed += 1
                logger.error(f"Failed to store comment {remote.id} for file {file_key}: {e}")

        remote_ids = {c.id for c in remote_comments}
        deleted = 0
        for orphan_id in local_ids - remote_ids:
            if await run_blocking(self._executor, self.comments.delete, orphan_id, file_key=file_key):
                deleted += 1

        synced_at = self._clock()
        await run_blocking(self._executor, self.files.mark_synced, file_key, synced_at)

        result = SyncResult(upserted=upserted, deleted=deleted, failed=failed, synced_at=synced_at)
        logger.info(
            f"Synced file {file_key}: {upserted} upserted, {deleted} deleted, {failed} failed"
        )
        return result

    async def post(
        self,
        file_key: str,
        user_id: uuid.UUID,
        message: str,
        node_id: Optional[str] = None,
        parent_id: Optional[str] = None,
        x: float = 0.0,
        y: float = 0.0,
    ) -> Comment:
        """
        Post a comment to Figma, then mirror it locally.

        Figma echoes the new comment back; the local row is built from that
        echo, falling back to the request values for anything it omits.
        """
        remote: RemoteComment = await self.figma.post_comment(
            file_key, user_id, message, node_id=node_id, parent_id=parent_id, x=x, y=y
        )
        remote.node_id = remote.node_id or node_id
        remote.parent_id = remote.parent_id or parent_id

        node_name = None
        if remote.node_id:
            node_name = await self._node_name(file_key, remote.node_id, user_id)

        await run_blocking(self._executor, self.files.ensure, file_key, owner_user_id=user_id)
        return await run_blocking(
            self._executor, self.comments.upsert, remote, file_key, node_name=node_name
        )

    def resolve(self, file_key: str, comment_id: str, user_id: uuid.UUID) -> Comment:
        """
        Mark a cached comment resolved by user_id.

        Raises:
            NotFoundError: If the comment is not cached for this file
        """
        return self.comments.set_resolution(file_key, comment_id, user_id, resolved=True)

    def unresolve(self, file_key: str, comment_id: str) -> Comment:
        """
        Reopen a cached comment.

        Raises:
            NotFoundError: If the comment is not cached for this file
        """
        return self.comments.set_resolution(file_key, comment_id, None, resolved=False)
