"""
Comment API routes.

Reads need read access to the file; posting and resolution toggling
need write access.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from collator.api.dependencies import get_container, get_current_session
from collator.api.models import (
    CommentListResponse,
    CommentResponse,
    PostCommentRequest,
    ThreadResponse,
)
from collator.container import ServiceContainer
from collator.models.files import PermissionLevel
from collator.models.identity import PluginSession

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/comments", tags=["comments"])


def _listing(comments) -> CommentListResponse:
    items = [CommentResponse.from_comment(c) for c in comments]
    return CommentListResponse(comments=items, total=len(items))


# =============================================================================
# Queries
# =============================================================================


@router.get("/{file_key}", response_model=CommentListResponse)
async def list_comments(
    file_key: str,
    node_id: Optional[str] = Query(None, description="Only comments on this node"),
    plugin_session: PluginSession = Depends(get_current_session),
    container: ServiceContainer = Depends(get_container),
) -> CommentListResponse:
    """List cached comments for a file, newest first."""
    await container.run(
        container.permissions.require, plugin_session.user_id, file_key, PermissionLevel.READ
    )
    return _listing(await container.run(container.comments.list_for_file, file_key, node_id))


@router.get("/{file_key}/canvas", response_model=CommentListResponse)
async def list_canvas_comments(
    file_key: str,
    plugin_session: PluginSession = Depends(get_current_session),
    container: ServiceContainer = Depends(get_container),
) -> CommentListResponse:
    """List comments placed on the canvas rather than on a node."""
    await container.run(
        container.permissions.require, plugin_session.user_id, file_key, PermissionLevel.READ
    )
    return _listing(await container.run(container.comments.list_canvas, file_key))


@router.get("/{file_key}/summary")
async def comment_summary(
    file_key: str,
    node_id: Optional[str] = Query(None, description="Only comments on this node"),
    plugin_session: PluginSession = Depends(get_current_session),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    """Counts per state and author, plus the latest open comments."""
    await container.run(
        container.permissions.require, plugin_session.user_id, file_key, PermissionLevel.READ
    )
    return await container.run(container.comments.summary, file_key, node_id)


@router.get("/{file_key}/{comment_id}/thread", response_model=ThreadResponse)
async def comment_thread(
    file_key: str,
    comment_id: str,
    plugin_session: PluginSession = Depends(get_current_session),
    container: ServiceContainer = Depends(get_container),
) -> ThreadResponse:
    """Get a comment with its replies."""
    await container.run(
        container.permissions.require, plugin_session.user_id, file_key, PermissionLevel.READ
    )
    parent, replies = await container.run(container.comments.get_thread, file_key, comment_id)
    return ThreadResponse(
        comment=CommentResponse.from_comment(parent),
        replies=[CommentResponse.from_comment(r) for r in replies],
    )


# =============================================================================
# Mutations
# =============================================================================


@router.post("/{file_key}", response_model=CommentResponse, status_code=201)
async def post_comment(
    file_key: str,
    payload: PostCommentRequest,
    plugin_session: PluginSession = Depends(get_current_session),
    container: ServiceContainer = Depends(get_container),
) -> CommentResponse:
    """Post a comment or reply to Figma and cache it."""
    await container.run(
        container.permissions.require, plugin_session.user_id, file_key, PermissionLevel.WRITE
    )
    comment = await container.sync_engine.post(
        file_key,
        plugin_session.user_id,
        payload.message,
        node_id=payload.node_id,
        parent_id=payload.parent_id,
        x=payload.x,
        y=payload.y,
    )
    return CommentResponse.from_comment(comment)


@router.put("/{file_key}/{comment_id}/resolve", response_model=CommentResponse)
async def resolve_comment(
    file_key: str,
    comment_id: str,
    plugin_session: PluginSession = Depends(get_current_session),
    container: ServiceContainer = Depends(get_container),
) -> CommentResponse:
    """Mark a comment resolved."""
    await container.run(
        container.permissions.require, plugin_session.user_id, file_key, PermissionLevel.WRITE
    )
    comment = await container.run(
        container.sync_engine.resolve, file_key, comment_id, plugin_session.user_id
    )
    return CommentResponse.from_comment(comment)


@router.put("/{file_key}/{comment_id}/unresolve", response_model=CommentResponse)
async def unresolve_comment(
    file_key: str,
    comment_id: str,
    plugin_session: PluginSession = Depends(get_current_session),
    container: ServiceContainer = Depends(get_container),
) -> CommentResponse:
    """Reopen a resolved comment."""
    await container.run(
        container.permissions.require, plugin_session.user_id, file_key, PermissionLevel.WRITE
    )
    comment = await container.run(container.sync_engine.unresolve, file_key, comment_id)
    return CommentResponse.from_comment(comment)
