"""
Plugin API routes for users, files and sessions.

All routes require a bearer session token.
"""

import logging

from fastapi import APIRouter, Depends

from collator.api.dependencies import get_container, get_current_session
from collator.api.models import (
    FileResponse,
    GrantPermissionRequest,
    PermissionResponse,
    SyncResponse,
    UpdateNodeRequest,
    UserSummary,
)
from collator.container import ServiceContainer
from collator.exceptions import NotFoundError, ValidationError
from collator.models.files import PermissionLevel
from collator.models.identity import PluginSession

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["api"])


# =============================================================================
# User Endpoints
# =============================================================================


@router.get("/user/profile")
async def user_profile(
    plugin_session: PluginSession = Depends(get_current_session),
) -> dict:
    """Return the session's identity and plugin context."""
    user = plugin_session.user
    return {
        "user": UserSummary(**user.summary()).model_dump(),
        "avatar_url": user.avatar_url,
        "file_key": plugin_session.scoped_file_key,
        "current_node_id": plugin_session.current_node_id,
    }


@router.get("/user/files")
async def user_files(
    plugin_session: PluginSession = Depends(get_current_session),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    """List files the user holds a permission on, newest grant first."""
    files = await container.run(container.permissions.list_for_user, plugin_session.user_id)
    return {"files": files, "total": len(files)}


# =============================================================================
# File Endpoints
# =============================================================================


@router.get("/files/{file_key}", response_model=FileResponse)
async def file_info(
    file_key: str,
    plugin_session: PluginSession = Depends(get_current_session),
    container: ServiceContainer = Depends(get_container),
) -> FileResponse:
    """
    Get file metadata and the caller's permission on it.

    First access registers the file; the first user on a file becomes
    its admin.
    """
    permission = await container.run(
        container.permissions.ensure_file_permission, plugin_session.user_id, file_key
    )
    design_file = await container.files.lookup(file_key, container.figma, plugin_session.user_id)

    return FileResponse(
        file_key=design_file.file_key,
        file_name=design_file.file_name,
        team_id=design_file.team_id,
        last_synced_at=design_file.last_synced_at,
        permission_level=permission.level,
    )


@router.post("/files/{file_key}/sync", response_model=SyncResponse)
async def sync_file(
    file_key: str,
    plugin_session: PluginSession = Depends(get_current_session),
    container: ServiceContainer = Depends(get_container),
) -> SyncResponse:
    """
    Reconcile the file's cached comments with Figma.

    Needs read access. Upstream failures abort the sync with a 502.
    """
    await container.run(
        container.permissions.require, plugin_session.user_id, file_key, PermissionLevel.READ
    )
    result = await container.sync_engine.sync(file_key, plugin_session.user_id)
    return SyncResponse(
        upserted=result.upserted,
        deleted=result.deleted,
        failed=result.failed,
        synced_at=result.synced_at,
    )


@router.get("/files/{file_key}/stats")
async def file_stats(
    file_key: str,
    plugin_session: PluginSession = Depends(get_current_session),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    """Comment counts for a file."""
    await container.run(
        container.permissions.require, plugin_session.user_id, file_key, PermissionLevel.READ
    )
    design_file = await container.run(container.files.get, file_key)

    stats = await container.run(container.comments.stats, file_key)
    stats["last_synced_at"] = design_file.last_synced_at if design_file else None
    return stats


@router.post("/files/{file_key}/permissions", response_model=PermissionResponse)
async def grant_permission(
    file_key: str,
    payload: GrantPermissionRequest,
    plugin_session: PluginSession = Depends(get_current_session),
    container: ServiceContainer = Depends(get_container),
) -> PermissionResponse:
    """
    Grant a permission level on a file to another user. Admin only.

    Raises:
        NotFoundError: No user with that handle has logged in
    """
    await container.run(
        container.permissions.require, plugin_session.user_id, file_key, PermissionLevel.ADMIN
    )

    grantee = await container.run(container.identities.get_by_handle, payload.user_handle)
    if grantee is None:
        raise NotFoundError(f"User @{payload.user_handle} not found")

    permission = await container.run(
        container.permissions.grant,
        grantee.id,
        file_key,
        payload.permission_level,
        granted_by=plugin_session.user_id,
    )
    return PermissionResponse(
        file_key=permission.file_key,
        user_id=str(permission.user_id),
        permission_level=permission.level,
        granted_at=permission.granted_at,
    )


# =============================================================================
# Session Endpoints
# =============================================================================


@router.put("/session/node")
async def update_selected_node(
    payload: UpdateNodeRequest,
    plugin_session: PluginSession = Depends(get_current_session),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    """Record the node currently selected in the plugin."""
    scoped = plugin_session.scoped_file_key
    if scoped and scoped != payload.file_key:
        raise ValidationError(f"Session is scoped to file {scoped}")

    await container.run(
        container.sessions.update_context, plugin_session.session_token, payload.node_id
    )
    return {"success": True, "file_key": payload.file_key, "node_id": payload.node_id}
