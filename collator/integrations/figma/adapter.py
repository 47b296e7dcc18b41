"""
Conversion of Figma API payloads into local types.

Figma reports comments with their anchor under client_meta, which is
either a frame offset ({node_id, node_offset}) or a bare canvas point
({x, y}).
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

logger = logging.getLogger(__name__)


@dataclass
class RemoteComment:
    """A comment as reported by Figma."""

    id: str
    message: str
    created_at: datetime
    updated_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    parent_id: Optional[str] = None
    node_id: Optional[str] = None
    position_x: float = 0.0
    position_y: float = 0.0
    author_name: Optional[str] = None
    author_handle: Optional[str] = None
    author_id: Optional[str] = None


@dataclass
class RemoteFile:
    """File metadata from GET /files/:key."""

    key: str
    name: str
    team_id: Optional[str] = None
    last_modified: Optional[datetime] = None
    version: Optional[str] = None
    thumbnail_url: Optional[str] = None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a Figma ISO 8601 timestamp into an aware UTC datetime.

    Accepts the trailing "Z" form Figma uses and datetimes passed through
    unchanged. Unparseable values yield None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            logger.warning(f"Unparseable Figma timestamp: {value!r}")
            return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _anchor(client_meta: Any) -> tuple[Optional[str], float, float]:
    """Extract (node_id, x, y) from client_meta."""
    if not isinstance(client_meta, dict):
        return None, 0.0, 0.0

    node_id = client_meta.get("node_id") or None
    offset = client_meta.get("node_offset")
    if isinstance(offset, dict):
        x, y = offset.get("x"), offset.get("y")
    else:
        x, y = client_meta.get("x"), client_meta.get("y")
    return node_id, float(x or 0), float(y or 0)


def parse_comment(payload: dict[str, Any]) -> RemoteComment:
    """
    Convert a Figma comment object.

    Raises:
        ValueError: If the payload has no comment id
    """
    comment_id = payload.get("id")
    if not comment_id:
        raise ValueError("Figma comment payload missing id")

    user = payload.get("user") or {}
    node_id, x, y = _anchor(payload.get("client_meta"))
    created_at = parse_timestamp(payload.get("created_at"))

    return RemoteComment(
        id=str(comment_id),
        message=payload.get("message") or "",
        created_at=created_at or datetime.now(timezone.utc),
        updated_at=parse_timestamp(payload.get("updated_at")),
        resolved_at=parse_timestamp(payload.get("resolved_at")),
        parent_id=payload.get("parent_id") or None,
        node_id=node_id,
        position_x=x,
        position_y=y,
        author_name=user.get("name") or user.get("handle"),
        author_handle=user.get("handle"),
        author_id=str(user["id"]) if user.get("id") else None,
    )


def parse_file(file_key: str, payload: dict[str, Any]) -> RemoteFile:
    """Convert a GET /files/:key response."""
    return RemoteFile(
        key=file_key,
        name=payload.get("name") or "",
        team_id=payload.get("team_id"),
        last_modified=parse_timestamp(payload.get("lastModified")),
        version=payload.get("version"),
        thumbnail_url=payload.get("thumbnailUrl"),
    )


def build_comment_payload(
    message: str,
    node_id: Optional[str] = None,
    parent_id: Optional[str] = None,
    x: float = 0.0,
    y: float = 0.0,
) -> dict[str, Any]:
    """Build the body for POST /files/:key/comments."""
    payload: dict[str, Any] = {"message": message}
    if parent_id:
        # Replies inherit the anchor of the thread root
        payload["comment_id"] = parent_id
    elif node_id:
        payload["client_meta"] = {"node_id": node_id, "node_offset": {"x": x, "y": y}}
    else:
        payload["client_meta"] = {"x": x, "y": y}
    return payload
