"""
Pydantic request and response models for the Comments Collator API.
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from collator.models.comments import Comment
from collator.models.files import PermissionLevel


# =============================================================================
# Request Models
# =============================================================================


class VerifySessionRequest(BaseModel):
    """Session token to check."""

    session_token: str = Field(..., min_length=1, description="Bearer session token")


class RefreshTokenRequest(BaseModel):
    """Figma refresh token to exchange."""

    refresh_token: str = Field(..., min_length=1, description="Figma refresh token")


class PostCommentRequest(BaseModel):
    """New comment or reply to post to Figma."""

    message: str = Field(
        ...,
        min_length=1,
        max_length=5000,
        description="Comment text",
        examples=["Can we bump the contrast on this button?"],
    )
    node_id: Optional[str] = Field(None, description="Node to pin the comment to")
    parent_id: Optional[str] = Field(None, description="Comment being replied to")
    x: float = Field(default=0.0, description="Horizontal offset")
    y: float = Field(default=0.0, description="Vertical offset")

    @field_validator("message")
    @classmethod
    def validate_message_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Message cannot be empty")
        return v.strip()


class UpdateNodeRequest(BaseModel):
    """Selection change reported by the plugin."""

    file_key: str = Field(..., min_length=1, description="File the plugin is open on")
    node_id: Optional[str] = Field(None, description="Selected node (None clears it)")


class GrantPermissionRequest(BaseModel):
    """Permission to grant on a file."""

    user_handle: str = Field(..., min_length=1, description="Figma handle of the grantee")
    permission_level: PermissionLevel = Field(..., description="read, write or admin")


class RegisterWebhookRequest(BaseModel):
    """Figma event subscription to record for a file."""

    file_key: str = Field(..., min_length=1, description="Figma file key")
    event_type: Literal["FILE_COMMENT", "FILE_UPDATE", "FILE_DELETE"] = Field(
        ..., description="Figma event type"
    )
    endpoint: str = Field(
        ...,
        description="HTTPS URL Figma should deliver to",
        examples=["https://collator.example.com/webhooks/figma"],
    )

    @field_validator("endpoint")
    @classmethod
    def validate_endpoint(cls, v: str) -> str:
        if not v.startswith("https://") or len(v) <= len("https://"):
            raise ValueError("Webhook endpoint must be an HTTPS URL")
        return v


# =============================================================================
# Response Models
# =============================================================================


class UserSummary(BaseModel):
    """Identity as shown to the plugin."""

    id: str = Field(..., description="Local identity ID")
    figma_user_id: str = Field(..., description="Figma user ID")
    handle: Optional[str] = Field(None, description="Figma handle")
    name: Optional[str] = Field(None, description="Display name")
    email: Optional[str] = Field(None, description="Email address")


class AuthorizationResponse(BaseModel):
    """Authorization URL for JSON-mode login."""

    auth_url: str = Field(..., description="Figma authorization URL")
    state: str = Field(..., description="State token embedded in the URL")


class CallbackResponse(BaseModel):
    """Outcome of the OAuth callback."""

    success: bool
    session_token: Optional[str] = Field(None, description="Bearer token for the plugin")
    user: Optional[UserSummary] = None
    file_key: Optional[str] = Field(None, description="File the session is scoped to")
    reason: Optional[str] = Field(None, description="Rejection reason")
    message: Optional[str] = Field(None, description="Human-readable detail")
    retry_url: Optional[str] = Field(None, description="Where to restart the login")


class SessionStatusResponse(BaseModel):
    """Session verification or existence check result."""

    valid: bool
    session_token: Optional[str] = None
    user: Optional[UserSummary] = None
    file_key: Optional[str] = None


class RefreshTokenResponse(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: int


class CommentResponse(BaseModel):
    """A cached comment, annotated with resolution state."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., validation_alias="external_comment_id", description="Figma comment ID")
    file_key: str
    node_id: Optional[str] = None
    node_name: Optional[str] = None
    message: str
    author_name: Optional[str] = None
    author_handle: Optional[str] = None
    parent_id: Optional[str] = Field(None, validation_alias="parent_comment_id")
    position_x: float = 0.0
    position_y: float = 0.0
    is_resolved: bool = False
    resolved_at: Optional[datetime] = None
    created_at: datetime = Field(..., validation_alias="remote_created_at")
    updated_at: Optional[datetime] = Field(None, validation_alias="remote_updated_at")

    @classmethod
    def from_comment(cls, comment: Comment) -> "CommentResponse":
        return cls.model_validate(comment)


class CommentListResponse(BaseModel):
    comments: list[CommentResponse]
    total: int


class ThreadResponse(BaseModel):
    comment: CommentResponse
    replies: list[CommentResponse]


class SyncResponse(BaseModel):
    """Counts from a sync."""

    upserted: int
    deleted: int
    failed: int
    synced_at: datetime


class FileResponse(BaseModel):
    file_key: str
    file_name: str
    team_id: Optional[str] = None
    last_synced_at: Optional[datetime] = None
    permission_level: str


class PermissionResponse(BaseModel):
    file_key: str
    user_id: str
    permission_level: str
    granted_at: datetime


class WebhookRegistrationResponse(BaseModel):
    success: bool = True
    message: str = "Webhook registration recorded"
    id: str
    file_key: str
    event_type: str
    endpoint: str
    status: str


class HealthResponse(BaseModel):
    """Health check response."""

    status: Literal["healthy", "unhealthy"] = Field(..., description="Health status")
    version: str = Field(..., description="API version")
    database_connected: bool = Field(..., description="Database connection status")
    environment: str = Field(..., description="Application environment")


class ErrorResponse(BaseModel):
    """Error information for failed requests."""

    error_type: str = Field(..., description="Type of error")
    message: str = Field(..., description="Human-readable error message")
    retryable: bool = Field(False, description="Whether retrying may succeed")
    detail: Optional[str] = Field(None, description="Diagnostic detail (development only)")
