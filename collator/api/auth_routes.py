"""
Authentication API routes for Figma OAuth and plugin sessions.

Handles the OAuth 2.0 authorization code flow:
1. /auth/figma - Start OAuth flow (redirect, or JSON with the URL)
2. /auth/figma/callback - Exchange the code and mint a plugin session
3. /auth/verify - Check a session token
4. /auth/refresh - Exchange a Figma refresh token
5. /auth/check-session - Find a resumable session for a file
"""

import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse

from collator.api.dependencies import get_container
from collator.api.models import (
    AuthorizationResponse,
    CallbackResponse,
    RefreshTokenRequest,
    RefreshTokenResponse,
    SessionStatusResponse,
    UserSummary,
    VerifySessionRequest,
)
from collator.auth.flow import RejectionReason
from collator.container import ServiceContainer
from collator.exceptions import AuthenticationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["authentication"])

# Rejections the user fixes by starting over rather than by retrying later
_CALLBACK_STATUS = {
    RejectionReason.MISSING_PARAMETERS: 400,
    RejectionReason.ACCESS_DENIED: 400,
    RejectionReason.INVALID_OR_EXPIRED_STATE: 400,
    RejectionReason.EXCHANGE_FAILED: 502,
}


@router.get("/figma", response_model=AuthorizationResponse)
async def figma_login(
    request: Request,
    file_key: Optional[str] = Query(None, description="File the plugin is open on"),
    mode: Literal["redirect", "json"] = Query("redirect", description="Redirect or return the URL"),
    container: ServiceContainer = Depends(get_container),
):
    """
    Start the Figma OAuth flow.

    In redirect mode the browser is sent straight to Figma. In JSON mode
    the authorization URL is returned so the plugin can open it itself.
    The session created at the end of the flow is scoped to file_key.
    """
    authorization = await container.run(
        container.oauth_flow.begin_authorization, file_key_hint=file_key
    )

    if mode == "json":
        return AuthorizationResponse(auth_url=authorization.url, state=authorization.state)
    return RedirectResponse(authorization.url, status_code=302)


@router.get("/figma/callback", response_model=CallbackResponse)
async def figma_callback(
    request: Request,
    code: Optional[str] = Query(None, description="Authorization code from Figma"),
    state: Optional[str] = Query(None, description="State token for CSRF protection"),
    error: Optional[str] = Query(None, description="Error from Figma OAuth"),
    container: ServiceContainer = Depends(get_container),
):
    """
    Handle the Figma OAuth callback.

    On success returns the bearer session token the user copies into the
    plugin. On failure returns the rejection reason and where to restart.
    """
    outcome = await container.oauth_flow.handle_callback(code, state, error=error)

    if outcome.established:
        return CallbackResponse(
            success=True,
            session_token=outcome.session_token,
            user=UserSummary(**outcome.user.summary()),
            file_key=outcome.scoped_file_key,
            message="Authentication successful. Copy the session token into the plugin.",
        )

    body = CallbackResponse(
        success=False,
        reason=outcome.reason.value,
        message=outcome.detail,
        retry_url=str(request.url_for("figma_login")),
    )
    return JSONResponse(
        status_code=_CALLBACK_STATUS.get(outcome.reason, 400),
        content=body.model_dump(exclude_none=True),
    )


@router.post("/verify", response_model=SessionStatusResponse)
async def verify_session(
    payload: VerifySessionRequest,
    container: ServiceContainer = Depends(get_container),
) -> SessionStatusResponse:
    """
    Check a session token and return its identity.

    Raises:
        AuthenticationError: Unknown or expired token
    """
    plugin_session = await container.run(container.sessions.validate, payload.session_token)
    if plugin_session is None:
        raise AuthenticationError("Invalid or expired session")

    await container.run(container.sessions.touch, payload.session_token)
    return SessionStatusResponse(
        valid=True,
        user=UserSummary(**plugin_session.user.summary()),
        file_key=plugin_session.scoped_file_key,
    )


@router.post("/refresh", response_model=RefreshTokenResponse)
async def refresh_token(
    payload: RefreshTokenRequest,
    container: ServiceContainer = Depends(get_container),
) -> RefreshTokenResponse:
    """Exchange a Figma refresh token and store the new credentials."""
    tokens = await container.oauth_flow.refresh(payload.refresh_token)
    return RefreshTokenResponse(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        expires_in=tokens.expires_in,
    )


@router.get("/check-session", response_model=SessionStatusResponse)
async def check_session(
    file_key: str = Query(..., min_length=1, description="File the plugin is open on"),
    container: ServiceContainer = Depends(get_container),
) -> SessionStatusResponse:
    """
    Look for a session the plugin can resume without a new login.

    Returns valid=false when none exists.
    """
    plugin_session = await container.run(
        container.sessions.find_most_recent_valid_for_file, file_key
    )
    if plugin_session is None:
        return SessionStatusResponse(valid=False)

    logger.info(f"Resumable session {plugin_session.session_token[:8]}... found for file {file_key}")
    return SessionStatusResponse(
        valid=True,
        session_token=plugin_session.session_token,
        user=UserSummary(**plugin_session.user.summary()),
        file_key=plugin_session.scoped_file_key,
    )
