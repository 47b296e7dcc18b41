"""
Figma OAuth 2.0 client.

Implements the provider side of the authorization code flow:
1. Generate authorization URL → user redirected to Figma
2. User grants permission → Figma redirects back with code
3. Exchange code for tokens → access_token + refresh_token
4. Fetch the authenticated user's profile
5. Refresh access_token when expired using refresh_token
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional
from urllib.parse import urlencode

import httpx

from collator.config import Settings, get_settings
from collator.exceptions import UpstreamError
from collator.models.base import utc_now

logger = logging.getLogger(__name__)


@dataclass
class OAuthTokens:
    """OAuth token response from Figma."""

    access_token: str
    refresh_token: Optional[str]
    expires_in: int
    issued_at: datetime

    @property
    def expiry(self) -> datetime:
        """Calculate token expiry time."""
        return self.issued_at + timedelta(seconds=self.expires_in)


@dataclass
class FigmaUserInfo:
    """Authenticated user's profile from Figma."""

    id: str
    handle: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None
    img_url: Optional[str] = None


def _upstream_error(action: str, error: Exception) -> UpstreamError:
    """Wrap an httpx failure, keeping the upstream status and body."""
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        body = error.response.text[:500]
        return UpstreamError(
            f"Figma {action} failed ({status})",
            upstream_status=status,
            upstream_message=body,
            original_error=error,
        )
    return UpstreamError(
        f"Figma {action} failed: {error}",
        upstream_message=str(error),
        original_error=error,
    )


class FigmaOAuthClient:
    """
    Talks to Figma's OAuth and identity endpoints.

    Usage:
        client = FigmaOAuthClient()

        # Step 1: Get authorization URL
        auth_url = client.get_authorization_url(state="random_state")

        # Step 2: Handle callback with authorization code
        tokens = await client.exchange_code(code)

        # Step 3: Get user info
        user_info = await client.get_user_info(tokens.access_token)

        # Step 4: Refresh token when expired
        new_tokens = await client.refresh_token(tokens.refresh_token)
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = settings or get_settings()
        self.client_id = settings.figma_client_id
        self.client_secret = settings.figma_client_secret
        self.redirect_uri = settings.figma_redirect_uri
        self.authorize_url = settings.figma_oauth_url
        self.token_url = settings.figma_token_url
        self.user_url = f"{settings.figma_api_base_url.rstrip('/')}/me"
        self.scope = settings.figma_oauth_scope
        self.timeout = settings.figma_request_timeout
        self._transport = transport

        if not self.client_id or not self.client_secret:
            logger.warning(
                "Figma OAuth not configured. Set FIGMA_CLIENT_ID and "
                "FIGMA_CLIENT_SECRET in environment."
            )

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def get_authorization_url(self, state: str) -> str:
        """
        Generate the Figma OAuth authorization URL.

        Args:
            state: Random string binding the request to its callback

        Returns:
            URL to redirect user to for authorization
        """
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": self.scope,
            "state": state,
            "response_type": "code",
        }
        return f"{self.authorize_url}?{urlencode(params)}"

    async def _post_token(self, data: dict[str, str], action: str) -> dict[str, Any]:
        try:
            async with self._http() as client:
                response = await client.post(self.token_url, data=data)
                response.raise_for_status()
                return response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise _upstream_error(action, e) from e

    async def exchange_code(self, code: str) -> OAuthTokens:
        """
        Exchange authorization code for access and refresh tokens.

        Args:
            code: Authorization code from OAuth callback

        Returns:
            OAuthTokens with access_token and refresh_token

        Raises:
            UpstreamError: If token exchange fails
        """
        token_data = await self._post_token(
            {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": self.redirect_uri,
                "code": code,
                "grant_type": "authorization_code",
            },
            "token exchange",
        )

        try:
            tokens = OAuthTokens(
                access_token=token_data["access_token"],
                refresh_token=token_data.get("refresh_token"),
                expires_in=int(token_data.get("expires_in", 0)),
                issued_at=utc_now(),
            )
        except KeyError as e:
            raise UpstreamError(
                "Figma token response missing access_token",
                upstream_message=str(token_data)[:500],
            ) from e

        logger.info("Successfully exchanged authorization code for tokens")
        return tokens

    async def refresh_token(self, refresh_token: str) -> OAuthTokens:
        """
        Refresh an expired access token.

        Args:
            refresh_token: The refresh token from initial authorization

        Returns:
            New OAuthTokens. The original refresh token is kept when Figma
            does not rotate it.

        Raises:
            UpstreamError: If refresh fails
        """
        token_data = await self._post_token(
            {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
            "token refresh",
        )

        try:
            tokens = OAuthTokens(
                access_token=token_data["access_token"],
                refresh_token=token_data.get("refresh_token") or refresh_token,
                expires_in=int(token_data.get("expires_in", 0)),
                issued_at=utc_now(),
            )
        except KeyError as e:
            raise UpstreamError(
                "Figma refresh response missing access_token",
                upstream_message=str(token_data)[:500],
            ) from e

        logger.info("Successfully refreshed access token")
        return tokens

    async def get_user_info(self, access_token: str) -> FigmaUserInfo:
        """
        Get the authenticated user's profile.

        Args:
            access_token: Valid OAuth access token

        Returns:
            FigmaUserInfo with the user's id, handle and email

        Raises:
            UpstreamError: If request fails
        """
        headers = {"Authorization": f"Bearer {access_token}"}

        try:
            async with self._http() as client:
                response = await client.get(self.user_url, headers=headers)
                response.raise_for_status()
                user_data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise _upstream_error("profile fetch", e) from e

        if not user_data.get("id"):
            raise UpstreamError(
                "Figma profile response missing user id",
                upstream_message=str(user_data)[:500],
            )

        return FigmaUserInfo(
            id=str(user_data["id"]),
            handle=user_data.get("handle"),
            email=user_data.get("email"),
            name=user_data.get("name") or user_data.get("handle"),
            img_url=user_data.get("img_url"),
        )
