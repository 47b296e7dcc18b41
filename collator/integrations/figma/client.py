"""
Figma REST API client with retry and error handling.

Every call is made on behalf of a stored identity. Access tokens that are
expired or about to expire are refreshed before the request goes out.
"""

import logging
import uuid
from concurrent.futures import Executor
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

import httpx
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from collator.auth.figma_oauth import OAuthTokens
from collator.auth.identities import IdentityStore
from collator.database import run_blocking
from collator.exceptions import AuthenticationError, NotFoundError
from collator.integrations.figma.adapter import (
    RemoteComment,
    RemoteFile,
    build_comment_payload,
    parse_comment,
    parse_file,
)
from collator.integrations.figma.exceptions import (
    FigmaAPIError,
    FigmaAuthError,
    FigmaNotFoundError,
    FigmaRateLimitError,
    FigmaServerError,
)
from collator.models.base import utc_now

logger = logging.getLogger(__name__)

USER_AGENT = "Comments-Collator/1.0"

TokenRefresher = Callable[[str], Awaitable[OAuthTokens]]


def _is_retryable_error(exception: BaseException) -> bool:
    """Check if an exception should trigger a retry."""
    if isinstance(exception, FigmaAPIError):
        return exception.retryable
    return isinstance(exception, httpx.TransportError)


def _raise_for_status(response: httpx.Response, action: str) -> None:
    """Convert an error response to the matching FigmaAPIError."""
    status = response.status_code
    if status < 400:
        return

    body = response.text[:500]
    kwargs = {"upstream_status": status, "upstream_message": body}

    if status in (401, 403):
        raise FigmaAuthError(f"Figma denied {action} ({status})", **kwargs)
    if status == 404:
        raise FigmaNotFoundError(f"Figma could not find resource for {action}", **kwargs)
    if status == 429:
        raise FigmaRateLimitError(f"Figma rate limit hit during {action}", **kwargs)
    if status >= 500:
        raise FigmaServerError(f"Figma server error during {action} ({status})", **kwargs)
    raise FigmaAPIError(f"Figma API error during {action} ({status})", **kwargs)


class FigmaClient:
    """
    Wrapper around the Figma REST API v1.

    Provides:
    - Per-user authentication with on-demand token refresh
    - Automatic retry with exponential backoff for 429/5xx
    - Consistent error mapping onto UpstreamError subclasses
    """

    def __init__(
        self,
        identities: IdentityStore,
        token_refresher: TokenRefresher,
        base_url: str = "https://api.figma.com/v1",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = utc_now,
        executor: Optional[Executor] = None,
    ):
        """
        Initialize the client.

        Args:
            identities: Store holding each user's Figma credentials
            token_refresher: Exchanges a refresh token and persists the result
            base_url: Figma API base URL
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests inject a mock)
            clock: Time source for expiry checks
            executor: Thread pool for identity lookups
        """
        self._identities = identities
        self._refresh = token_refresher
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._clock = clock
        self._executor = executor

    async def _access_token(self, user_id: Optional[uuid.UUID]) -> str:
        """Return a usable access token, refreshing it first if needed."""
        if user_id is None:
            user = await run_blocking(self._executor, self._identities.get_any_valid)
            if user is None:
                raise AuthenticationError("No authenticated users available")
        else:
            user = await run_blocking(self._executor, self._identities.get, user_id)
            if user is None:
                raise NotFoundError("User not found")

        if not user.access_token:
            raise AuthenticationError("User has no Figma credentials, please log in again")

        if user.needs_refresh(self._clock()):
            if not user.refresh_token:
                raise AuthenticationError("Figma credentials expired, please log in again")
            logger.info(f"Refreshing expired token for Figma user {user.external_user_id}")
            tokens = await self._refresh(user.refresh_token)
            return tokens.access_token

        return user.access_token

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception(_is_retryable_error),
        reraise=True,
    )
    async def _send(
        self,
        method: str,
        path: str,
        access_token: str,
        action: str,
        params: Optional[dict[str, Any]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> Any:
        headers = {
            "Authorization": f"Bearer {access_token}",
            "User-Agent": USER_AGENT,
        }
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
        ) as client:
            response = await client.request(method, path, params=params, json=json, headers=headers)

        _raise_for_status(response, action)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise FigmaAPIError(
                f"Figma returned invalid JSON during {action}",
                upstream_status=response.status_code,
                upstream_message=response.text[:500],
                original_error=e,
            ) from e

    async def _request(
        self,
        method: str,
        path: str,
        user_id: Optional[uuid.UUID],
        action: str,
        **kwargs: Any,
    ) -> Any:
        access_token = await self._access_token(user_id)
        try:
            return await self._send(method, path, access_token, action, **kwargs)
        except httpx.TransportError as e:
            raise FigmaAPIError(
                f"Figma request failed during {action}: {e}",
                upstream_message=str(e),
                original_error=e,
            ) from e

    async def get_file_info(self, file_key: str, user_id: Optional[uuid.UUID] = None) -> RemoteFile:
        """
        Get file metadata.

        Args:
            file_key: Figma file key
            user_id: Acting identity (any identity with a valid token if None)
        """
        data = await self._request(
            "GET", f"/files/{file_key}", user_id, "file fetch", params={"depth": 1}
        )
        return parse_file(file_key, data)

    async def get_node_name(
        self,
        file_key: str,
        node_id: str,
        user_id: Optional[uuid.UUID] = None,
    ) -> Optional[str]:
        """
        Get the display name of a node.

        Returns:
            The node name, or None if Figma does not report the node
        """
        data = await self._request(
            "GET", f"/files/{file_key}/nodes", user_id, "node lookup", params={"ids": node_id}
        )
        node = (data.get("nodes") or {}).get(node_id) or {}
        return (node.get("document") or {}).get("name")

    async def get_file_comments(self, file_key: str, user_id: uuid.UUID) -> list[RemoteComment]:
        """
        Fetch every comment on a file in one call.

        Comments Figma reports without an id are skipped.
        """
        data = await self._request("GET", f"/files/{file_key}/comments", user_id, "comment fetch")

        comments = []
        for payload in data.get("comments") or []:
            try:
                comments.append(parse_comment(payload))
            except ValueError as e:
                logger.warning(f"Skipping malformed comment on file {file_key}: {e}")
        return comments

    async def post_comment(
        self,
        file_key: str,
        user_id: uuid.UUID,
        message: str,
        node_id: Optional[str] = None,
        parent_id: Optional[str] = None,
        x: float = 0.0,
        y: float = 0.0,
    ) -> RemoteComment:
        """Post a comment (or a reply when parent_id is given)."""
        data = await self._request(
            "POST",
            f"/files/{file_key}/comments",
            user_id,
            "comment post",
            json=build_comment_payload(message, node_id, parent_id, x, y),
        )
        comment = parse_comment(data)
        logger.info(f"Posted comment {comment.id} to file {file_key}")
        return comment
