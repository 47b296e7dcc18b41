"""
FastAPI dependency injection providers.

Provides the service container and the authenticated plugin session.
"""

import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request

from collator.container import ServiceContainer
from collator.exceptions import AuthenticationError
from collator.models.identity import PluginSession

logger = logging.getLogger(__name__)


def get_container(request: Request) -> ServiceContainer:
    """
    Dependency injection for the service container.

    Raises:
        HTTPException: If the application has not finished starting
    """
    container = getattr(request.app.state, "container", None)
    if container is None:
        logger.error("Service container not initialized")
        raise HTTPException(
            status_code=503,
            detail="Service temporarily unavailable - not initialized",
        )
    return container


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_current_session(
    authorization: Optional[str] = Header(None, description="Bearer session token"),
    container: ServiceContainer = Depends(get_container),
) -> PluginSession:
    """
    Authenticate a request from its bearer session token.

    Valid sessions have their activity timestamp updated.

    Raises:
        AuthenticationError: Missing, unknown or expired token
    """
    token = _bearer_token(authorization)
    if token is None:
        raise AuthenticationError("Missing bearer session token")

    plugin_session = await container.run(container.sessions.validate, token)
    if plugin_session is None:
        raise AuthenticationError("Invalid or expired session")

    await container.run(container.sessions.touch, token)
    return plugin_session
