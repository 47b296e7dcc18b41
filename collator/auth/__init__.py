"""
Authentication module for Comments Collator.

Provides the Figma OAuth login flow, the single-use state store that
protects it, and the identity and plugin session stores it populates.
"""

from collator.auth.figma_oauth import (
    FigmaOAuthClient,
    FigmaUserInfo,
    OAuthTokens,
)
from collator.auth.flow import (
    AuthorizationRequest,
    CallbackOutcome,
    FlowState,
    OAuthFlow,
    RejectionReason,
)
from collator.auth.identities import IdentityStore
from collator.auth.sessions import SessionStore
from collator.auth.state_store import (
    MemoryStateBackend,
    SqlStateBackend,
    StateContext,
    TokenStore,
)

__all__ = [
    # OAuth provider
    "FigmaOAuthClient",
    "FigmaUserInfo",
    "OAuthTokens",
    # Flow
    "AuthorizationRequest",
    "CallbackOutcome",
    "FlowState",
    "OAuthFlow",
    "RejectionReason",
    # Stores
    "IdentityStore",
    "SessionStore",
    "MemoryStateBackend",
    "SqlStateBackend",
    "StateContext",
    "TokenStore",
]
