"""
OAuth login flow for the plugin.

Each login attempt moves through:

    IDLE -> AWAITING_CALLBACK -> EXCHANGING -> ESTABLISHED

and ends in REJECTED on any failure after IDLE. The identity and its
session are written in one transaction, only after both the code
exchange and the profile fetch succeeded.
"""

import enum
import logging
from concurrent.futures import Executor
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import sessionmaker

from collator.auth.figma_oauth import FigmaOAuthClient, FigmaUserInfo, OAuthTokens
from collator.auth.identities import IdentityStore
from collator.auth.sessions import SessionStore
from collator.auth.state_store import TokenStore
from collator.database import run_blocking, transaction
from collator.exceptions import UpstreamError
from collator.models.identity import UserIdentity

logger = logging.getLogger(__name__)


class FlowState(str, enum.Enum):
    IDLE = "idle"
    AWAITING_CALLBACK = "awaiting_callback"
    EXCHANGING = "exchanging"
    ESTABLISHED = "established"
    REJECTED = "rejected"


class RejectionReason(str, enum.Enum):
    MISSING_PARAMETERS = "missing_parameters"
    ACCESS_DENIED = "access_denied"
    INVALID_OR_EXPIRED_STATE = "invalid_or_expired_state"
    EXCHANGE_FAILED = "exchange_failed"


@dataclass
class AuthorizationRequest:
    """Where to send the user to start a login."""

    url: str
    state: str
    flow_state: FlowState = FlowState.AWAITING_CALLBACK


@dataclass
class CallbackOutcome:
    """Result of handling the provider redirect."""

    flow_state: FlowState
    session_token: Optional[str] = None
    user: Optional[UserIdentity] = None
    scoped_file_key: Optional[str] = None
    reason: Optional[RejectionReason] = None
    detail: Optional[str] = None
    upstream_status: Optional[int] = None

    @property
    def established(self) -> bool:
        return self.flow_state == FlowState.ESTABLISHED

    @classmethod
    def rejected(
        cls,
        reason: RejectionReason,
        detail: Optional[str] = None,
        upstream_status: Optional[int] = None,
    ) -> "CallbackOutcome":
        return cls(
            flow_state=FlowState.REJECTED,
            reason=reason,
            detail=detail,
            upstream_status=upstream_status,
        )


class OAuthFlow:
    """
    Drives the Figma authorization code flow.

    Usage:
        request = flow.begin_authorization(file_key_hint="abc")
        # redirect the user to request.url
        outcome = await flow.handle_callback(code, state)
        if outcome.established:
            token = outcome.session_token
    """

    def __init__(
        self,
        oauth_client: FigmaOAuthClient,
        token_store: TokenStore,
        identities: IdentityStore,
        sessions: SessionStore,
        session_factory: sessionmaker,
        state_ttl_seconds: Optional[int] = None,
        executor: Optional[Executor] = None,
    ):
        self.oauth_client = oauth_client
        self.token_store = token_store
        self.identities = identities
        self.sessions = sessions
        self._session_factory = session_factory
        self.state_ttl_seconds = state_ttl_seconds
        self._executor = executor

    def begin_authorization(self, file_key_hint: Optional[str] = None) -> AuthorizationRequest:
        """
        Start a login.

        Args:
            file_key_hint: File the plugin is open on; the resulting session
                will be scoped to it

        Returns:
            AuthorizationRequest with the provider URL and the state token
        """
        state = self.token_store.issue(self.state_ttl_seconds, file_key_hint=file_key_hint)
        url = self.oauth_client.get_authorization_url(state)
        logger.info(f"OAuth initiated: state={state[:8]}..., file={file_key_hint}")
        return AuthorizationRequest(url=url, state=state)

    async def handle_callback(
        self,
        code: Optional[str],
        state: Optional[str],
        error: Optional[str] = None,
    ) -> CallbackOutcome:
        """
        Complete a login from the provider redirect.

        Args:
            code: Authorization code
            state: State token issued by begin_authorization
            error: Error reported by the provider (e.g. consent denied)

        Returns:
            CallbackOutcome, ESTABLISHED with a session token or REJECTED
            with a reason
        """
        if error:
            if state:
                await run_blocking(self._executor, self.token_store.validate_and_consume, state)
            logger.warning(f"OAuth provider returned error: {error}")
            return CallbackOutcome.rejected(RejectionReason.ACCESS_DENIED, detail=error)

        if not code or not state:
            logger.warning("OAuth callback missing code or state parameter")
            return CallbackOutcome.rejected(
                RejectionReason.MISSING_PARAMETERS,
                detail="Both code and state are required",
            )

        context = await run_blocking(self._executor, self.token_store.validate_and_consume, state)
        if context is None:
            return CallbackOutcome.rejected(
                RejectionReason.INVALID_OR_EXPIRED_STATE,
                detail="Invalid or expired state token. Please restart the login.",
            )

        logger.info(f"OAuth state {state[:8]}... accepted, exchanging code")

        try:
            tokens = await self.oauth_client.exchange_code(code)
            profile = await self.oauth_client.get_user_info(tokens.access_token)
        except UpstreamError as e:
            logger.error(
                f"OAuth exchange failed: {e.message} "
                f"(status={e.upstream_status}, body={e.upstream_message})"
            )
            return CallbackOutcome.rejected(
                RejectionReason.EXCHANGE_FAILED,
                detail=e.upstream_message or e.message,
                upstream_status=e.upstream_status,
            )

        user, session_token = await run_blocking(
            self._executor, self._establish, profile, tokens, context.file_key_hint
        )

        logger.info(f"User authenticated: {profile.handle} ({profile.email})")

        return CallbackOutcome(
            flow_state=FlowState.ESTABLISHED,
            session_token=session_token,
            user=user,
            scoped_file_key=context.file_key_hint,
        )

    def _establish(
        self,
        profile: FigmaUserInfo,
        tokens: OAuthTokens,
        file_key_hint: Optional[str],
    ) -> tuple[UserIdentity, str]:
        """Store the identity and mint its session in one transaction."""
        with transaction(self._session_factory) as db:
            user = self.identities.upsert(profile, tokens, db=db)
            session_token = self.sessions.create(user.id, file_key_hint, db=db)
        return user, session_token

    async def refresh(self, refresh_token: str) -> OAuthTokens:
        """
        Exchange a refresh token and store the new credentials.

        The identity holding refresh_token gets the new token fields as a
        whole. Concurrent refreshes are not serialized; the last write wins.

        Raises:
            UpstreamError: If Figma rejects the refresh
        """
        tokens = await self.oauth_client.refresh_token(refresh_token)
        await run_blocking(
            self._executor, self.identities.update_tokens_by_refresh_token, refresh_token, tokens
        )
        return tokens
