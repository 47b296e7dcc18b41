"""
Exception hierarchy for Comments Collator.

Every error carries the HTTP status it surfaces as and a retryable flag,
so the API layer can render them uniformly.
"""

from typing import Optional


class CollatorError(Exception):
    """Base exception for all application errors."""

    status_code: int = 500
    error_type: str = "internal_error"
    retryable: bool = False

    def __init__(self, message: str, original_error: Exception | None = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class AuthenticationError(CollatorError):
    """
    Missing, invalid or expired credential.

    Covers bearer session tokens, OAuth state tokens and webhook
    signatures. Never retried by the system itself.
    """

    status_code = 401
    error_type = "authentication_error"


class AuthorizationError(CollatorError):
    """Caller is authenticated but lacks the required permission level."""

    status_code = 403
    error_type = "authorization_error"


class ValidationError(CollatorError):
    """Malformed request input, rejected before any side effect."""

    status_code = 400
    error_type = "validation_error"


class NotFoundError(CollatorError):
    """Referenced file, comment or user does not exist."""

    status_code = 404
    error_type = "not_found"


class UpstreamError(CollatorError):
    """
    Third-party API failure.

    Raised during token exchange, profile fetch or comment fetch. Carries
    the upstream status and message when available.
    """

    status_code = 502
    error_type = "upstream_error"
    retryable = True

    def __init__(
        self,
        message: str,
        upstream_status: Optional[int] = None,
        upstream_message: Optional[str] = None,
        original_error: Exception | None = None,
    ):
        super().__init__(message, original_error=original_error)
        self.upstream_status = upstream_status
        self.upstream_message = upstream_message
