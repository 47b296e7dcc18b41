"""
Custom exceptions for Figma API operations.

Provides structured error handling with retryable flags.
"""

from collator.exceptions import UpstreamError


class FigmaAPIError(UpstreamError):
    """Base exception for Figma API operations."""

    retryable: bool = False


class FigmaAuthError(FigmaAPIError):
    """
    Authentication or authorization failure.

    Causes:
    - Invalid, revoked or expired access token
    - Missing OAuth scope for the requested endpoint
    - No access to the file
    """

    retryable = False


class FigmaNotFoundError(FigmaAPIError):
    """
    File, node or comment not found.
    """

    retryable = False


class FigmaRateLimitError(FigmaAPIError):
    """
    Rate limit hit (429 response).

    Retryable after exponential backoff.
    """

    retryable = True


class FigmaServerError(FigmaAPIError):
    """
    Figma returned a 5xx response.

    Retryable after exponential backoff.
    """

    retryable = True
