"""
Figma REST API integration.
"""

from collator.integrations.figma.adapter import RemoteComment, RemoteFile, parse_comment
from collator.integrations.figma.client import FigmaClient
from collator.integrations.figma.exceptions import (
    FigmaAPIError,
    FigmaAuthError,
    FigmaNotFoundError,
    FigmaRateLimitError,
    FigmaServerError,
)

__all__ = [
    "FigmaClient",
    "RemoteComment",
    "RemoteFile",
    "parse_comment",
    "FigmaAPIError",
    "FigmaAuthError",
    "FigmaNotFoundError",
    "FigmaRateLimitError",
    "FigmaServerError",
]
