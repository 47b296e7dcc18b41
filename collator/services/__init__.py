"""
Services for Comments Collator.

Provides the local comment and file cache, permission bookkeeping,
comment synchronization with Figma and webhook processing.
"""

from collator.services.comments import CommentRepository
from collator.services.files import FileRepository
from collator.services.permissions import PermissionService
from collator.services.sync import CommentSyncEngine, SyncResult
from collator.services.webhooks import (
    WebhookEventType,
    WebhookProcessor,
    generate_signature,
    verify_signature,
)

__all__ = [
    "CommentRepository",
    "FileRepository",
    "PermissionService",
    "CommentSyncEngine",
    "SyncResult",
    "WebhookEventType",
    "WebhookProcessor",
    "generate_signature",
    "verify_signature",
]
