"""
Incoming Figma webhook processing.

Deliveries are authenticated with an HMAC-SHA256 signature over the raw
request body, checked before the body is parsed. Verified events are
recorded in webhook_events and dispatched by event type.
"""

import enum
import hashlib
import hmac
import json
import logging
import uuid
from concurrent.futures import Executor
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy.orm import sessionmaker

from collator.auth.identities import IdentityStore
from collator.database import run_blocking, transaction
from collator.exceptions import AuthenticationError, CollatorError, ValidationError
from collator.integrations.figma.adapter import RemoteComment, parse_comment, parse_timestamp
from collator.integrations.figma.client import FigmaClient
from collator.models.base import utc_now
from collator.models.webhooks import WebhookEvent, WebhookRegistration
from collator.services.comments import CommentRepository
from collator.services.files import FileRepository

logger = logging.getLogger(__name__)


class WebhookEventType(str, enum.Enum):
    FILE_COMMENT = "FILE_COMMENT"
    FILE_UPDATE = "FILE_UPDATE"
    FILE_VERSION_UPDATE = "FILE_VERSION_UPDATE"
    FILE_DELETE = "FILE_DELETE"
    LIBRARY_PUBLISH = "LIBRARY_PUBLISH"

    @classmethod
    def parse(cls, value: Any) -> Optional["WebhookEventType"]:
        try:
            return cls(value)
        except ValueError:
            return None


REGISTRABLE_EVENT_TYPES = (
    WebhookEventType.FILE_COMMENT,
    WebhookEventType.FILE_UPDATE,
    WebhookEventType.FILE_DELETE,
)


def generate_signature(payload: bytes, secret: str) -> str:
    """
    Generate HMAC-SHA256 signature for a webhook body.

    Args:
        payload: Raw request body
        secret: Webhook secret

    Returns:
        Hex-encoded signature
    """
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_signature(payload: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """Check a signature in constant time. Missing signature or secret fails."""
    if not signature or not secret:
        return False
    expected = generate_signature(payload, secret).encode("ascii")
    return hmac.compare_digest(expected, signature.strip().lower().encode("utf-8"))


def _comment_text(fragments: Any) -> str:
    """Join the text fragments Figma sends for a comment body."""
    if isinstance(fragments, str):
        return fragments
    if isinstance(fragments, list):
        return "".join(
            str(f.get("text", "")) for f in fragments if isinstance(f, dict)
        )
    return ""


def comment_from_event(event: dict[str, Any]) -> Optional[RemoteComment]:
    """
    Extract the comment carried by a FILE_COMMENT event.

    Accepts both a full comment object under "comment" and the flattened
    form (comment_id plus text fragments) Figma's v2 webhooks send.
    """
    triggered_by = event.get("triggered_by") or {}
    comment = event.get("comment")

    if isinstance(comment, dict):
        payload = dict(comment)
    elif event.get("comment_id"):
        payload = {
            "id": event["comment_id"],
            "message": _comment_text(comment),
            "parent_id": event.get("parent_id"),
            "created_at": event.get("created_at") or event.get("timestamp"),
            "resolved_at": event.get("resolved_at"),
            "client_meta": event.get("client_meta"),
        }
    else:
        return None

    payload.setdefault("user", triggered_by)
    try:
        return parse_comment(payload)
    except ValueError:
        return None


class WebhookProcessor:
    """
    Verifies and applies Figma webhook deliveries.

    Handlers are looked up by WebhookEventType; types without a handler
    are logged and acknowledged.
    """

    def __init__(
        self,
        secret: Optional[str],
        session_factory: sessionmaker,
        comments: CommentRepository,
        files: FileRepository,
        identities: IdentityStore,
        figma: FigmaClient,
        clock: Callable[[], datetime] = utc_now,
        executor: Optional[Executor] = None,
    ):
        self._secret = secret
        self._session_factory = session_factory
        self.comments = comments
        self.files = files
        self.identities = identities
        self.figma = figma
        self._clock = clock
        self._executor = executor

        self._handlers: dict[WebhookEventType, Callable[[dict[str, Any]], Awaitable[None]]] = {
            WebhookEventType.FILE_COMMENT: self._handle_file_comment,
            WebhookEventType.FILE_UPDATE: self._handle_file_update,
            WebhookEventType.FILE_VERSION_UPDATE: self._handle_file_update,
            WebhookEventType.FILE_DELETE: self._handle_file_delete,
        }

    def verify_signature(self, raw_body: bytes, signature: Optional[str]) -> bool:
        return verify_signature(raw_body, signature, self._secret)

    def register(
        self,
        file_key: str,
        event_type: WebhookEventType,
        endpoint: str,
        registered_by_user_id: Optional[uuid.UUID] = None,
    ) -> WebhookRegistration:
        """
        Record a request to receive events of one type for a file.

        Figma is not contacted; the row keeps status "registered" until the
        subscription is set up with Figma.

        Raises:
            ValidationError: If the event type cannot be subscribed to
        """
        if event_type not in REGISTRABLE_EVENT_TYPES:
            raise ValidationError(f"Cannot register for {event_type.value} events")

        with transaction(self._session_factory) as session:
            registration = WebhookRegistration(
                file_key=file_key,
                event_type=event_type.value,
                endpoint=endpoint,
                status="registered",
                registered_by_user_id=registered_by_user_id,
            )
            session.add(registration)
            session.flush()

        logger.info(f"Webhook registration recorded: {event_type.value} for {file_key} -> {endpoint}")
        return registration

    async def process(self, raw_body: bytes, signature: Optional[str]) -> dict[str, Any]:
        """
        Authenticate, record and apply one delivery.

        Args:
            raw_body: Request body exactly as received
            signature: Value of the X-Figma-Webhook-Signature header

        Returns:
            Acknowledgement with the event type and whether it was handled

        Raises:
            AuthenticationError: Signature missing or wrong (nothing parsed)
            ValidationError: Body is not a JSON object
        """
        if not self.verify_signature(raw_body, signature):
            logger.warning("Rejected webhook with missing or invalid signature")
            raise AuthenticationError("Invalid webhook signature")

        try:
            event = json.loads(raw_body)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ValidationError("Webhook body is not valid JSON", original_error=e) from e
        if not isinstance(event, dict):
            raise ValidationError("Webhook body must be a JSON object")

        return await self.dispatch(event)

    async def dispatch(self, event: dict[str, Any]) -> dict[str, Any]:
        """Record an already-authenticated event and run its handler."""
        raw_type = event.get("event_type")
        file_key = event.get("file_key")
        logger.info(f"Received Figma webhook: type={raw_type}, file={file_key}")

        audit_id = await run_blocking(self._executor, self._record, event)

        event_type = WebhookEventType.parse(raw_type)
        handler = self._handlers.get(event_type) if event_type else None
        if handler is None:
            logger.info(f"No handler for webhook type {raw_type}, skipping")
        else:
            await handler(event)

        await run_blocking(self._executor, self._mark_processed, audit_id)

        return {"event_type": raw_type, "handled": handler is not None}

    def _record(self, event: dict[str, Any]) -> uuid.UUID:
        with transaction(self._session_factory) as session:
            audit = WebhookEvent(
                event_type=str(event.get("event_type") or "UNKNOWN"),
                file_key=event.get("file_key"),
                payload=event,
            )
            session.add(audit)
            session.flush()
            return audit.id

    def _mark_processed(self, audit_id: uuid.UUID) -> None:
        with transaction(self._session_factory) as session:
            audit = session.get(WebhookEvent, audit_id)
            audit.processed_at = self._clock()

    # =========================================================================
    # Handlers
    # =========================================================================

    async def _handle_file_comment(self, event: dict[str, Any]) -> None:
        file_key = event.get("file_key")
        if not file_key:
            raise ValidationError("FILE_COMMENT event without file_key")

        remote = comment_from_event(event)
        if remote is None:
            logger.warning(f"FILE_COMMENT event for {file_key} carried no usable comment")
            return

        action = str(event.get("action") or "").upper()
        if action == "DELETE":
            if await run_blocking(self._executor, self.comments.delete, remote.id, file_key=file_key):
                logger.info(f"Deleted comment {remote.id} from file {file_key}")
            else:
                logger.info(f"Comment {remote.id} not cached for file {file_key}, nothing to delete")
            return

        await self.files.lookup(file_key, self.figma)

        node_name = None
        if remote.node_id:
            try:
                node_name = await self.figma.get_node_name(file_key, remote.node_id)
            except CollatorError as e:
                logger.warning(f"Node name lookup failed for {remote.node_id}: {e.message}")

        resolver_id = None
        if action == "RESOLVE":
            remote.resolved_at = remote.resolved_at or parse_timestamp(event.get("timestamp")) or self._clock()
            external_id = (event.get("triggered_by") or {}).get("id")
            if external_id:
                resolver = await run_blocking(
                    self._executor, self.identities.get_by_external_id, str(external_id)
                )
                resolver_id = resolver.id if resolver else None

        await run_blocking(
            self._executor,
            self.comments.upsert,
            remote,
            file_key,
            node_name=node_name,
            resolved_by_user_id=resolver_id,
        )
        logger.info(f"Stored comment {remote.id} for file {file_key}")

    async def _handle_file_update(self, event: dict[str, Any]) -> None:
        file_key = event.get("file_key")
        if not file_key:
            return
        await run_blocking(self._executor, self.files.mark_synced, file_key)
        handle = (event.get("triggered_by") or {}).get("handle") or "unknown"
        logger.info(f"File {file_key} updated by {handle}")

    async def _handle_file_delete(self, event: dict[str, Any]) -> None:
        file_key = event.get("file_key")
        if not file_key:
            return
        await run_blocking(self._executor, self.files.delete, file_key)
