"""
Webhook API routes for Figma event notifications.

Figma signs each delivery with HMAC-SHA256 over the raw body:
- Header: X-Figma-Webhook-Signature
- Signature: hex(HMAC-SHA256(body, WEBHOOK_SECRET))
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from collator.api.dependencies import get_container, get_current_session
from collator.api.models import RegisterWebhookRequest, WebhookRegistrationResponse
from collator.container import ServiceContainer
from collator.models.files import PermissionLevel
from collator.models.identity import PluginSession
from collator.services.webhooks import WebhookEventType

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/figma")
async def receive_figma_webhook(
    request: Request,
    x_figma_webhook_signature: Optional[str] = Header(None),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    """
    Receive a Figma webhook delivery.

    The signature is checked against the raw body before anything is
    parsed or stored; a bad signature is a 401.
    """
    raw_body = await request.body()
    result = await container.webhooks.process(raw_body, x_figma_webhook_signature)
    return {"success": True, "message": "Webhook processed successfully", **result}


@router.post("/register", response_model=WebhookRegistrationResponse)
async def register_webhook(
    payload: RegisterWebhookRequest,
    plugin_session: PluginSession = Depends(get_current_session),
    container: ServiceContainer = Depends(get_container),
) -> WebhookRegistrationResponse:
    """
    Record a Figma webhook subscription for a file. Admin only.

    The request is stored; the subscription itself is set up with Figma
    out of band.
    """
    await container.run(
        container.permissions.require, plugin_session.user_id, payload.file_key, PermissionLevel.ADMIN
    )
    registration = await container.run(
        container.webhooks.register,
        payload.file_key,
        WebhookEventType(payload.event_type),
        payload.endpoint,
        registered_by_user_id=plugin_session.user_id,
    )
    return WebhookRegistrationResponse(
        id=str(registration.id),
        file_key=registration.file_key,
        event_type=registration.event_type,
        endpoint=registration.endpoint,
        status=registration.status,
    )


@router.post("/test")
async def test_webhook(
    event: dict,
    container: ServiceContainer = Depends(get_container),
) -> dict:
    """
    Apply an unsigned event. Development only.

    Lets plugin developers replay Figma payloads without a secret.
    """
    if not container.settings.is_development:
        raise HTTPException(status_code=404, detail="Not Found")

    logger.info(f"Test webhook received: {event.get('event_type')}")
    result = await container.webhooks.dispatch(event)
    return {"success": True, "message": "Test webhook processed", **result}


@router.get("/health")
async def webhook_health() -> dict:
    return {
        "status": "healthy",
        "endpoint": "/webhooks/figma",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
