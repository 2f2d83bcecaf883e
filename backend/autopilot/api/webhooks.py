"""Processor webhook receiver."""
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from typing import Optional

from autopilot.api.deps import get_service
from autopilot.config import get_settings
from autopilot.services.automation import DisputeAutomationService, parse_event_type
from autopilot.services.processor import WebhookSignatureError, construct_event

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="stripe-signature"),
    service: DisputeAutomationService = Depends(get_service),
):
    """Verify the delivery, then reconcile dispute lifecycle events."""
    settings = get_settings()
    payload = await request.body()
    try:
        event = construct_event(
            payload,
            stripe_signature,
            settings.stripe_webhook_secret,
            tolerance_seconds=settings.webhook_tolerance_seconds,
        )
    except WebhookSignatureError as exc:
        raise HTTPException(status_code=400, detail=f"Webhook Error: {exc}")

    event_type = str(event.get("type") or "")
    if parse_event_type(event_type) is None:
        return {"received": True, "handled": False}

    data = event.get("data") if isinstance(event.get("data"), dict) else {}
    dispute_object = data.get("object") if isinstance(data.get("object"), dict) else {}
    try:
        record = await service.handle_event(event_type, dispute_object, event.get("account"))
    except Exception:
        logger.exception("Webhook handler error for event %s", event.get("id"))
        raise HTTPException(status_code=500, detail="internal_error")
    return {"received": True, "handled": record is not None}
