"""
Razorpay webhook handler for subscription events.

SECURITY:
- Signature is verified over the raw body BEFORE the body is parsed
- No session authentication (webhooks come from Razorpay, not users)
- tenant_id comes from the subscription's notes or its existing row, never
  from anything the caller can choose without the webhook secret
"""

import json
import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from genbook.config.settings import get_settings
from genbook.database.session import get_db_session
from genbook.entitlements.loader import get_plan_catalog
from genbook.integrations.razorpay.client import verify_webhook_signature
from genbook.platform.errors import (
    ServiceUnavailableError,
    ValidationError,
    WebhookSignatureError,
)
from genbook.services.billing_service import WebhookProcessor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

SIGNATURE_HEADER = "X-Razorpay-Signature"


async def verify_webhook(request: Request) -> bytes:
    """
    Verify the Razorpay signature and return the raw body.

    Raises:
        ValidationError: signature header missing (400)
        ServiceUnavailableError: webhook secret not configured (503)
        WebhookSignatureError: signature mismatch (401)
    """
    signature = request.headers.get(SIGNATURE_HEADER)
    if not signature:
        raise ValidationError("Missing signature")

    secret = get_settings().razorpay_webhook_secret
    if not secret:
        logger.error("RAZORPAY_WEBHOOK_SECRET is not configured")
        raise ServiceUnavailableError("Webhook secret not configured")

    body = await request.body()
    if not verify_webhook_signature(body, signature, secret):
        logger.warning("Invalid webhook signature", extra={"path": request.url.path})
        raise WebhookSignatureError()
    return body


@router.post("/razorpay")
async def handle_razorpay_webhook(
    request: Request,
    db: Session = Depends(get_db_session),
):
    """
    Apply a subscription lifecycle event.

    Unhandled event types are acknowledged with 200 so Razorpay stops
    retrying them.
    """
    body = await verify_webhook(request)

    try:
        event = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.error("Invalid webhook JSON payload")
        raise ValidationError("Invalid JSON payload")
    if not isinstance(event, dict) or not event.get("event"):
        raise ValidationError("Invalid payload")

    logger.info("Received Razorpay webhook", extra={"event": event.get("event")})

    result = WebhookProcessor(db, get_plan_catalog()).process_event(event)
    response = {"received": True, "handled": result.handled, "event": result.event}
    if result.status:
        response["status"] = result.status
    if result.reason:
        response["reason"] = result.reason
    return response
