"""
Booking assistant chat.

Each message is metered by chat_messages_per_month: the gate rejects at
the limit and the handler counts the message before replying.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from genbook.api.dependencies.gates import require_within_limit
from genbook.api.routes.voice import classify_intent
from genbook.database.session import get_db_session
from genbook.entitlements.keys import UsageMetric
from genbook.entitlements.models import LimitCheck
from genbook.entitlements.usage import increment_usage
from genbook.platform.tenant_context import TenantContext, get_tenant_context

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])

REPLIES = {
    "create_appointment": "Sure, which day and time would you like to book?",
    "cancel_appointment": "Which appointment would you like to cancel?",
    "reschedule_appointment": "Which appointment should be moved, and to when?",
    "list_appointments": "Here are your upcoming appointments.",
    "unknown": "I can book, reschedule, cancel or list appointments.",
}


class ChatMessageRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=2000)


class ChatMessageResponse(BaseModel):
    intent: str
    reply: str
    used: int
    limit: Optional[int] = None


@router.post("/messages", response_model=ChatMessageResponse)
def send_message(
    body: ChatMessageRequest,
    check: LimitCheck = Depends(require_within_limit(UsageMetric.CHAT_MESSAGES_PER_MONTH)),
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db_session),
):
    increment_usage(db, ctx.tenant_id, UsageMetric.CHAT_MESSAGES_PER_MONTH)
    db.commit()

    intent = classify_intent(body.message)
    logger.info("Chat message handled", extra={"tenant_id": ctx.tenant_id, "intent": intent})
    return ChatMessageResponse(
        intent=intent,
        reply=REPLIES[intent],
        used=check.used + 1,
        limit=check.limit,
    )
