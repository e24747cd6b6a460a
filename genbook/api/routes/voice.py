"""
Voice command intake.

Requires the voice_commands feature. Transcripts are classified into a
booking intent by keyword; execution of the intent is left to the caller.
"""

import logging
import re

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from genbook.api.dependencies.gates import require_entitlement
from genbook.entitlements.keys import FeatureKey
from genbook.platform.tenant_context import TenantContext, get_tenant_context

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/voice", tags=["voice"])

# First match wins
INTENT_PATTERNS = (
    ("cancel_appointment", re.compile(r"\b(cancel|delete|remove)\b")),
    ("reschedule_appointment", re.compile(r"\b(reschedule|move|postpone)\b")),
    ("create_appointment", re.compile(r"\b(book|schedule|add|create)\b")),
    ("list_appointments", re.compile(r"\b(list|show|what|upcoming)\b")),
)


class VoiceCommandRequest(BaseModel):
    transcript: str = Field(..., min_length=1, max_length=2000)


class VoiceCommandResponse(BaseModel):
    intent: str
    transcript: str


def classify_intent(transcript: str) -> str:
    text = transcript.lower()
    for intent, pattern in INTENT_PATTERNS:
        if pattern.search(text):
            return intent
    return "unknown"


@router.post(
    "/commands",
    response_model=VoiceCommandResponse,
    dependencies=[Depends(require_entitlement(FeatureKey.VOICE_COMMANDS))],
)
def submit_voice_command(
    body: VoiceCommandRequest,
    ctx: TenantContext = Depends(get_tenant_context),
):
    intent = classify_intent(body.transcript)
    logger.info("Voice command classified", extra={"tenant_id": ctx.tenant_id, "intent": intent})
    return VoiceCommandResponse(intent=intent, transcript=body.transcript)
