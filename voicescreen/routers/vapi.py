"""
VAPI Webhook Router - voice provider events for screening calls.

Accepts both VAPI server messages (wrapped in a ``{"message": {...}}``
envelope) and the flat screening webhook shape. Every event is handed to
WebhookIngestionService; the response is always a success so the provider
does not retry.
"""
import hmac
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from voicescreen import config
from voicescreen.dependencies import get_webhook_ingestion
from voicescreen.models import ScreeningWebhookEvent, VapiServerMessage
from voicescreen.services import WebhookIngestionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/vapi", tags=["VAPI Webhooks"])


def verify_vapi_signature(x_vapi_secret: Optional[str]) -> bool:
    """
    Compare the X-Vapi-Secret header with VAPI_WEBHOOK_SECRET.

    Without a configured secret every request is accepted.
    """
    expected = config.VAPI_WEBHOOK_SECRET
    if not expected:
        logger.warning("VAPI_WEBHOOK_SECRET not set, accepting unsigned webhook")
        return True
    if not x_vapi_secret:
        logger.warning("VAPI webhook without X-Vapi-Secret header")
        return False
    if not hmac.compare_digest(x_vapi_secret.encode(), expected.encode()):
        logger.warning("VAPI webhook secret mismatch")
        return False
    return True


def parse_webhook_payload(payload_dict: dict) -> ScreeningWebhookEvent:
    """Normalize either webhook shape into a ScreeningWebhookEvent."""
    message = payload_dict.get("message")
    if isinstance(message, dict):
        return VapiServerMessage(**message).to_webhook_event()
    return ScreeningWebhookEvent(**payload_dict)


@router.post("/webhook")
async def vapi_webhook(
    request: Request,
    x_vapi_secret: Optional[str] = Header(None, alias="X-Vapi-Secret"),
    ingestion: WebhookIngestionService = Depends(get_webhook_ingestion),
):
    """
    Screening events from VAPI.

    Events that matter:
    - status-update: call state changes (in-progress, ended)
    - end-of-call-report: final transcript, summary and recording
    - transcript / speech-update: live call activity
    """
    if not verify_vapi_signature(x_vapi_secret):
        raise HTTPException(status_code=401, detail="Invalid webhook secret")

    try:
        event = parse_webhook_payload(json.loads(await request.body()))
    except Exception as e:
        logger.error(f"Ignoring VAPI webhook that could not be parsed: {e}")
        return {"success": True, "message": "Unparseable payload ignored"}

    logger.info(f"VAPI webhook received: type={event.type} call={event.callId}")

    try:
        result = await ingestion.ingest(event)
    except Exception as e:
        logger.error(f"Error processing VAPI webhook {event.type}: {e}", exc_info=True)
        return {"success": True, "message": "Event acknowledged"}

    return result.model_dump()
