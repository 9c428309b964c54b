"""
Terra Webhook Router

Receives Terra aggregator deliveries (auth events and body/daily/sleep/
nutrition/activity data).

Response contract: 400 on signature failure, 500 on an unexpected error
(Terra redelivers), and 200 {"success": true} for every other outcome,
including unknown users and payloads with nothing usable.
"""

from typing import Optional
import hashlib
import json
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from core.cache import get_handled_delivery, remember_delivery
from core.config import settings
from core.database import get_db
from core.exceptions import WebhookSignatureError
from services import webhook_journal
from services.webhook_processing import process_terra_payload
from services.webhook_signature import SignatureCheck, verify_terra_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/webhooks/terra", tags=["terra-webhook"])


@router.get("")
def terra_webhook_status():
    """Liveness check for the webhook URL configured in the Terra dashboard."""
    return {"success": True, "message": "Terra webhook endpoint is active"}


async def verified_terra_body(
    request: Request,
    terra_signature: Optional[str] = Header(None, alias="terra-signature"),
) -> bytes:
    """
    Raw request body, accepted only with a valid Terra signature.

    Declared ahead of the database dependency so forged deliveries are
    rejected before a session is opened.
    """
    body_bytes = await request.body()

    check = verify_terra_signature(body_bytes, terra_signature, settings.TERRA_SIGNING_SECRET)
    if not check.ok:
        raise WebhookSignatureError(
            detail="Missing signature" if check == SignatureCheck.MISSING_HEADER else "Invalid signature",
            reason=check.value,
        )
    return body_bytes


@router.post("")
def handle_terra_webhook(
    body_bytes: bytes = Depends(verified_terra_body),
    db: Session = Depends(get_db),
):
    try:
        payload = json.loads(body_bytes)
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("Terra webhook body is not valid JSON; acknowledged")
        return {"success": True, "status": "ignored", "message": "invalid JSON"}

    if not isinstance(payload, dict):
        logger.warning("Terra webhook body is not a JSON object; acknowledged")
        return {"success": True, "status": "ignored", "message": "unexpected payload"}

    delivery_id = hashlib.sha256(body_bytes).hexdigest()
    handled = get_handled_delivery("TERRA", delivery_id)
    if handled is not None:
        logger.info(f"Terra delivery {delivery_id[:12]} already handled; replaying response")
        return handled

    user = payload.get("user") if isinstance(payload.get("user"), dict) else {}
    event = webhook_journal.record_event(
        db,
        "TERRA",
        payload,
        event_type=payload.get("type"),
        external_user_id=user.get("user_id"),
        delivery_id=delivery_id,
    )
    db.commit()

    try:
        summary = process_terra_payload(db, payload)
        webhook_journal.mark_processed(db, event, summary.status, summary.written)
        db.commit()
    except HTTPException:
        raise
    except Exception as e:
        db.rollback()
        logger.error(
            f"Error processing Terra webhook: {e}",
            exc_info=True,
            extra={"extra_fields": {"event_type": payload.get("type"), "webhook_event_id": str(event.id)}},
        )
        webhook_journal.mark_failed(db, event, f"{type(e).__name__}: {e}")
        db.commit()
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "error": "Internal error processing webhook"},
        )

    response = {"success": True, **summary.to_dict()}
    remember_delivery("TERRA", delivery_id, response)
    return response
