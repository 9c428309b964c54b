"""
Whoop Webhook Router

Receives Whoop change notifications (recovery/sleep/workout/cycle .updated),
fetches the changed resource and ingests it.

Response contract: 200 {"ok": true} for every outcome except an unexpected
error (500) or, when WHOOP_CLIENT_SECRET is configured, a missing or invalid
signature (401).
"""

from typing import Optional
import hashlib
import json
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from core.cache import get_handled_delivery, remember_delivery
from core.config import settings
from core.database import get_db
from core.exceptions import WebhookUnauthorizedError
from services import webhook_journal
from services.webhook_processing import process_whoop_event
from services.webhook_signature import SignatureCheck, verify_whoop_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/webhooks/whoop", tags=["whoop-webhook"])


@router.get("")
def whoop_webhook_status(challenge: Optional[str] = Query(None)):
    """Echo a verification challenge, or report that the endpoint is live."""
    if challenge:
        return {"challenge": challenge}
    return {"ok": True, "message": "Whoop webhook endpoint is active"}


async def verified_whoop_body(
    request: Request,
    x_whoop_signature: Optional[str] = Header(None, alias="X-WHOOP-Signature"),
    x_whoop_signature_timestamp: Optional[str] = Header(None, alias="X-WHOOP-Signature-Timestamp"),
) -> bytes:
    """Raw request body; signature enforced only when a client secret is configured."""
    body_bytes = await request.body()

    check = verify_whoop_signature(
        body_bytes,
        x_whoop_signature,
        x_whoop_signature_timestamp,
        settings.WHOOP_CLIENT_SECRET,
    )
    if check == SignatureCheck.NOT_CONFIGURED:
        logger.warning("WHOOP_CLIENT_SECRET not set; accepting unsigned Whoop webhook")
    elif not check.ok:
        raise WebhookUnauthorizedError(
            detail="Missing signature" if check == SignatureCheck.MISSING_HEADER else "Invalid signature"
        )
    return body_bytes


@router.post("")
def handle_whoop_webhook(
    body_bytes: bytes = Depends(verified_whoop_body),
    db: Session = Depends(get_db),
):
    try:
        event = json.loads(body_bytes)
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("Whoop webhook body is not valid JSON; acknowledged")
        return {"ok": True, "status": "ignored", "message": "invalid JSON"}

    if not isinstance(event, dict):
        logger.warning("Whoop webhook body is not a JSON object; acknowledged")
        return {"ok": True, "status": "ignored", "message": "unexpected payload"}

    logger.info(f"Whoop webhook event: type={event.get('type')}, user_id={event.get('user_id')}")

    delivery_id = hashlib.sha256(body_bytes).hexdigest()
    handled = get_handled_delivery("WHOOP", delivery_id)
    if handled is not None:
        logger.info(f"Whoop delivery {delivery_id[:12]} already handled; replaying response")
        return handled

    journal_entry = webhook_journal.record_event(
        db,
        "WHOOP",
        event,
        event_type=event.get("type"),
        external_user_id=event.get("user_id"),
        delivery_id=delivery_id,
    )
    db.commit()

    try:
        summary = process_whoop_event(db, event)
        webhook_journal.mark_processed(db, journal_entry, summary.status, summary.written)
        db.commit()
    except HTTPException:
        raise
    except Exception as e:
        db.rollback()
        logger.error(
            f"Error processing Whoop webhook: {e}",
            exc_info=True,
            extra={"extra_fields": {"event_type": event.get("type"), "webhook_event_id": str(journal_entry.id)}},
        )
        webhook_journal.mark_failed(db, journal_entry, f"{type(e).__name__}: {e}")
        db.commit()
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"ok": False, "error": "Internal error processing webhook"},
        )

    response = {"ok": True, **summary.to_dict()}
    remember_delivery("WHOOP", delivery_id, response)
    return response
