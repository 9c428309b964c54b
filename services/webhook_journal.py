"""
Durable webhook journal.

Goals:
- Keep every verified payload so a failed delivery can be replayed
- Record the last error deterministically (no log scraping)
- Schedule retries with exponential backoff, then give up
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from core.config import settings
from models import WebhookEvent

STATUS_RECEIVED = "received"
STATUS_PROCESSED = "processed"
STATUS_IGNORED = "ignored"
STATUS_USER_NOT_FOUND = "user_not_found"
STATUS_FAILED = "failed"
STATUS_FAILED_PERMANENTLY = "failed_permanently"

# Outcomes of a delivery that ran to completion; none are retried
HANDLED_STATUSES = {STATUS_PROCESSED, STATUS_IGNORED, STATUS_USER_NOT_FOUND}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def retry_delay(attempts: int) -> timedelta:
    """2^attempts minutes."""
    return timedelta(minutes=2 ** attempts)


def record_event(
    db: Session,
    provider: str,
    payload: Dict[str, Any],
    event_type: Optional[str] = None,
    external_user_id: Optional[str] = None,
    delivery_id: Optional[str] = None,
) -> WebhookEvent:
    event = WebhookEvent(
        provider=provider.upper(),
        event_type=event_type,
        external_user_id=str(external_user_id) if external_user_id is not None else None,
        delivery_id=delivery_id,
        payload=payload,
        status=STATUS_RECEIVED,
        attempts=0,
    )
    db.add(event)
    db.flush()
    return event


def mark_processed(db: Session, event: WebhookEvent, status: str, processed_count: int = 0) -> None:
    """Record a handled delivery; status is the processing outcome."""
    if status not in HANDLED_STATUSES:
        raise ValueError(f"Not a handled webhook status: {status}")
    event.status = status
    event.processed_count = processed_count
    event.last_error = None
    event.next_retry_at = None
    db.add(event)


def mark_failed(db: Session, event: WebhookEvent, error: str, now: Optional[datetime] = None) -> None:
    now = now or _utcnow()
    event.attempts = (event.attempts or 0) + 1
    event.last_error = error[:2000]
    if event.attempts >= settings.WEBHOOK_MAX_RETRY_ATTEMPTS:
        event.status = STATUS_FAILED_PERMANENTLY
        event.next_retry_at = None
    else:
        event.status = STATUS_FAILED
        event.next_retry_at = now + retry_delay(event.attempts)
    db.add(event)


def due_for_retry(db: Session, now: Optional[datetime] = None, limit: Optional[int] = None) -> List[WebhookEvent]:
    now = now or _utcnow()
    return (
        db.query(WebhookEvent)
        .filter(
            WebhookEvent.status == STATUS_FAILED,
            WebhookEvent.next_retry_at <= now,
            WebhookEvent.attempts < settings.WEBHOOK_MAX_RETRY_ATTEMPTS,
        )
        .order_by(WebhookEvent.next_retry_at)
        .limit(limit or settings.WEBHOOK_RETRY_BATCH_SIZE)
        .all()
    )
