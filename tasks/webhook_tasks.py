"""
Celery tasks for webhook journal retries.

Deliveries that failed with an unexpected error are stored in webhook_event
with status 'failed'. This task replays them through the same processing
path as the HTTP routers, backing off 2^attempts minutes between tries and
marking them 'failed_permanently' after WEBHOOK_MAX_RETRY_ATTEMPTS.
"""
from datetime import datetime
from typing import Dict, Optional
import logging

from celery import Task
from sqlalchemy.orm import Session

from core.database import get_db_sync
from services import webhook_journal
from services.webhook_processing import process_journaled_payload
from tasks import celery_app

logger = logging.getLogger(__name__)


def retry_failed_webhooks(db: Session, now: Optional[datetime] = None) -> Dict[str, int]:
    """
    Replay journaled webhook events whose retry time has come.

    Args:
        db: Database session; committed after each event
        now: Reference time (defaults to current UTC time)

    Returns:
        Counts of events retried, succeeded, failed again and given up on
    """
    events = webhook_journal.due_for_retry(db, now=now)
    result = {"retried": 0, "succeeded": 0, "failed": 0, "failed_permanently": 0}

    for event in events:
        result["retried"] += 1
        try:
            with db.begin_nested():
                summary = process_journaled_payload(db, event.provider, event.payload)
            webhook_journal.mark_processed(db, event, summary.status, summary.written)
            result["succeeded"] += 1
            logger.info(f"Webhook event {event.id} reprocessed on attempt {event.attempts + 1}: {summary.status}")
        except Exception as e:
            webhook_journal.mark_failed(db, event, f"{type(e).__name__}: {e}", now=now)
            if event.status == webhook_journal.STATUS_FAILED_PERMANENTLY:
                result["failed_permanently"] += 1
                logger.error(
                    f"Webhook event {event.id} failed permanently after {event.attempts} attempts: {e}",
                    extra={"extra_fields": {"webhook_event_id": str(event.id), "provider": event.provider}},
                )
            else:
                result["failed"] += 1
                logger.warning(f"Webhook event {event.id} retry {event.attempts} failed: {e}")
        db.commit()

    if events:
        logger.info(f"Webhook retry run complete: {result}")
    return result


@celery_app.task(name="tasks.retry_failed_webhooks", bind=True)
def retry_failed_webhooks_task(self: Task) -> Dict:
    """Periodic entry point (see celerybeat_schedule)."""
    db: Session = get_db_sync()
    try:
        return {"status": "success", **retry_failed_webhooks(db)}
    except Exception as e:
        db.rollback()
        logger.error(f"Webhook retry task failed: {e}", exc_info=True)
        return {"status": "error", "error": str(e)}
    finally:
        db.close()
