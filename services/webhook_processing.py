"""
Webhook processing pipeline.

Runs one verified webhook payload end to end:

    resolve user -> normalize -> idempotent upsert -> stamp last sync

Shared by the HTTP routers and the journal retry task, so a replayed payload
takes exactly the same path as the original delivery. Signature checks
happen before this module is reached.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID
import logging

from sqlalchemy.orm import Session

from core.cache import invalidate_user_metrics_cache
from models import ProviderConnection, User
from services.data_streams import NormalizedBatch, NormalizerRegistry
from services.metric_ingest import upsert_metric_records, upsert_workout_records
from services.provider_connections import (
    deactivate_connection,
    get_access_token,
    resolve_connection,
    touch_last_sync,
    upsert_connection_from_auth,
)
from services.source_priority import normalize_source
from services.whoop_client import WhoopClient

logger = logging.getLogger(__name__)

STATUS_PROCESSED = "processed"
STATUS_IGNORED = "ignored"
STATUS_USER_NOT_FOUND = "user_not_found"

TERRA_AUTH_EVENTS = {"auth", "reauth"}
TERRA_DEAUTH_EVENTS = {"deauth", "access_revoked", "user_deauth"}
TERRA_ACK_EVENTS = {"healthcheck", "athlete", "connection_error", "permission_change", "processing", "large_request_processing", "large_request_sending"}


@dataclass
class ProcessingSummary:
    status: str
    event_type: Optional[str] = None
    user_id: Optional[UUID] = None
    metrics_written: int = 0
    metrics_failed: int = 0
    workouts_written: int = 0
    workouts_failed: int = 0
    skipped: int = 0
    message: Optional[str] = None

    @property
    def written(self) -> int:
        return self.metrics_written + self.workouts_written

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "type": self.event_type,
            "metrics_written": self.metrics_written,
            "metrics_failed": self.metrics_failed,
            "workouts_written": self.workouts_written,
            "workouts_failed": self.workouts_failed,
            "message": self.message,
        }


def persist_batch(
    db: Session,
    connection: ProviderConnection,
    batch: NormalizedBatch,
    summary: ProcessingSummary,
) -> ProcessingSummary:
    """Upsert a normalized batch for the connection's user and stamp last sync."""
    metrics = upsert_metric_records(db, connection.user_id, batch.records)
    workouts = upsert_workout_records(db, connection.user_id, batch.workouts)

    summary.user_id = connection.user_id
    summary.metrics_written = metrics.written
    summary.metrics_failed = metrics.failed
    summary.workouts_written = workouts.written
    summary.workouts_failed = workouts.failed
    summary.skipped = batch.skipped
    summary.status = STATUS_PROCESSED

    if summary.written:
        touch_last_sync(db, connection)
        invalidate_user_metrics_cache(connection.user_id)

    logger.info(
        f"{batch.provider} {summary.event_type}: {metrics.written} metrics, {workouts.written} workouts written "
        f"for user {connection.user_id}",
        extra={
            "extra_fields": {
                "provider": batch.provider,
                "source": batch.source,
                "event_type": summary.event_type,
                "user_id": str(connection.user_id),
                "metrics_written": metrics.written,
                "metrics_failed": metrics.failed,
                "workouts_written": workouts.written,
                "workouts_failed": workouts.failed,
                "skipped": batch.skipped,
            }
        },
    )
    return summary


def _as_items(data: Any) -> List[Dict[str, Any]]:
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        return [data]
    return []


def _parse_uuid(value: Any) -> Optional[UUID]:
    if not value:
        return None
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


# ---------------------------------------------------------------------------
# Terra
# ---------------------------------------------------------------------------

def handle_terra_auth(db: Session, payload: Dict[str, Any], summary: ProcessingSummary) -> ProcessingSummary:
    """Create or update the Terra connection named by an auth/reauth event."""
    status = payload.get("status")
    if status and status != "success":
        logger.warning(f"Terra {summary.event_type} event with status '{status}'; no connection written")
        summary.status = STATUS_IGNORED
        summary.message = f"auth status {status}"
        return summary

    user = payload.get("new_user") or payload.get("user")
    user = user if isinstance(user, dict) else {}
    terra_user_id = user.get("user_id")
    reference_id = payload.get("reference_id") or user.get("reference_id")
    user_id = _parse_uuid(reference_id)

    if not terra_user_id or user_id is None:
        logger.warning(f"Terra {summary.event_type} event missing user_id or valid reference_id")
        summary.status = STATUS_IGNORED
        summary.message = "missing user_id or reference_id"
        return summary

    if db.get(User, user_id) is None:
        logger.warning(f"Terra {summary.event_type} event references unknown user {user_id}")
        summary.status = STATUS_IGNORED
        summary.message = "unknown reference_id"
        return summary

    upsert_connection_from_auth(db, user_id, "TERRA", terra_user_id, device_provider=user.get("provider"))
    summary.status = STATUS_PROCESSED
    summary.user_id = user_id
    summary.message = "connection saved"
    return summary


def process_terra_payload(db: Session, payload: Dict[str, Any]) -> ProcessingSummary:
    """
    Process one verified Terra webhook payload.

    Args:
        db: Database session (caller commits)
        payload: Parsed JSON body

    Returns:
        ProcessingSummary; status is processed, ignored or user_not_found
    """
    event_type = payload.get("type") if isinstance(payload, dict) else None
    summary = ProcessingSummary(status=STATUS_IGNORED, event_type=event_type)
    if not isinstance(payload, dict) or not event_type:
        logger.warning("Terra payload without type; acknowledged")
        summary.message = "missing type"
        return summary

    if event_type in TERRA_AUTH_EVENTS:
        return handle_terra_auth(db, payload, summary)

    user = payload.get("user") if isinstance(payload.get("user"), dict) else {}
    terra_user_id = user.get("user_id")

    if event_type in TERRA_DEAUTH_EVENTS:
        deactivated = deactivate_connection(db, "TERRA", terra_user_id, device_provider=user.get("provider"))
        summary.status = STATUS_PROCESSED if deactivated else STATUS_IGNORED
        summary.message = f"deactivated {deactivated} connection(s)"
        return summary

    normalizer = NormalizerRegistry.require("TERRA")
    if event_type in TERRA_ACK_EVENTS or not normalizer.handles(event_type):
        logger.info(f"Terra '{event_type}' event acknowledged without processing")
        summary.message = "no metrics for type"
        return summary

    connection = resolve_connection(db, "TERRA", terra_user_id)
    if connection is None:
        logger.warning(
            f"No active Terra connection for user_id {terra_user_id}; nothing written",
            extra={"extra_fields": {"provider": "TERRA", "external_user_id": terra_user_id, "event_type": event_type}},
        )
        summary.status = STATUS_USER_NOT_FOUND
        summary.message = "user not found"
        return summary

    source = normalize_source(user.get("provider")) or connection.device_provider or "TERRA"
    batch = normalizer.normalize(event_type, _as_items(payload.get("data")), source, terra_user_id)
    return persist_batch(db, connection, batch, summary)


# ---------------------------------------------------------------------------
# Whoop
# ---------------------------------------------------------------------------

def process_whoop_event(
    db: Session,
    event: Dict[str, Any],
    client_factory: Optional[Callable[[], WhoopClient]] = None,
) -> ProcessingSummary:
    """
    Process one Whoop change notification.

    The notification only names the resource; its body is fetched with the
    user's access token. A failed fetch is logged and yields no records.
    """
    event_type = event.get("type") if isinstance(event, dict) else None
    summary = ProcessingSummary(status=STATUS_IGNORED, event_type=event_type)
    if not isinstance(event, dict) or not isinstance(event_type, str):
        summary.message = "missing type"
        return summary

    resource, _, action = event_type.partition(".")
    normalizer = NormalizerRegistry.require("WHOOP")
    if action != "updated" or not normalizer.handles(resource):
        logger.info(f"Whoop '{event_type}' event acknowledged without processing")
        summary.message = "event not handled"
        return summary

    data = event.get("data") if isinstance(event.get("data"), dict) else {}
    resource_id = data.get("id") or event.get("id")
    whoop_user_id = event.get("user_id") or data.get("user_id")
    if resource_id is None:
        logger.warning(f"Whoop '{event_type}' event without resource id")
        summary.message = "missing resource id"
        return summary

    connection = resolve_connection(db, "WHOOP", whoop_user_id)
    if connection is None:
        logger.warning(
            f"No active Whoop connection for user_id {whoop_user_id}; nothing written",
            extra={"extra_fields": {"provider": "WHOOP", "external_user_id": whoop_user_id, "event_type": event_type}},
        )
        summary.status = STATUS_USER_NOT_FOUND
        summary.message = "user not found"
        return summary

    client = (client_factory or WhoopClient)()
    access_token = get_access_token(db, connection, client)
    if not access_token:
        logger.warning(f"No usable Whoop access token for user {connection.user_id}")
        summary.user_id = connection.user_id
        summary.message = "no access token"
        return summary
    client.access_token = access_token

    body = client.get_resource(resource, resource_id)
    if body is None:
        summary.user_id = connection.user_id
        summary.message = "resource unavailable"
        return summary

    batch = normalizer.normalize(resource, [body], "WHOOP", str(whoop_user_id))
    return persist_batch(db, connection, batch, summary)


def process_journaled_payload(db: Session, provider: str, payload: Dict[str, Any]) -> ProcessingSummary:
    """Dispatch a stored payload by provider (used by the retry task)."""
    provider = provider.upper()
    if provider == "TERRA":
        return process_terra_payload(db, payload)
    if provider == "WHOOP":
        return process_whoop_event(db, payload)
    raise ValueError(f"Unknown webhook provider: {provider}")
