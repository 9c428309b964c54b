"""
Body Metrics Router

Read-time reconciliation of body-composition metrics reported by several
sources, plus manual and InBody entry. Current values follow source priority (see
services.source_priority); the timeline keeps one line per (date, source).
"""

from datetime import date, timedelta
from typing import Any, Dict, List, Optional
from uuid import UUID
import logging

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from core.cache import cache_key, get_cache, invalidate_user_metrics_cache, set_cache
from core.config import settings
from core.database import get_db
from core.exceptions import APIException, NotFoundError
from models import ProviderConnection, UnifiedMetric, User
from schemas import (
    BodyMetricsResponse,
    InBodyAnalysisCreate,
    ManualMetricCreate,
    ProviderConnectionResponse,
    UnifiedMetricResponse,
)
from services.data_streams import MetricRecord, NormalizerRegistry
from services.data_streams.base import slugify
from services.metric_ingest import upsert_metric_records
from services.metric_timeline import build_sparklines, merge_timeline, summarize_sources
from services.source_priority import aggregate_current

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/users", tags=["body-metrics"])

# Stored metric name -> response field
BODY_METRIC_FIELDS: Dict[str, str] = {
    "Weight": "weight",
    "Body Fat %": "body_fat_pct",
    "Skeletal Muscle Mass": "muscle_mass",
    "BMI": "bmi",
    "BMR": "bmr",
}


def _require_user(db: Session, user_id: UUID) -> User:
    user = db.get(User, user_id)
    if not user:
        raise NotFoundError("User", str(user_id))
    return user


def build_body_metrics(db: Session, user_id: UUID, days: int, today: Optional[date] = None) -> Dict[str, Any]:
    """Assemble current values, timeline, sparklines and per-source stats."""
    today = today or date.today()
    since = today - timedelta(days=days - 1)

    rows = (
        db.query(UnifiedMetric)
        .filter(
            UnifiedMetric.user_id == user_id,
            UnifiedMetric.metric_name.in_(list(BODY_METRIC_FIELDS)),
            UnifiedMetric.measurement_date >= since,
        )
        .all()
    )

    current = aggregate_current(rows, list(BODY_METRIC_FIELDS))
    timeline = merge_timeline(rows, BODY_METRIC_FIELDS)

    return {
        "user_id": str(user_id),
        "days": days,
        "current": {
            BODY_METRIC_FIELDS[name]: (resolved.to_dict() if resolved else None)
            for name, resolved in current.items()
        },
        "timeline": [entry.to_dict() for entry in timeline],
        "sparklines": build_sparklines(timeline, BODY_METRIC_FIELDS.values(), limit=settings.SPARKLINE_POINTS),
        "source_stats": summarize_sources(rows, days, today),
    }


@router.get("/{user_id}/body-metrics", response_model=BodyMetricsResponse)
def get_body_metrics(
    user_id: UUID,
    days: Optional[int] = Query(default=None, ge=1, le=730),
    db: Session = Depends(get_db),
):
    """
    Multi-source body-composition view for a user.

    Returns:
        - current: best value per metric by source priority
        - timeline: one entry per (date, source), newest first
        - sparklines: most recent points per metric, oldest to newest
        - source_stats: row count, last date and day coverage per source
    """
    days = days or settings.BODY_METRICS_DEFAULT_DAYS
    _require_user(db, user_id)

    key = cache_key("body_metrics", user_id, days=days)
    cached = get_cache(key)
    if cached is not None:
        return cached

    result = build_body_metrics(db, user_id, days)
    set_cache(key, result, settings.CACHE_TTL_BODY_METRICS)
    return result


@router.post(
    "/{user_id}/metrics/manual",
    response_model=UnifiedMetricResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_manual_metric(
    user_id: UUID,
    metric: ManualMetricCreate,
    db: Session = Depends(get_db),
):
    """Store a manually entered metric with source MANUAL (same upsert as webhooks)."""
    _require_user(db, user_id)

    record = MetricRecord(
        metric_name=metric.metric_name,
        value=metric.value,
        unit=metric.unit,
        metric_category=metric.metric_category,
        source="MANUAL",
        measurement_date=metric.measurement_date,
        external_id=f"manual_{metric.measurement_date.isoformat()}_{slugify(metric.metric_name)}",
    )
    result = upsert_metric_records(db, user_id, [record])
    if result.failed:
        raise APIException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Manual metric {metric.metric_name} could not be stored",
            error_code="METRIC_WRITE_FAILED",
        )
    db.commit()
    invalidate_user_metrics_cache(user_id)

    return (
        db.query(UnifiedMetric)
        .filter(
            UnifiedMetric.user_id == user_id,
            UnifiedMetric.metric_name == metric.metric_name,
            UnifiedMetric.measurement_date == metric.measurement_date,
            UnifiedMetric.source == "MANUAL",
        )
        .populate_existing()
        .one()
    )


@router.post(
    "/{user_id}/inbody",
    response_model=List[UnifiedMetricResponse],
    status_code=status.HTTP_201_CREATED,
)
def ingest_inbody_analysis(
    user_id: UUID,
    analysis: InBodyAnalysisCreate,
    db: Session = Depends(get_db),
):
    """
    Store an InBody scan as INBODY records (same upsert as webhooks).

    Resubmitting a scan for the same test date overwrites its values.
    """
    _require_user(db, user_id)

    batch = NormalizerRegistry.require("INBODY").normalize(
        "analysis", [analysis.model_dump(exclude_none=True)], "INBODY", str(user_id)
    )
    result = upsert_metric_records(db, user_id, batch.records)
    if result.failed:
        raise APIException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"{result.failed} InBody metric(s) could not be stored",
            error_code="METRIC_WRITE_FAILED",
        )
    db.commit()
    invalidate_user_metrics_cache(user_id)

    logger.info(
        f"InBody analysis stored for user {user_id}: {result.written} metrics",
        extra={"extra_fields": {"user_id": str(user_id), "source": "INBODY", "metrics_written": result.written}},
    )
    return (
        db.query(UnifiedMetric)
        .filter(
            UnifiedMetric.user_id == user_id,
            UnifiedMetric.source == "INBODY",
            UnifiedMetric.measurement_date == analysis.test_date.date(),
            UnifiedMetric.metric_name.in_([r.metric_name for r in batch.records]),
        )
        .order_by(UnifiedMetric.metric_name)
        .populate_existing()
        .all()
    )


@router.get("/{user_id}/connections", response_model=List[ProviderConnectionResponse])
def list_connections(user_id: UUID, db: Session = Depends(get_db)):
    """Provider connections for a user, with last successful sync time."""
    _require_user(db, user_id)
    return (
        db.query(ProviderConnection)
        .filter(ProviderConnection.user_id == user_id)
        .order_by(ProviderConnection.provider)
        .all()
    )
