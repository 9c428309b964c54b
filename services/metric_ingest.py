"""
Idempotent Metric Upsert

Writes canonical records with a single atomic INSERT ... ON CONFLICT DO UPDATE
per record, keyed on the natural key of the row. Redelivered webhooks simply
overwrite the same row (last write wins); there is no read-modify-write.

Each record gets its own SAVEPOINT so one bad row is logged and skipped
without losing the rest of the batch.
"""

from dataclasses import dataclass
from typing import Iterable, List
from uuid import UUID
import logging

from sqlalchemy.orm import Session
from sqlalchemy.sql import func

from models import UnifiedMetric, Workout
from services.data_streams.models import MetricRecord, WorkoutRecord
from services.source_priority import normalize_source, resolve_confidence, resolve_priority

logger = logging.getLogger(__name__)

METRIC_CONFLICT_KEY = ["user_id", "metric_name", "measurement_date", "source"]
WORKOUT_CONFLICT_KEY = ["user_id", "external_id"]


@dataclass
class IngestResult:
    written: int = 0
    failed: int = 0

    def __add__(self, other: "IngestResult") -> "IngestResult":
        return IngestResult(self.written + other.written, self.failed + other.failed)


def dialect_insert(db: Session):
    """`insert` construct with ON CONFLICT support for the session's backend."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"Upsert not supported for dialect: {dialect}")
    return insert


def build_metric_upsert(db: Session, user_id: UUID, record: MetricRecord):
    insert = dialect_insert(db)
    source = normalize_source(record.source)
    stmt = insert(UnifiedMetric).values(
        user_id=user_id,
        metric_name=record.metric_name,
        value=record.value,
        unit=record.unit,
        metric_category=record.metric_category,
        source=source,
        measurement_date=record.measurement_date,
        external_id=record.external_id,
        priority=resolve_priority(source),
        confidence_score=resolve_confidence(source),
    )
    return stmt.on_conflict_do_update(
        index_elements=METRIC_CONFLICT_KEY,
        set_={
            "value": stmt.excluded.value,
            "unit": stmt.excluded.unit,
            "metric_category": stmt.excluded.metric_category,
            "external_id": stmt.excluded.external_id,
            "priority": stmt.excluded.priority,
            "confidence_score": stmt.excluded.confidence_score,
            "updated_at": func.now(),
        },
    )


def build_workout_upsert(db: Session, user_id: UUID, workout: WorkoutRecord):
    insert = dialect_insert(db)
    values = workout.to_dict()
    values["source"] = normalize_source(workout.source)
    stmt = insert(Workout).values(user_id=user_id, **values)
    updatable = [k for k in values if k != "external_id"]
    set_ = {k: getattr(stmt.excluded, k) for k in updatable}
    set_["updated_at"] = func.now()
    return stmt.on_conflict_do_update(index_elements=WORKOUT_CONFLICT_KEY, set_=set_)


def upsert_metric_records(db: Session, user_id: UUID, records: Iterable[MetricRecord]) -> IngestResult:
    """
    Upsert canonical metric records for one user.

    Args:
        db: Database session (caller commits)
        user_id: Resolved internal user id
        records: Normalized records

    Returns:
        IngestResult with written/failed counts
    """
    result = IngestResult()
    for record in records:
        try:
            with db.begin_nested():
                db.execute(build_metric_upsert(db, user_id, record))
            result.written += 1
        except Exception as e:
            result.failed += 1
            logger.error(
                f"Failed to upsert metric {record.metric_name} for user {user_id}: {e}",
                extra={
                    "extra_fields": {
                        "user_id": str(user_id),
                        "metric_name": record.metric_name,
                        "source": record.source,
                        "measurement_date": record.measurement_date.isoformat(),
                    }
                },
            )
    return result


def upsert_workout_records(db: Session, user_id: UUID, workouts: List[WorkoutRecord]) -> IngestResult:
    """Upsert workouts keyed by (user_id, external_id)."""
    result = IngestResult()
    for workout in workouts:
        try:
            with db.begin_nested():
                db.execute(build_workout_upsert(db, user_id, workout))
            result.written += 1
        except Exception as e:
            result.failed += 1
            logger.error(f"Failed to upsert workout {workout.external_id} for user {user_id}: {e}")
    return result
