"""
Canonical in-memory records produced by payload normalizers.

Normalizers never touch the database; they turn provider payloads into
these dataclasses and the ingest service persists them.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional


class MetricCategory:
    RECOVERY = "recovery"
    SLEEP = "sleep"
    ACTIVITY = "activity"
    BODY_COMPOSITION = "body_composition"
    HEALTH = "health"


@dataclass
class MetricRecord:
    """One canonical metric reading (user is attached at write time)."""
    metric_name: str
    value: float
    unit: Optional[str]
    metric_category: str
    source: str  # upper-case provider, e.g. 'WHOOP', 'GARMIN'
    measurement_date: date
    external_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metric_name": self.metric_name,
            "value": self.value,
            "unit": self.unit,
            "metric_category": self.metric_category,
            "source": self.source,
            "measurement_date": self.measurement_date,
            "external_id": self.external_id,
        }


@dataclass
class WorkoutRecord:
    """One workout session, deduplicated downstream by external_id."""
    external_id: str
    source: str
    workout_type: str = "Activity"
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    calories: Optional[float] = None
    average_heart_rate: Optional[float] = None
    max_heart_rate: Optional[float] = None
    strain: Optional[float] = None
    distance_meters: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "external_id": self.external_id,
            "source": self.source,
            "workout_type": self.workout_type,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration_minutes": self.duration_minutes,
            "calories": self.calories,
            "average_heart_rate": self.average_heart_rate,
            "max_heart_rate": self.max_heart_rate,
            "strain": self.strain,
            "distance_meters": self.distance_meters,
        }


@dataclass
class NormalizedBatch:
    """Everything extracted from one webhook delivery."""
    provider: str
    external_user_id: Optional[str]
    source: str
    records: List[MetricRecord] = field(default_factory=list)
    workouts: List[WorkoutRecord] = field(default_factory=list)
    skipped: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.records and not self.workouts
