"""
Source Priority Reconciler

Single source of truth for how much each data provider is trusted. Used at
write time (stamped onto every canonical metric row) and at read time
(choosing the "current" value shown for a metric when several sources
report it).

Policy: the most trusted source wins, even if a less trusted source has a
newer reading. Recency only breaks ties between rows of equal priority.
"""

from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

# Lower number = more trusted
SOURCE_PRIORITY: Dict[str, int] = {
    "INBODY": 1,
    "WITHINGS": 2,
    "GARMIN": 3,
    "OURA": 4,
    "WHOOP": 5,
    "MANUAL": 6,
}

# 0-100, shown next to the chosen value
SOURCE_CONFIDENCE: Dict[str, int] = {
    "INBODY": 95,
    "WITHINGS": 85,
    "GARMIN": 75,
    "OURA": 75,
    "WHOOP": 70,
    "MANUAL": 50,
}

UNKNOWN_SOURCE_PRIORITY = 99
UNKNOWN_SOURCE_CONFIDENCE = 50


def normalize_source(source: Optional[str]) -> str:
    if not isinstance(source, str):
        return ""
    return source.strip().upper()


def resolve_priority(source: Optional[str]) -> int:
    """Priority rank for a source (1 = most trusted, 99 = unknown)."""
    return SOURCE_PRIORITY.get(normalize_source(source), UNKNOWN_SOURCE_PRIORITY)


def resolve_confidence(source: Optional[str]) -> int:
    """Confidence score (0-100) for a source."""
    return SOURCE_CONFIDENCE.get(normalize_source(source), UNKNOWN_SOURCE_CONFIDENCE)


@dataclass
class MetricCandidate:
    """One reading of a metric from one source on one day."""
    value: float
    source: str
    measurement_date: date
    unit: Optional[str] = None


@dataclass
class ResolvedMetric:
    """The value chosen as "current" for a metric, with its provenance."""
    value: float
    source: str
    measurement_date: date
    priority: int
    confidence: int
    unit: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": self.value,
            "unit": self.unit,
            "source": self.source,
            "measurement_date": self.measurement_date.isoformat(),
            "priority": self.priority,
            "confidence": self.confidence,
        }


def pick_current(candidates: Iterable[MetricCandidate]) -> Optional[ResolvedMetric]:
    """
    Choose the current value among candidates.

    Sorted by (priority ascending, measurement_date descending); the first
    wins. Returns None for an empty input.
    """
    ordered = sorted(
        candidates,
        key=lambda c: (resolve_priority(c.source), -c.measurement_date.toordinal()),
    )
    if not ordered:
        return None

    best = ordered[0]
    return ResolvedMetric(
        value=best.value,
        source=normalize_source(best.source),
        measurement_date=best.measurement_date,
        priority=resolve_priority(best.source),
        confidence=resolve_confidence(best.source),
        unit=best.unit,
    )


def aggregate_current(rows: Iterable[Any], metric_names: List[str]) -> Dict[str, Optional[ResolvedMetric]]:
    """
    Resolve the current value for each requested metric.

    Args:
        rows: Stored metric rows (anything with metric_name, value, unit,
            source and measurement_date attributes)
        metric_names: Metric names to resolve

    Returns:
        Mapping of metric name to its resolved value, or None when no source
        reported it
    """
    grouped: Dict[str, List[MetricCandidate]] = {name: [] for name in metric_names}
    for row in rows:
        if row.metric_name not in grouped or row.value is None:
            continue
        grouped[row.metric_name].append(
            MetricCandidate(
                value=row.value,
                source=row.source,
                measurement_date=row.measurement_date,
                unit=row.unit,
            )
        )

    return {name: pick_current(candidates) for name, candidates in grouped.items()}
