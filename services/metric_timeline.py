"""
Timeline merge for multi-source metric history.

Rows from every source are folded into one entry per (date, source) so a
body-composition history can show, for example, a WITHINGS weigh-in and a
WHOOP reading from the same morning as separate lines.
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional

from services.source_priority import normalize_source, resolve_confidence, resolve_priority


@dataclass
class TimelineEntry:
    measurement_date: date
    source: str
    fields: Dict[str, float] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return timeline_key(self.measurement_date, self.source)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.measurement_date.isoformat(),
            "source": self.source,
            "priority": resolve_priority(self.source),
            "confidence": resolve_confidence(self.source),
            **self.fields,
        }


def timeline_key(measurement_date: date, source: str) -> str:
    return f"{measurement_date.isoformat()}-{normalize_source(source)}"


def merge_timeline(rows: Iterable[Any], field_map: Dict[str, str]) -> List[TimelineEntry]:
    """
    Merge metric rows into per-(date, source) timeline entries.

    Args:
        rows: Stored metric rows (metric_name, value, source, measurement_date)
        field_map: Metric name -> output field name; rows for other metrics
            are ignored

    Returns:
        Entries sorted newest first. Entries of the same day keep source
        priority order.
    """
    entries: Dict[str, TimelineEntry] = {}

    for row in rows:
        field_name = field_map.get(row.metric_name)
        if field_name is None or row.value is None:
            continue

        key = timeline_key(row.measurement_date, row.source)
        entry = entries.get(key)
        if entry is None:
            entry = TimelineEntry(
                measurement_date=row.measurement_date,
                source=normalize_source(row.source),
            )
            entries[key] = entry
        entry.fields[field_name] = row.value

    return sorted(
        entries.values(),
        key=lambda e: (-e.measurement_date.toordinal(), resolve_priority(e.source)),
    )


def build_sparklines(
    timeline: List[TimelineEntry],
    fields: Iterable[str],
    limit: int = 7,
) -> Dict[str, List[float]]:
    """
    Recent values per field for small trend charts.

    Takes the newest `limit` entries that carry the field and returns them
    oldest to newest.
    """
    sparklines: Dict[str, List[float]] = {}
    for field_name in fields:
        recent = [e.fields[field_name] for e in timeline if field_name in e.fields][:limit]
        sparklines[field_name] = list(reversed(recent))
    return sparklines


def summarize_sources(
    rows: Iterable[Any],
    days: int,
    today: Optional[date] = None,
) -> Dict[str, Dict[str, Any]]:
    """
    Per-source activity within the last `days` days.

    Returns:
        source -> {count, last_date, coverage_pct}; coverage is the share of
        days in the window with at least one reading from that source.
    """
    today = today or date.today()
    window_start = today - timedelta(days=days - 1) if days > 0 else today

    stats: Dict[str, Dict[str, Any]] = {}
    seen_dates: Dict[str, set] = {}

    for row in rows:
        source = normalize_source(row.source)
        source_stats = stats.setdefault(source, {"count": 0, "last_date": None, "coverage_pct": 0.0})
        source_stats["count"] += 1
        if source_stats["last_date"] is None or row.measurement_date > source_stats["last_date"]:
            source_stats["last_date"] = row.measurement_date
        if window_start <= row.measurement_date <= today:
            seen_dates.setdefault(source, set()).add(row.measurement_date)

    for source, source_stats in stats.items():
        covered = len(seen_dates.get(source, ()))
        source_stats["coverage_pct"] = round(covered / days * 100, 1) if days > 0 else 0.0
        if source_stats["last_date"] is not None:
            source_stats["last_date"] = source_stats["last_date"].isoformat()

    return stats
