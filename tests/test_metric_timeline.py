"""Tests for multi-source timeline merge, sparklines and source stats."""
from datetime import date
from types import SimpleNamespace

from services.metric_timeline import (
    build_sparklines,
    merge_timeline,
    summarize_sources,
    timeline_key,
)

FIELDS = {"Weight": "weight", "Body Fat %": "body_fat_pct"}


def _row(metric_name, value, source, day):
    return SimpleNamespace(metric_name=metric_name, value=value, source=source, measurement_date=day)


class TestMergeTimeline:

    def test_same_date_and_source_merge_into_one_entry(self):
        rows = [
            _row("Weight", 80.0, "WITHINGS", date(2024, 1, 10)),
            _row("Body Fat %", 18.5, "WITHINGS", date(2024, 1, 10)),
        ]

        timeline = merge_timeline(rows, FIELDS)

        assert len(timeline) == 1
        assert timeline[0].fields == {"weight": 80.0, "body_fat_pct": 18.5}
        assert timeline[0].key == "2024-01-10-WITHINGS"

    def test_same_date_different_sources_stay_separate(self):
        rows = [
            _row("Weight", 81.0, "WHOOP", date(2024, 1, 10)),
            _row("Weight", 80.0, "WITHINGS", date(2024, 1, 10)),
        ]

        timeline = merge_timeline(rows, FIELDS)

        assert len(timeline) == 2
        # Same day: ordered by source priority
        assert [e.source for e in timeline] == ["WITHINGS", "WHOOP"]

    def test_newest_first(self):
        rows = [
            _row("Weight", 80.0, "WITHINGS", date(2024, 1, 1)),
            _row("Weight", 79.0, "WITHINGS", date(2024, 1, 20)),
            _row("Weight", 79.5, "WITHINGS", date(2024, 1, 10)),
        ]

        timeline = merge_timeline(rows, FIELDS)

        assert [e.measurement_date.day for e in timeline] == [20, 10, 1]

    def test_unmapped_metrics_ignored(self):
        timeline = merge_timeline([_row("Steps", 9000, "GARMIN", date(2024, 1, 1))], FIELDS)
        assert timeline == []

    def test_entry_to_dict(self):
        entry = merge_timeline([_row("Weight", 80.0, "inbody", date(2024, 1, 1))], FIELDS)[0]

        assert entry.to_dict() == {
            "date": "2024-01-01",
            "source": "INBODY",
            "priority": 1,
            "confidence": 95,
            "weight": 80.0,
        }

    def test_timeline_key_normalizes_source(self):
        assert timeline_key(date(2024, 2, 3), "garmin") == "2024-02-03-GARMIN"


class TestSparklines:

    def test_oldest_to_newest_limited(self):
        rows = [_row("Weight", 80.0 + i, "WITHINGS", date(2024, 1, i + 1)) for i in range(10)]
        timeline = merge_timeline(rows, FIELDS)

        sparklines = build_sparklines(timeline, ["weight", "body_fat_pct"], limit=7)

        assert sparklines["weight"] == [83.0, 84.0, 85.0, 86.0, 87.0, 88.0, 89.0]
        assert sparklines["body_fat_pct"] == []


class TestSummarizeSources:

    def test_counts_and_coverage(self):
        today = date(2024, 1, 10)
        rows = [
            _row("Weight", 80.0, "WITHINGS", date(2024, 1, 10)),
            _row("Body Fat %", 18.0, "WITHINGS", date(2024, 1, 10)),
            _row("Weight", 80.5, "WITHINGS", date(2024, 1, 8)),
            _row("Weight", 81.0, "WHOOP", date(2024, 1, 9)),
        ]

        stats = summarize_sources(rows, days=10, today=today)

        assert stats["WITHINGS"] == {"count": 3, "last_date": "2024-01-10", "coverage_pct": 20.0}
        assert stats["WHOOP"] == {"count": 1, "last_date": "2024-01-09", "coverage_pct": 10.0}
