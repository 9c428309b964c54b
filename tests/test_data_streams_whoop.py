"""Tests for the Whoop resource normalizer."""
from datetime import date

import pytest

from services.data_streams import NormalizerRegistry, sport_name
from fixtures.webhook_payloads import whoop_recovery, whoop_sleep, whoop_workout

whoop = NormalizerRegistry.require("WHOOP")


def _by_name(batch):
    return {r.metric_name: r for r in batch.records}


class TestWhoopSleep:

    def test_sleep_fans_out_into_metrics(self):
        batch = whoop.normalize("sleep", [whoop_sleep()], "WHOOP", "10129")
        metrics = _by_name(batch)

        assert metrics["Sleep Duration"].value == 8.5
        assert metrics["Sleep Performance"].value == 98
        assert metrics["Sleep Efficiency"].value == 91.7
        assert metrics["Respiratory Rate"].value == 16.1
        assert metrics["Light Sleep Duration"].value == 4.0
        assert metrics["REM Sleep Duration"].value == 2.5
        assert metrics["Awake Duration"].value == 0.5
        assert metrics["Time in Bed"].value == 8.5
        assert {r.measurement_date for r in batch.records} == {date(2026, 10, 16)}

    def test_stage_duration_ms_to_hours(self):
        batch = whoop.normalize("sleep", [whoop_sleep()], "WHOOP")
        assert _by_name(batch)["Deep Sleep Duration"].value == 1.5

    def test_missing_respiratory_rate_keeps_siblings(self):
        resource = whoop_sleep()
        del resource["score"]["respiratory_rate"]

        batch = whoop.normalize("sleep", [resource], "WHOOP")
        metrics = _by_name(batch)

        assert "Respiratory Rate" not in metrics
        assert metrics["Sleep Performance"].value == 98
        assert batch.skipped == 0

    def test_unscored_sleep_keeps_duration_only(self):
        resource = whoop_sleep()
        resource["score"] = None

        batch = whoop.normalize("sleep", [resource], "WHOOP")

        assert [r.metric_name for r in batch.records] == ["Sleep Duration"]


class TestWhoopRecovery:

    def test_recovery_metrics(self):
        batch = whoop.normalize("recovery", [whoop_recovery()], "WHOOP")
        metrics = _by_name(batch)

        assert metrics["Recovery Score"].value == 44
        assert metrics["HRV"].value == pytest.approx(31.813562)
        assert metrics["Resting Heart Rate"].value == 64
        assert metrics["Recovery Score"].measurement_date == date(2026, 10, 17)
        assert metrics["Recovery Score"].external_id == "whoop_10235_recovery_score"


class TestWhoopWorkout:

    def test_workout_record(self):
        batch = whoop.normalize("workout", [whoop_workout(sport_id=0)], "WHOOP")

        assert len(batch.workouts) == 1
        workout = batch.workouts[0]
        assert workout.external_id == "whoop_1043"
        assert workout.workout_type == "Running"
        assert workout.duration_minutes == 50
        assert workout.calories == 375.0  # 1569.34 kJ
        assert _by_name(batch)["Workout Strain"].value == pytest.approx(8.2463)

    def test_distance_rounded_to_whole_meters(self):
        batch = whoop.normalize("workout", [whoop_workout()], "WHOOP")

        assert _by_name(batch)["Distance"].value == 1773.0  # 1772.77 m
        assert batch.workouts[0].distance_meters == 1773.0

    def test_unknown_sport_maps_to_activity(self):
        batch = whoop.normalize("workout", [whoop_workout(sport_id=9999)], "WHOOP")
        assert batch.workouts[0].workout_type == "Activity"

    def test_unknown_sport_uses_reported_name(self):
        batch = whoop.normalize("workout", [whoop_workout(sport_id=9999, sport_name="padel")], "WHOOP")
        assert batch.workouts[0].workout_type == "Padel"

    def test_sport_name_lookup(self):
        assert sport_name(0) == "Running"
        assert sport_name(1) == "Cycling"
        assert sport_name("abc") == "Activity"
        assert sport_name(None) == "Activity"


class TestWhoopEdgeCases:

    def test_resource_without_date_skipped(self):
        resource = whoop_sleep()
        del resource["start"]

        batch = whoop.normalize("sleep", [resource], "WHOOP")

        assert batch.is_empty
        assert batch.skipped == 1

    def test_unmapped_resource(self):
        assert whoop.normalize("body_measurement", [{"id": 1}], "WHOOP").is_empty
