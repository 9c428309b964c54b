"""
Terra aggregator payload normalizer.

Terra relays data from many wearables (Garmin, Withings, Oura, ...) in a
common envelope:

    {"type": "body", "user": {"user_id": "...", "provider": "WITHINGS"},
     "data": [ {...}, ... ]}

Records are stamped with the underlying wearable as their source, so a
Withings weigh-in relayed by Terra reconciles as WITHINGS, not TERRA.
"""

from datetime import date
from typing import Any, Dict, List, Optional, Tuple
import logging

from .base import (
    FieldSpec,
    PayloadNormalizer,
    extract_metrics,
    first_number,
    first_value,
    grams_to_kg,
    parse_date,
    parse_datetime,
    seconds_to_hours,
)
from .models import MetricCategory as C, NormalizedBatch, WorkoutRecord
from .registry import NormalizerRegistry

logger = logging.getLogger(__name__)

# Terra activity type codes (subset; unknown codes fall back to "Activity")
TERRA_ACTIVITY_TYPES: Dict[int, str] = {
    1: "Biking",
    2: "On Foot",
    7: "Walking",
    8: "Running",
    9: "Aerobics",
    10: "Badminton",
    11: "Baseball",
    12: "Basketball",
    13: "Biathlon",
    14: "Handbiking",
    15: "Mountain Biking",
    16: "Road Biking",
    17: "Spinning",
    18: "Stationary Biking",
    19: "Utility Biking",
    20: "Boxing",
    21: "Calisthenics",
    22: "Circuit Training",
    23: "Cricket",
    24: "Dancing",
    25: "Elliptical",
    35: "Hiking",
}

BODY_SPECS = (
    FieldSpec("Weight", "kg", C.BODY_COMPOSITION, ("weight_kg", "body_mass_kg")),
    FieldSpec("Body Fat %", "%", C.BODY_COMPOSITION, ("bodyfat_percentage", "body_fat_percentage")),
    FieldSpec("Skeletal Muscle Mass", "kg", C.BODY_COMPOSITION, ("muscle_mass_kg",)),
    FieldSpec("Skeletal Muscle Mass", "kg", C.BODY_COMPOSITION, ("muscle_mass_g",), grams_to_kg),
    FieldSpec("BMI", None, C.BODY_COMPOSITION, ("BMI", "bmi")),
    FieldSpec("BMR", "kcal", C.BODY_COMPOSITION, ("BMR", "bmr")),
    FieldSpec("Body Water %", "%", C.BODY_COMPOSITION, ("water_percentage",)),
    FieldSpec("Bone Mass", "kg", C.BODY_COMPOSITION, ("bone_mass_g",), grams_to_kg),
)

DAILY_SPECS = (
    FieldSpec("Steps", "steps", C.ACTIVITY, ("distance_data.steps", "steps_data.steps", "steps")),
    FieldSpec("Active Calories", "kcal", C.ACTIVITY, (
        "calories_data.total_burned_calories", "total_burned_calories", "calories_burned",
    )),
    FieldSpec("Resting Heart Rate", "bpm", C.RECOVERY, (
        "heart_rate_data.summary.resting_hr_bpm", "resting_hr_bpm", "resting_heart_rate",
    )),
    FieldSpec("HRV", "ms", C.RECOVERY, (
        "heart_rate_data.summary.avg_hrv_rmssd", "hrv_rmssd_ms", "hrv.rmssd_milli",
    )),
    FieldSpec("VO2Max", "ml/kg/min", C.HEALTH, (
        "oxygen_data.vo2max_ml_per_min_per_kg", "vo2max_ml_per_min_per_kg",
    )),
    FieldSpec("Recovery Score", "%", C.RECOVERY, (
        "scores.recovery", "recovery_score", "recovery.score",
    )),
    FieldSpec("Day Strain", None, C.ACTIVITY, ("strain_data.strain_level", "day_strain", "strain")),
)

SLEEP_SPECS = (
    FieldSpec("Sleep Duration", "hours", C.SLEEP, (
        "sleep_durations_data.asleep.duration_asleep_state_seconds",
    ), seconds_to_hours),
    FieldSpec("Deep Sleep Duration", "hours", C.SLEEP, (
        "sleep_durations_data.asleep.duration_deep_sleep_state_seconds",
    ), seconds_to_hours),
    FieldSpec("Light Sleep Duration", "hours", C.SLEEP, (
        "sleep_durations_data.asleep.duration_light_sleep_state_seconds",
    ), seconds_to_hours),
    FieldSpec("REM Sleep Duration", "hours", C.SLEEP, (
        "sleep_durations_data.asleep.duration_REM_sleep_state_seconds",
    ), seconds_to_hours),
    FieldSpec("Awake Duration", "hours", C.SLEEP, (
        "sleep_durations_data.awake.duration_awake_state_seconds",
    ), seconds_to_hours),
    FieldSpec("Sleep Efficiency", "%", C.SLEEP, (
        "sleep_durations_data.sleep_efficiency", "sleep_efficiency_percentage",
    )),
    FieldSpec("Respiratory Rate", "breaths/min", C.SLEEP, (
        "respiration_data.breaths_data.avg_breaths_per_min",
    )),
    FieldSpec("HRV", "ms", C.RECOVERY, ("heart_rate_data.summary.avg_hrv_rmssd",)),
    FieldSpec("Recovery Score", "%", C.RECOVERY, ("metadata.recovery_score", "scores.recovery")),
)

NUTRITION_SPECS = (
    FieldSpec("Blood Glucose", "mg/dL", C.HEALTH, (
        "metadata.glucose_data.avg_glucose_mg_per_dL",
        "glucose_data.day_avg_blood_glucose_mg_per_dL",
    )),
    FieldSpec("Calories Consumed", "kcal", C.HEALTH, ("summary.macros.calories",)),
    FieldSpec("Protein", "g", C.HEALTH, ("summary.macros.protein_g",)),
    FieldSpec("Carbohydrates", "g", C.HEALTH, ("summary.macros.carbohydrates_g",)),
    FieldSpec("Fat", "g", C.HEALTH, ("summary.macros.fat_g",)),
)

ACTIVITY_SPECS = (
    FieldSpec("Workout Calories", "kcal", C.ACTIVITY, ("calories_data.total_burned_calories",)),
    FieldSpec("Distance", "m", C.ACTIVITY, ("distance_data.summary.distance_meters",)),
    FieldSpec("Average Heart Rate", "bpm", C.ACTIVITY, ("heart_rate_data.summary.avg_hr_bpm",)),
    FieldSpec("Max Heart Rate", "bpm", C.ACTIVITY, ("heart_rate_data.summary.max_hr_bpm",)),
    FieldSpec("Workout Strain", None, C.ACTIVITY, ("metadata.strain", "strain_data.strain_level")),
)

# type -> (mapping table, date paths, resource reference paths)
TERRA_TABLES: Dict[str, Tuple[tuple, Tuple[str, ...], Tuple[str, ...]]] = {
    "daily": (DAILY_SPECS, ("metadata.start_time",), ("metadata.summary_id", "metadata.start_time")),
    "sleep": (
        SLEEP_SPECS,
        ("day", "metadata.end_time", "metadata.start_time"),
        ("metadata.summary_id", "metadata.start_time"),
    ),
    "nutrition": (NUTRITION_SPECS, ("metadata.start_time",), ("metadata.summary_id", "metadata.start_time")),
    "activity": (ACTIVITY_SPECS, ("metadata.start_time",), ("metadata.summary_id", "metadata.start_time")),
}

BODY_DATE_PATHS = ("measurement_time", "timestamp", "metadata.start_time")


def terra_workout_type(activity: Dict[str, Any]) -> str:
    name = first_value(activity, ("metadata.name",))
    if isinstance(name, str) and name.strip():
        return name.strip()
    code = first_value(activity, ("metadata.type", "activity_type"))
    if isinstance(code, str) and code.strip() and not code.strip().lstrip("-").isdigit():
        return code.strip()
    try:
        return TERRA_ACTIVITY_TYPES.get(int(code), "Activity")
    except (TypeError, ValueError):
        return "Activity"


def _duration_minutes(start, end, activity: Dict[str, Any]) -> Optional[int]:
    if start and end:
        try:
            return max(0, round((end - start).total_seconds() / 60))
        except TypeError:
            # one side offset-aware, the other naive
            pass
    seconds = first_number(activity, ("active_durations_data.activity_seconds",))
    if seconds is not None:
        return round(seconds / 60)
    return None


@NormalizerRegistry.register
class TerraNormalizer(PayloadNormalizer):
    """Maps Terra body/daily/sleep/nutrition/activity payloads onto canonical records."""

    @property
    def provider_name(self) -> str:
        return "TERRA"

    @property
    def display_name(self) -> str:
        return "Terra"

    @property
    def data_types(self) -> List[str]:
        return ["body", "daily", "sleep", "nutrition", "activity"]

    def normalize(
        self,
        data_type: str,
        items: List[Dict[str, Any]],
        source: str,
        external_user_id: Optional[str] = None,
    ) -> NormalizedBatch:
        batch = NormalizedBatch(provider=self.provider_name, external_user_id=external_user_id, source=source)

        if not self.handles(data_type):
            logger.info(f"Terra payload type '{data_type}' carries no metrics; acknowledged")
            return batch

        for item in items:
            if not isinstance(item, dict):
                batch.skipped += 1
                continue
            if data_type == "body":
                self._normalize_body(item, batch)
            else:
                self._normalize_item(data_type, item, batch)
                if data_type == "activity":
                    self._normalize_workout(item, batch)

        return batch

    def _normalize_item(self, data_type: str, item: Dict[str, Any], batch: NormalizedBatch) -> None:
        specs, date_paths, ref_paths = TERRA_TABLES[data_type]
        measurement_date = parse_date(first_value(item, date_paths))
        if measurement_date is None:
            logger.warning(f"Skipping Terra {data_type} item without a usable date (user {batch.external_user_id})")
            batch.skipped += 1
            return

        ref = first_value(item, ref_paths) or measurement_date.isoformat()
        self._extend(batch, item, specs, measurement_date, ref)

    def _normalize_body(self, item: Dict[str, Any], batch: NormalizedBatch) -> None:
        measurements = item.get("measurements_data", {}) if isinstance(item.get("measurements_data"), dict) else {}
        entries = measurements.get("measurements")
        if not isinstance(entries, list) or not entries:
            entries = [item]

        fallback_date = first_value(item, BODY_DATE_PATHS)
        for entry in entries:
            if not isinstance(entry, dict):
                batch.skipped += 1
                continue
            timestamp = first_value(entry, BODY_DATE_PATHS) or fallback_date
            measurement_date = parse_date(timestamp)
            if measurement_date is None:
                logger.warning(f"Skipping Terra body measurement without a usable date (user {batch.external_user_id})")
                batch.skipped += 1
                continue
            self._extend(batch, entry, BODY_SPECS, measurement_date, str(timestamp))

    def _normalize_workout(self, item: Dict[str, Any], batch: NormalizedBatch) -> None:
        start_raw = first_value(item, ("metadata.start_time",))
        ref = first_value(item, ("metadata.summary_id",)) or start_raw
        if not ref:
            return

        start = parse_datetime(start_raw)
        end = parse_datetime(first_value(item, ("metadata.end_time",)))
        batch.workouts.append(
            WorkoutRecord(
                external_id=f"terra_{batch.source}_{ref}",
                source=batch.source,
                workout_type=terra_workout_type(item),
                start_time=start,
                end_time=end,
                duration_minutes=_duration_minutes(start, end, item),
                calories=first_number(item, ("calories_data.total_burned_calories",)),
                average_heart_rate=first_number(item, ("heart_rate_data.summary.avg_hr_bpm",)),
                max_heart_rate=first_number(item, ("heart_rate_data.summary.max_hr_bpm",)),
                strain=first_number(item, ("metadata.strain", "strain_data.strain_level")),
                distance_meters=first_number(item, ("distance_data.summary.distance_meters",)),
            )
        )

    def _extend(self, batch: NormalizedBatch, obj: Any, specs, measurement_date: date, ref: str) -> None:
        records, failed = extract_metrics(
            obj,
            specs,
            measurement_date=measurement_date,
            source=batch.source,
            id_prefix=f"terra_{batch.source}_{ref}",
        )
        batch.skipped += failed
        seen = set()
        for record in records:
            # Two rows can map to one metric (e.g. muscle mass in kg or g); first wins
            if record.metric_name in seen:
                continue
            seen.add(record.metric_name)
            batch.records.append(record)
