"""
Whoop payload normalizer.

Whoop webhooks only announce that a resource changed; the resource body is
fetched separately (see services.whoop_client) and normalized here.
"""

from typing import Any, Dict, List, Optional
import logging

from .base import (
    ComputedSpec,
    FieldSpec,
    PayloadNormalizer,
    extract_metrics,
    first_number,
    first_value,
    kj_to_kcal,
    ms_to_hours,
    parse_date,
    parse_datetime,
    round_half_up,
)
from .models import MetricCategory as C, NormalizedBatch, WorkoutRecord
from .registry import NormalizerRegistry

logger = logging.getLogger(__name__)

WHOOP_SPORTS: Dict[int, str] = {
    -1: "Activity",
    0: "Running",
    1: "Cycling",
    16: "Baseball",
    17: "Basketball",
    18: "Rowing",
    19: "Fencing",
    20: "Field Hockey",
    21: "Football",
    22: "Golf",
    24: "Ice Hockey",
    25: "Lacrosse",
    27: "Rugby",
    28: "Sailing",
    29: "Skiing",
    30: "Soccer",
    31: "Softball",
    32: "Squash",
    33: "Swimming",
    34: "Tennis",
    35: "Track & Field",
    36: "Volleyball",
    37: "Water Polo",
    38: "Wrestling",
    39: "Boxing",
    42: "Dance",
    43: "Pilates",
    44: "Yoga",
    45: "Weightlifting",
    47: "CrossFit",
    48: "Functional Fitness",
    49: "Duathlon",
    51: "Gymnastics",
    52: "Hiking/Rucking",
    53: "Horseback Riding",
    55: "Kayaking",
    56: "Martial Arts",
    57: "Mountain Biking",
    59: "Powerlifting",
    60: "Rock Climbing",
    61: "Paddleboarding",
    62: "Triathlon",
    63: "Walking",
    64: "Surfing",
    65: "Elliptical",
    66: "Stairmaster",
    70: "Meditation",
    71: "Other",
    73: "Diving",
    74: "Operations - Loss",
    75: "Operations - Tactical",
    76: "Operations - Medical",
    77: "Operations - Flying",
    82: "Ultimate",
    83: "Climber",
    84: "Jumping Rope",
    85: "Australian Football",
    86: "Skateboarding",
    87: "Coaching",
    88: "Ice Bath",
    89: "Commuting",
    90: "Gaming",
    91: "Snowboarding",
    92: "Motocross",
    93: "Caddying",
    94: "Obstacle Course Racing",
    95: "Motor Racing",
    96: "HIIT",
    97: "Spin",
    98: "Jiu Jitsu",
    99: "Manual Labor",
    100: "Cricket",
    101: "Pickleball",
    102: "Inline Skating",
    103: "Box Fitness",
    104: "Spikeball",
    105: "Wheelchair Pushing",
    106: "Paddle Tennis",
    107: "Barre",
    108: "Stage Performance",
    109: "High Stress Work",
    110: "Parkour",
    111: "Gaelic Football",
    112: "Hurling/Camogie",
    113: "Circus Arts",
    116: "Massage Therapy",
    121: "Netball",
    126: "Assault Bike",
    260: "Stretching",
}


def sport_name(sport_id: Any) -> str:
    """Display name for a Whoop sport id; unknown ids map to "Activity"."""
    try:
        return WHOOP_SPORTS.get(int(sport_id), "Activity")
    except (TypeError, ValueError):
        return "Activity"


def _sleep_hours(resource: Dict[str, Any]) -> Optional[float]:
    start = parse_datetime(resource.get("start"))
    end = parse_datetime(resource.get("end"))
    if start is None or end is None:
        return None
    return round((end - start).total_seconds() / 3600, 2)


RECOVERY_SPECS = (
    FieldSpec("Recovery Score", "%", C.RECOVERY, ("score.recovery_score",)),
    FieldSpec("HRV", "ms", C.RECOVERY, ("score.hrv_rmssd_milli",)),
    FieldSpec("Resting Heart Rate", "bpm", C.RECOVERY, ("score.resting_heart_rate",)),
    FieldSpec("SpO2", "%", C.RECOVERY, ("score.spo2_percentage",)),
    FieldSpec("Skin Temperature", "°C", C.RECOVERY, ("score.skin_temp_celsius",)),
)

SLEEP_SPECS = (
    ComputedSpec("Sleep Duration", "hours", C.SLEEP, _sleep_hours),
    FieldSpec("Sleep Performance", "%", C.SLEEP, ("score.sleep_performance_percentage",)),
    FieldSpec("Sleep Efficiency", "%", C.SLEEP, ("score.sleep_efficiency_percentage",)),
    FieldSpec("Respiratory Rate", "breaths/min", C.SLEEP, ("score.respiratory_rate",)),
    FieldSpec("Light Sleep Duration", "hours", C.SLEEP, ("score.stage_summary.total_light_sleep_time_milli",), ms_to_hours),
    FieldSpec("Deep Sleep Duration", "hours", C.SLEEP, ("score.stage_summary.total_slow_wave_sleep_time_milli",), ms_to_hours),
    FieldSpec("REM Sleep Duration", "hours", C.SLEEP, ("score.stage_summary.total_rem_sleep_time_milli",), ms_to_hours),
    FieldSpec("Awake Duration", "hours", C.SLEEP, ("score.stage_summary.total_awake_time_milli",), ms_to_hours),
    FieldSpec("Time in Bed", "hours", C.SLEEP, ("score.stage_summary.total_in_bed_time_milli",), ms_to_hours),
)

WORKOUT_SPECS = (
    FieldSpec("Workout Strain", None, C.ACTIVITY, ("score.strain",)),
    FieldSpec("Workout Calories", "kcal", C.ACTIVITY, ("score.kilojoule",), kj_to_kcal),
    FieldSpec("Distance", "m", C.ACTIVITY, ("score.distance_meter",), round_half_up),
    FieldSpec("Average Heart Rate", "bpm", C.ACTIVITY, ("score.average_heart_rate",)),
    FieldSpec("Max Heart Rate", "bpm", C.ACTIVITY, ("score.max_heart_rate",)),
)

CYCLE_SPECS = (
    FieldSpec("Day Strain", None, C.ACTIVITY, ("score.strain",)),
    FieldSpec("Calories", "kcal", C.ACTIVITY, ("score.kilojoule",), kj_to_kcal),
    FieldSpec("Average Heart Rate", "bpm", C.ACTIVITY, ("score.average_heart_rate",)),
    FieldSpec("Max Heart Rate", "bpm", C.ACTIVITY, ("score.max_heart_rate",)),
)

# resource -> (mapping table, date paths, id paths)
WHOOP_TABLES = {
    "recovery": (RECOVERY_SPECS, ("created_at", "updated_at"), ("sleep_id", "cycle_id", "id")),
    "sleep": (SLEEP_SPECS, ("start",), ("id",)),
    "workout": (WORKOUT_SPECS, ("start",), ("id",)),
    "cycle": (CYCLE_SPECS, ("start",), ("id",)),
}


@NormalizerRegistry.register
class WhoopNormalizer(PayloadNormalizer):
    """Maps fetched Whoop recovery/sleep/workout/cycle resources onto canonical records."""

    @property
    def provider_name(self) -> str:
        return "WHOOP"

    @property
    def display_name(self) -> str:
        return "WHOOP"

    @property
    def data_types(self) -> List[str]:
        return list(WHOOP_TABLES)

    def normalize(
        self,
        data_type: str,
        items: List[Dict[str, Any]],
        source: str = "WHOOP",
        external_user_id: Optional[str] = None,
    ) -> NormalizedBatch:
        batch = NormalizedBatch(provider=self.provider_name, external_user_id=external_user_id, source=source)
        if not self.handles(data_type):
            logger.info(f"Whoop resource '{data_type}' not mapped; ignored")
            return batch

        specs, date_paths, id_paths = WHOOP_TABLES[data_type]
        for resource in items:
            if not isinstance(resource, dict):
                batch.skipped += 1
                continue

            measurement_date = parse_date(first_value(resource, date_paths))
            resource_id = first_value(resource, id_paths)
            if measurement_date is None or resource_id is None:
                logger.warning(f"Skipping Whoop {data_type} resource without date or id (user {external_user_id})")
                batch.skipped += 1
                continue

            records, failed = extract_metrics(
                resource,
                specs,
                measurement_date=measurement_date,
                source=source,
                id_prefix=f"whoop_{resource_id}",
            )
            batch.records.extend(records)
            batch.skipped += failed

            if data_type == "workout":
                batch.workouts.append(self._workout(resource, resource_id, source))

        return batch

    def _workout(self, resource: Dict[str, Any], resource_id: Any, source: str) -> WorkoutRecord:
        start = parse_datetime(resource.get("start"))
        end = parse_datetime(resource.get("end"))
        duration = None
        if start and end:
            try:
                duration = max(0, round((end - start).total_seconds() / 60))
            except TypeError:
                duration = None

        workout_type = sport_name(resource.get("sport_id"))
        name = resource.get("sport_name")
        if workout_type == "Activity" and isinstance(name, str) and name.strip():
            workout_type = name.strip().title()

        kilojoule = first_number(resource, ("score.kilojoule",))
        distance = first_number(resource, ("score.distance_meter",))
        return WorkoutRecord(
            external_id=f"whoop_{resource_id}",
            source=source,
            workout_type=workout_type,
            start_time=start,
            end_time=end,
            duration_minutes=duration,
            calories=kj_to_kcal(kilojoule) if kilojoule is not None else None,
            average_heart_rate=first_number(resource, ("score.average_heart_rate",)),
            max_heart_rate=first_number(resource, ("score.max_heart_rate",)),
            strain=first_number(resource, ("score.strain",)),
            distance_meters=round_half_up(distance) if distance is not None else None,
        )
