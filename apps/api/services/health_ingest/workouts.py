"""
Workout Normalizer & Scheduler Matcher

Normalizes one raw workout record into a WorkoutSession row and, for newly
recorded sessions, links it to a matching incomplete entry on the athlete's
training schedule.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, Optional

from services.health_ingest.errors import FieldMissing
from services.health_ingest.fields import (
    as_float,
    first_present,
    nested_float,
    quantity,
    timestamp_from,
    to_utc,
)
from services.health_ingest.repository import IngestionRepository
from services.health_ingest.units import to_kcal, to_meters

logger = logging.getLogger(__name__)

WORKOUT_START_KEYS = ("start", "startDate", "start_date", "startTime")
WORKOUT_END_KEYS = ("end", "endDate", "end_date", "endTime")

# Provider activity names (lowercased) -> canonical workout type.
WORKOUT_TYPE_MAP = {
    "running": "running",
    "run": "running",
    "outdoor run": "running",
    "indoor run": "running",
    "treadmill run": "running",
    "trail run": "running",
    "cycling": "cycling",
    "outdoor cycle": "cycling",
    "indoor cycle": "cycling",
    "biking": "cycling",
    "walking": "walking",
    "outdoor walk": "walking",
    "indoor walk": "walking",
    "hiking": "hiking",
    "swimming": "swimming",
    "pool swim": "swimming",
    "open water swim": "swimming",
    "traditional strength training": "strength",
    "functional strength training": "strength",
    "strength training": "strength",
    "high intensity interval training": "hiit",
    "hiit": "hiit",
    "core training": "core",
    "yoga": "yoga",
    "pilates": "pilates",
    "rowing": "rowing",
    "elliptical": "elliptical",
    "stair climbing": "stairs",
    "cross training": "cross-training",
    "dance": "dance",
    "cooldown": "cooldown",
}

# Fallback: substring of the envelope (or record) name.
_NAME_FALLBACKS = ("cycling", "running", "walking")

_SOURCE_ID_KEYS = ("id", "uuid", "workoutId", "workout_id")
_ENERGY_KEYS = (
    "activeEnergyBurned",
    "active_energy_burned",
    "totalEnergyBurned",
    "total_energy_burned",
    "activeEnergy",
    "calories",
)


@dataclass(frozen=True)
class NormalizedWorkout:
    workout_type: str
    start_time: datetime  # provider-local offset preserved
    end_time: datetime
    duration_minutes: int
    source_id: str
    distance_m: Optional[float] = None
    calories: Optional[float] = None
    avg_heart_rate: Optional[int] = None
    max_heart_rate: Optional[int] = None

    @property
    def local_date(self) -> date:
        return self.start_time.date()

    def to_row(self, source_type: str) -> Dict[str, Any]:
        return {
            "workout_type": self.workout_type,
            "start_time": to_utc(self.start_time),
            "end_time": to_utc(self.end_time),
            "duration_minutes": self.duration_minutes,
            "distance_m": self.distance_m,
            "calories": self.calories,
            "avg_heart_rate": self.avg_heart_rate,
            "max_heart_rate": self.max_heart_rate,
            "source_type": source_type,
            "source_id": self.source_id,
        }


def resolve_workout_type(point: Dict[str, Any], envelope_name: str = "") -> str:
    raw_type = first_present(point, "workoutType", "workout_type", "name", "type")
    if isinstance(raw_type, str):
        mapped = WORKOUT_TYPE_MAP.get(raw_type.strip().lower())
        if mapped:
            return mapped
    for candidate in (envelope_name or "", raw_type if isinstance(raw_type, str) else ""):
        lowered = candidate.lower()
        for fallback in _NAME_FALLBACKS:
            if fallback in lowered:
                return fallback
    return "other"


def _distance_m(point: Dict[str, Any]) -> Optional[float]:
    raw = point.get("distance")
    if isinstance(raw, dict):
        number, unit = quantity(raw)
        return round(to_meters(number, unit), 1) if number is not None else None
    number = as_float(raw)
    return round(number, 1) if number is not None else None


def _calories(point: Dict[str, Any]) -> Optional[float]:
    for key in _ENERGY_KEYS:
        number, unit = quantity(point.get(key))
        if number is not None:
            return round(to_kcal(number, unit), 1)
    return None


def _heart_rate(point: Dict[str, Any], flat_keys, nested_keys) -> Optional[int]:
    for key in flat_keys:
        number, _ = quantity(point.get(key))
        if number is not None:
            return int(round(number))
    number = nested_float(point, "heartRate", *nested_keys)
    return int(round(number)) if number is not None else None


def normalize_workout(point: Dict[str, Any], envelope_name: str = "") -> NormalizedWorkout:
    """
    Raises:
        FieldMissing: start or end instant missing or unparseable.
    """
    start = timestamp_from(point, WORKOUT_START_KEYS)
    if start is None:
        raise FieldMissing("start", point)
    end = timestamp_from(point, WORKOUT_END_KEYS)
    if end is None:
        raise FieldMissing("end", point)

    workout_type = resolve_workout_type(point, envelope_name)
    duration_minutes = int(round((end - start).total_seconds() / 60))

    source_id = first_present(point, *_SOURCE_ID_KEYS)
    if source_id is None:
        # Deterministic so re-delivery of an id-less workout stays a no-op.
        source_id = f"{workout_type}:{to_utc(start).isoformat()}"

    return NormalizedWorkout(
        workout_type=workout_type,
        start_time=start,
        end_time=end,
        duration_minutes=max(0, duration_minutes),
        source_id=str(source_id),
        distance_m=_distance_m(point),
        calories=_calories(point),
        avg_heart_rate=_heart_rate(
            point, ("avgHeartRate", "avg_heart_rate", "averageHeartRate"), ("avg", "Avg", "average")
        ),
        max_heart_rate=_heart_rate(point, ("maxHeartRate", "max_heart_rate"), ("max", "Max")),
    )


def record_workout(
    repo: IngestionRepository,
    athlete_id,
    workout: NormalizedWorkout,
    source_type: str,
) -> bool:
    """
    Store a workout and try to tick off the matching schedule entry.

    Returns True when a new session was created. Re-delivered workouts are
    left alone and never re-matched.
    """
    session_id = repo.create_workout_session(athlete_id, workout.to_row(source_type))
    if session_id is None:
        logger.debug(f"Workout {source_type}:{workout.source_id} already recorded for athlete {athlete_id}")
        return False

    schedule = repo.find_matching_schedule(athlete_id, workout.workout_type, workout.local_date)
    if schedule is None:
        return True

    if repo.match_workout_to_schedule(session_id, schedule.id, completed_at=to_utc(workout.end_time)):
        logger.info(
            f"Linked {workout.workout_type} workout {session_id} to schedule entry {schedule.id} "
            f"for athlete {athlete_id}"
        )
    return True
