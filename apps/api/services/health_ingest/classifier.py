"""
Metric Classifier

Decides what a metric envelope is from its name and the shape of its data:
workout, sleep, a scalar biomarker of a known kind, or unrecognized.

Workout detection runs before sleep detection, so an envelope that satisfies
both ("Sleep Workout", or a sleep-named group of workout-shaped points) is a
workout.
"""
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Optional

from services.health_ingest.fields import as_float, first_present
from services.health_ingest.metric_types import BiomarkerKind, is_kind_routed, resolve_kind
from services.health_ingest.payload_format import MetricEnvelope
from services.health_ingest.sleep_nights import SLEEP_START_KEYS

logger = logging.getLogger(__name__)

_WORKOUT_NAME = re.compile(r"workout|cycling|running", re.IGNORECASE)
_SLEEP_NAME = re.compile(r"sleep", re.IGNORECASE)

# An envelope carrying any of these at the top level is itself a workout record.
_SINGLE_WORKOUT_KEYS = ("start", "startDate", "start_date", "duration", "activeEnergyBurned", "totalEnergyBurned")

_BARE_SLEEP_VALUE_KEYS = ("qty", "value", "totalSleep", "total_sleep")


class Category(str, Enum):
    WORKOUT = "workout"
    SLEEP = "sleep"
    SCALAR = "scalar"
    UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True)
class Classification:
    category: Category
    envelope: MetricEnvelope
    kind: Optional[BiomarkerKind] = None


def _has_any(point: Dict[str, Any], *keys: str) -> bool:
    return any(k in point for k in keys)


def _looks_like_workout_point(point: Dict[str, Any]) -> bool:
    if _has_any(point, "workoutType", "workout_type"):
        return True
    has_start_date = _has_any(point, "startDate", "start_date")
    has_start = "start" in point
    has_total_energy = _has_any(point, "totalEnergyBurned", "total_energy_burned")
    has_active_energy = _has_any(point, "activeEnergyBurned", "active_energy_burned")
    return (
        (has_start_date and has_total_energy)
        or (has_start and "duration" in point)
        or (has_start and has_active_energy)
    )


def _is_bare_sleep_duration(point: Optional[Dict[str, Any]]) -> bool:
    if point is None or _has_any(point, *SLEEP_START_KEYS):
        return False
    return as_float(first_present(point, *_BARE_SLEEP_VALUE_KEYS)) is not None


def classify(
    envelope: MetricEnvelope,
    allowlist: Iterable[str] = (),
    blocklist: Iterable[str] = (),
) -> Classification:
    """
    Classify one envelope.

    The returned envelope may differ from the input: a single workout (or a
    single sample) posted as a bare object gets itself as its only data point.
    """
    raw = envelope.raw or {}
    if not envelope.data and not isinstance(raw.get("data"), list) and _has_any(raw, *_SINGLE_WORKOUT_KEYS):
        envelope = envelope.with_points([raw])

    first = envelope.data[0] if envelope.data else None

    if _WORKOUT_NAME.search(envelope.name) or (first is not None and _looks_like_workout_point(first)):
        return Classification(Category.WORKOUT, envelope)

    if _SLEEP_NAME.search(envelope.name):
        if _is_bare_sleep_duration(first):
            if is_kind_routed(BiomarkerKind.SLEEP_HOURS, allowlist, blocklist):
                return Classification(Category.SCALAR, envelope, BiomarkerKind.SLEEP_HOURS)
            return Classification(Category.UNRECOGNIZED, envelope)
        return Classification(Category.SLEEP, envelope)

    kind = resolve_kind(envelope.name, allowlist, blocklist)
    if kind is None:
        logger.debug(f"Skipping unrecognized metric '{envelope.name}'")
        return Classification(Category.UNRECOGNIZED, envelope)

    if not envelope.data and raw and "data" not in raw:
        envelope = envelope.with_points([raw])
    return Classification(Category.SCALAR, envelope, kind)
