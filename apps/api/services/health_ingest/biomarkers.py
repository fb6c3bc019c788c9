"""
Biomarker Normalizer

Turns one raw scalar data point into canonical biomarker samples: value
extracted through per-kind aliases, converted to the canonical unit, stamped
with a UTC instant. Blood pressure readings fan out into a systolic and a
diastolic sample at the same instant.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from services.health_ingest.errors import FieldMissing
from services.health_ingest.fields import as_float, first_present, timestamp_from, to_utc
from services.health_ingest.metric_types import BiomarkerKind
from services.health_ingest.units import convert

SOURCE_HEALTH_AUTO_EXPORT = "health-auto-export"

GENERIC_VALUE_KEYS = ("qty", "value", "Avg", "avg", "count")

# Provider-specific names tried before the generic ones.
KIND_VALUE_KEYS = {
    BiomarkerKind.HEART_RATE: ("bpm",),
    BiomarkerKind.RESTING_HEART_RATE: ("bpm",),
    BiomarkerKind.HRV: ("ms", "rmssd", "sdnn"),
    BiomarkerKind.BLOOD_GLUCOSE: ("mgdL", "mg_dl"),
    BiomarkerKind.OXYGEN_SATURATION: ("percent",),
    BiomarkerKind.SLEEP_HOURS: ("totalSleep", "total_sleep", "asleep"),
    BiomarkerKind.BLOOD_PRESSURE_SYSTOLIC: ("systolic", "sys", "sbp"),
    BiomarkerKind.BLOOD_PRESSURE_DIASTOLIC: ("diastolic", "dia", "dbp"),
}

SYSTOLIC_KEYS = KIND_VALUE_KEYS[BiomarkerKind.BLOOD_PRESSURE_SYSTOLIC]
DIASTOLIC_KEYS = KIND_VALUE_KEYS[BiomarkerKind.BLOOD_PRESSURE_DIASTOLIC]


@dataclass(frozen=True)
class BiomarkerSample:
    kind: BiomarkerKind
    value: float
    unit: str
    recorded_at: datetime  # UTC


def extract_value(point: Dict[str, Any], kind: BiomarkerKind) -> Optional[float]:
    keys = KIND_VALUE_KEYS.get(kind, ()) + GENERIC_VALUE_KEYS
    for key in keys:
        number = as_float(point.get(key))
        if number is not None:
            return number
    return None


def _sample(kind: BiomarkerKind, value: float, unit: Optional[str], recorded_at: datetime) -> BiomarkerSample:
    converted, canonical_unit = convert(value, unit, kind)
    return BiomarkerSample(kind=kind, value=converted, unit=canonical_unit, recorded_at=recorded_at)


def build_samples(
    point: Dict[str, Any],
    kind: BiomarkerKind,
    envelope_unit: Optional[str] = None,
) -> List[BiomarkerSample]:
    """
    Normalize one raw point of a scalar metric.

    Raises:
        FieldMissing: no parseable timestamp, or no numeric value.
    """
    recorded_at = timestamp_from(point)
    if recorded_at is None:
        raise FieldMissing("date", point)
    recorded_at = to_utc(recorded_at)
    unit = first_present(point, "units", "unit") or envelope_unit

    if kind == BiomarkerKind.BLOOD_PRESSURE:
        return split_blood_pressure(point, recorded_at)

    value = extract_value(point, kind)
    if value is None:
        raise FieldMissing("qty", point)
    return [_sample(kind, value, unit, recorded_at)]


def split_blood_pressure(point: Dict[str, Any], recorded_at: datetime) -> List[BiomarkerSample]:
    """One reading -> systolic + diastolic samples sharing the reading's instant."""
    samples = []
    systolic = as_float(first_present(point, *SYSTOLIC_KEYS))
    if systolic is not None:
        samples.append(_sample(BiomarkerKind.BLOOD_PRESSURE_SYSTOLIC, systolic, "mmHg", recorded_at))
    diastolic = as_float(first_present(point, *DIASTOLIC_KEYS))
    if diastolic is not None:
        samples.append(_sample(BiomarkerKind.BLOOD_PRESSURE_DIASTOLIC, diastolic, "mmHg", recorded_at))
    if not samples:
        raise FieldMissing("systolic", point)
    return samples
