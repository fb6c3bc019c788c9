"""
Unit Converter

Pure functions mapping (value, source unit, kind) -> (value, canonical unit).

Canonical storage units:
    weight, lean body mass        lbs
    blood glucose                 mg/dL
    body temperature              °F
    active, basal, total energy   kcal
    height                        in
    everything else               fixed default per kind (bpm, ms, steps, ...)

Unknown incoming unit strings are treated as already canonical. Providers
populate unit metadata inconsistently, so pass-through is the safe default.
"""
from typing import Optional, Tuple

from services.health_ingest.metric_types import BiomarkerKind

KG_TO_LBS = 2.20462
MMOL_TO_MGDL = 18.018
KJ_PER_KCAL = 4.184
METERS_PER_KM = 1000.0
METERS_PER_MILE = 1609.344
CM_PER_INCH = 2.54

CANONICAL_UNITS = {
    BiomarkerKind.HEART_RATE: "bpm",
    BiomarkerKind.RESTING_HEART_RATE: "bpm",
    BiomarkerKind.HRV: "ms",
    BiomarkerKind.BLOOD_GLUCOSE: "mg/dL",
    BiomarkerKind.WEIGHT: "lbs",
    BiomarkerKind.LEAN_BODY_MASS: "lbs",
    BiomarkerKind.BODY_FAT_PERCENTAGE: "%",
    BiomarkerKind.STEPS: "steps",
    BiomarkerKind.ACTIVE_ENERGY: "kcal",
    BiomarkerKind.BASAL_ENERGY: "kcal",
    BiomarkerKind.TOTAL_ENERGY: "kcal",
    BiomarkerKind.HEIGHT: "in",
    BiomarkerKind.BLOOD_PRESSURE: "mmHg",
    BiomarkerKind.BLOOD_PRESSURE_SYSTOLIC: "mmHg",
    BiomarkerKind.BLOOD_PRESSURE_DIASTOLIC: "mmHg",
    BiomarkerKind.OXYGEN_SATURATION: "%",
    BiomarkerKind.BODY_TEMPERATURE: "°F",
    BiomarkerKind.RESPIRATORY_RATE: "breaths/min",
    BiomarkerKind.SLEEP_HOURS: "hours",
}

_KG_UNITS = {"kg", "kgs", "kilogram", "kilograms"}
_MMOL_UNITS = {"mmol/l", "mmol", "mmol/liter"}
_CELSIUS_UNITS = {"°c", "ºc", "c", "degc", "celsius"}
_KJ_UNITS = {"kj", "kilojoule", "kilojoules"}
_KM_UNITS = {"km", "kilometer", "kilometers", "kilometre", "kilometres"}
_MILE_UNITS = {"mi", "mile", "miles"}
_METER_UNITS = {"m", "meter", "meters", "metre", "metres"}
_CM_UNITS = {"cm", "centimeter", "centimeters", "centimetre", "centimetres"}

_ENERGY_KINDS = (BiomarkerKind.ACTIVE_ENERGY, BiomarkerKind.BASAL_ENERGY, BiomarkerKind.TOTAL_ENERGY)


def _norm_unit(unit: Optional[str]) -> str:
    return (unit or "").strip().lower()


def convert(value: float, unit: Optional[str], kind: BiomarkerKind) -> Tuple[float, str]:
    """
    Convert a raw provider value into the canonical unit for `kind`.

    >>> convert(70, "kg", BiomarkerKind.WEIGHT)
    (154.32, 'lbs')
    >>> convert(5.5, "mmol/L", BiomarkerKind.BLOOD_GLUCOSE)
    (99.1, 'mg/dL')
    """
    source = _norm_unit(unit)
    value = float(value)

    if kind in (BiomarkerKind.WEIGHT, BiomarkerKind.LEAN_BODY_MASS) and source in _KG_UNITS:
        value = value * KG_TO_LBS
    elif kind == BiomarkerKind.BLOOD_GLUCOSE and source in _MMOL_UNITS:
        value = value * MMOL_TO_MGDL
    elif kind == BiomarkerKind.BODY_TEMPERATURE and source in _CELSIUS_UNITS:
        value = value * 9 / 5 + 32
    elif kind in _ENERGY_KINDS and source in _KJ_UNITS:
        value = value / KJ_PER_KCAL
    elif kind == BiomarkerKind.HEIGHT and source in _CM_UNITS:
        value = value / CM_PER_INCH
    elif kind == BiomarkerKind.HEIGHT and source in _METER_UNITS:
        value = value * 100 / CM_PER_INCH

    return round(value, 2), CANONICAL_UNITS.get(kind, unit or "")


def to_meters(value: float, unit: Optional[str]) -> float:
    """Distance from a nested {qty, units} structure; HAE defaults to km."""
    source = _norm_unit(unit)
    value = float(value)
    if source in _METER_UNITS:
        return value
    if source in _MILE_UNITS:
        return value * METERS_PER_MILE
    if source in _KM_UNITS or not source:
        return value * METERS_PER_KM
    return value


def to_kcal(value: float, unit: Optional[str]) -> float:
    """Energy in kcal; kJ converted, anything else passed through."""
    value = float(value)
    if _norm_unit(unit) in _KJ_UNITS:
        return value / KJ_PER_KCAL
    return value
