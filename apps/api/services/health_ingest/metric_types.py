"""
Metric Type Mapper

Static lookup from provider metric names to canonical biomarker kinds.

Providers are inconsistent about naming ("Heart Rate", "heart_rate",
"heartRate", "HeartRateVariabilitySDNN"), so lookups are done on a collapsed
form: lowercase with every non-alphanumeric character removed. The alias
table below is written in readable form and collapsed once at import.
"""
import re
from enum import Enum
from typing import Dict, Iterable, Optional


class BiomarkerKind(str, Enum):
    """Canonical biomarker vocabulary (stored as the enum value)."""
    HEART_RATE = "heart-rate"
    RESTING_HEART_RATE = "resting-heart-rate"
    HRV = "hrv"
    BLOOD_GLUCOSE = "blood-glucose"
    WEIGHT = "weight"
    LEAN_BODY_MASS = "lean-body-mass"
    BODY_FAT_PERCENTAGE = "body-fat-percentage"
    STEPS = "steps"
    ACTIVE_ENERGY = "active-energy"
    BASAL_ENERGY = "basal-energy"
    TOTAL_ENERGY = "total-energy"
    HEIGHT = "height"
    # Fan-out kind: never stored, split into systolic + diastolic samples.
    BLOOD_PRESSURE = "blood-pressure"
    BLOOD_PRESSURE_SYSTOLIC = "blood-pressure-systolic"
    BLOOD_PRESSURE_DIASTOLIC = "blood-pressure-diastolic"
    OXYGEN_SATURATION = "oxygen-saturation"
    BODY_TEMPERATURE = "body-temperature"
    RESPIRATORY_RATE = "respiratory-rate"
    # Only for providers that report sleep as a bare duration number.
    SLEEP_HOURS = "sleep-hours"


_ALIASES: Dict[BiomarkerKind, tuple] = {
    BiomarkerKind.HEART_RATE: ("heart_rate", "Heart Rate", "heartRate", "heartrate"),
    BiomarkerKind.RESTING_HEART_RATE: ("resting_heart_rate", "Resting Heart Rate", "restingHeartRate"),
    BiomarkerKind.HRV: (
        "hrv",
        "heart_rate_variability",
        "heart_rate_variability_sdnn",
        "Heart Rate Variability",
        "heartRateVariabilitySDNN",
    ),
    BiomarkerKind.BLOOD_GLUCOSE: ("blood_glucose", "Blood Glucose", "bloodGlucose", "glucose"),
    BiomarkerKind.WEIGHT: ("weight", "body_weight", "weight_body_mass", "Weight & Body Mass", "bodyMass", "body_mass"),
    BiomarkerKind.LEAN_BODY_MASS: ("lean_body_mass", "Lean Body Mass", "leanBodyMass"),
    BiomarkerKind.BODY_FAT_PERCENTAGE: ("body_fat_percentage", "Body Fat Percentage", "bodyFatPercentage", "body_fat"),
    BiomarkerKind.STEPS: ("steps", "step_count", "Step Count", "stepCount"),
    BiomarkerKind.ACTIVE_ENERGY: ("active_energy", "active_energy_burned", "Active Energy", "activeEnergyBurned"),
    BiomarkerKind.BASAL_ENERGY: (
        "basal_energy",
        "basal_energy_burned",
        "Basal Energy Burned",
        "basalEnergyBurned",
        "resting_energy",
        "Resting Energy",
    ),
    BiomarkerKind.TOTAL_ENERGY: ("total_energy", "total_energy_burned", "Total Energy", "totalEnergyBurned"),
    BiomarkerKind.HEIGHT: ("height", "Height", "body_height", "bodyHeight"),
    BiomarkerKind.BLOOD_PRESSURE: ("blood_pressure", "Blood Pressure", "bloodPressure"),
    BiomarkerKind.BLOOD_PRESSURE_SYSTOLIC: ("blood_pressure_systolic", "bloodPressureSystolic", "systolic"),
    BiomarkerKind.BLOOD_PRESSURE_DIASTOLIC: ("blood_pressure_diastolic", "bloodPressureDiastolic", "diastolic"),
    BiomarkerKind.OXYGEN_SATURATION: (
        "oxygen_saturation",
        "Oxygen Saturation",
        "oxygenSaturation",
        "blood_oxygen_saturation",
        "spo2",
    ),
    BiomarkerKind.BODY_TEMPERATURE: ("body_temperature", "Body Temperature", "bodyTemperature"),
    BiomarkerKind.RESPIRATORY_RATE: ("respiratory_rate", "Respiratory Rate", "respiratoryRate"),
    BiomarkerKind.SLEEP_HOURS: ("sleep_hours", "sleep_duration", "time_asleep", "sleepHours"),
}


def collapse_name(name: str) -> str:
    return re.sub(r"[^a-z0-9]", "", (name or "").lower())


_LOOKUP: Dict[str, BiomarkerKind] = {
    collapse_name(alias): kind
    for kind, aliases in _ALIASES.items()
    for alias in aliases + (kind.value,)
}


def lookup_kind(name: str) -> Optional[BiomarkerKind]:
    """Map a provider metric name to a canonical kind, or None if unknown."""
    if not name:
        return None
    return _LOOKUP.get(collapse_name(name))


def is_kind_routed(
    kind: BiomarkerKind,
    allowlist: Iterable[str] = (),
    blocklist: Iterable[str] = (),
) -> bool:
    """
    Operator kill-switch for individual kinds.

    Blocklisted kinds are never routed. When an allowlist is set, only the
    listed kinds are routed.
    """
    blocked = set(blocklist)
    allowed = set(allowlist)
    if kind.value in blocked:
        return False
    if allowed and kind.value not in allowed:
        return False
    return True


def resolve_kind(
    name: str,
    allowlist: Iterable[str] = (),
    blocklist: Iterable[str] = (),
) -> Optional[BiomarkerKind]:
    """lookup_kind() filtered through the routing allow/block lists."""
    kind = lookup_kind(name)
    if kind is None:
        return None
    if not is_kind_routed(kind, allowlist, blocklist):
        return None
    return kind
