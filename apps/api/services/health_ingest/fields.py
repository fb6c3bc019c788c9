"""
Field alias helpers shared by the normalizers.

Provider payloads name the same field several ways (camelCase, snake_case,
spaced). These helpers pick the first populated alias and coerce values
without guessing beyond what the providers actually send.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, Tuple

from services.health_ingest.errors import FieldMissing

# HAE export format first; everything else goes through fromisoformat.
_TIMESTAMP_FORMATS = (
    "%Y-%m-%d %H:%M:%S %z",
    "%Y-%m-%d %H:%M:%S%z",
    "%Y-%m-%d %H:%M %z",
)

# Epoch values above this are milliseconds.
_EPOCH_MS_THRESHOLD = 100_000_000_000

TIMESTAMP_KEYS = ("date", "timestamp", "startDate", "start_date", "start")


def first_present(point: Dict[str, Any], *keys: str) -> Any:
    """Value of the first key that is present and not None/empty string."""
    for key in keys:
        value = point.get(key)
        if value is not None and value != "":
            return value
    return None


def as_float(value: Any) -> Optional[float]:
    """Numeric coercion that accepts numeric strings and rejects booleans."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def quantity(value: Any) -> Tuple[Optional[float], Optional[str]]:
    """
    Read a bare number or a nested {qty, units} / {value, unit} structure.

    Returns (number, unit); unit is None for bare numbers.
    """
    if isinstance(value, dict):
        number = as_float(first_present(value, "qty", "value", "quantity"))
        unit = first_present(value, "units", "unit")
        return number, unit
    return as_float(value), None


def nested_float(point: Dict[str, Any], key: str, *inner_keys: str) -> Optional[float]:
    """`point[key][inner]` for the first inner key present, e.g. heartRate.avg."""
    container = point.get(key)
    if not isinstance(container, dict):
        return None
    for inner in inner_keys:
        number, _ = quantity(container.get(inner))
        if number is not None:
            return number
    return None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a provider timestamp into an aware datetime.

    The original UTC offset is preserved so callers can reason about local
    wall-clock time (sleep night keys). Naive values are taken as UTC.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        seconds = value / 1000.0 if value > _EPOCH_MS_THRESHOLD else float(value)
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        parsed = None
        for fmt in _TIMESTAMP_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
        if parsed is None:
            if text.endswith("Z"):
                text = text[:-1] + "+00:00"
            try:
                parsed = datetime.fromisoformat(text)
            except ValueError:
                return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def timestamp_from(point: Dict[str, Any], keys: Iterable[str] = TIMESTAMP_KEYS) -> Optional[datetime]:
    """First alias that parses as a timestamp."""
    for key in keys:
        parsed = parse_timestamp(point.get(key))
        if parsed is not None:
            return parsed
    return None


def require_timestamp(point: Dict[str, Any], keys: Iterable[str], field: str) -> datetime:
    parsed = timestamp_from(point, keys)
    if parsed is None:
        raise FieldMissing(field, point)
    return parsed
