"""
Raw Event Warehouse

Every data point received is appended to `health_event_raw` before it is
routed, whatever its type: supported kinds, types we do not model yet
(dietary energy, VO2 max, ...) and kinds switched off by the routing lists
are all kept, so they can be replayed once they are supported.

Duplicates are suppressed by a deterministic idempotency key:

    sha256(athlete | event type | UTC instant | stable hash of the point)
"""
import hashlib
import json
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from services.health_ingest.fields import TIMESTAMP_KEYS, timestamp_from, to_utc
from services.health_ingest.payload_format import MetricEnvelope

RAW_TIMESTAMP_KEYS = TIMESTAMP_KEYS + ("inBedStart", "sleepStart", "time_start", "calendar_date")


@dataclass(frozen=True)
class RawEvent:
    event_type: str
    recorded_at: Optional[datetime]
    payload: Dict[str, Any]
    idempotency_key: str


def normalize_event_type(name: str) -> str:
    """'Heart Rate' / 'heart-rate' / 'heart_rate' -> 'heart_rate'."""
    normalized = re.sub(r"[\s\-]+", "_", (name or "").strip().lower())
    return re.sub(r"[^a-z0-9_]", "", normalized) or "unknown"


def stable_value_hash(value: Any) -> str:
    """Hash that ignores key order, so the same point always hashes the same."""
    encoded = json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()[:16]


def idempotency_key(athlete_id, event_type: str, recorded_at: Optional[datetime], payload: Any) -> str:
    parts = [
        str(athlete_id),
        event_type,
        recorded_at.isoformat() if recorded_at is not None else "",
        stable_value_hash(payload),
    ]
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


def envelope_points(envelope: MetricEnvelope) -> List[Dict[str, Any]]:
    """The points as received; a bare metric object is its own single point."""
    if envelope.data or isinstance(envelope.raw.get("data"), list):
        return list(envelope.data)
    return [envelope.raw] if envelope.raw else []


def build_raw_events(athlete_id, envelope: MetricEnvelope) -> List[RawEvent]:
    event_type = normalize_event_type(envelope.name)
    events = []
    for point in envelope_points(envelope):
        recorded_at = timestamp_from(point, RAW_TIMESTAMP_KEYS)
        if recorded_at is not None:
            recorded_at = to_utc(recorded_at)
        events.append(RawEvent(
            event_type=event_type,
            recorded_at=recorded_at,
            payload=point,
            idempotency_key=idempotency_key(athlete_id, event_type, recorded_at, point),
        ))
    return events
