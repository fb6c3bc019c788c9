"""
Junction event dispatcher.

Junction delivers one event per webhook call:

    {"event_type": "daily.data.sleep.created", "user_id": ..., "client_user_id": ..., "data": {...}}

Lifecycle events (provider connections, historical backfill completion) are
acknowledged without writes. `daily.data.<resource>.*` events are reshaped
into the same metric envelopes Health Auto Export produces and handed to the
pipeline, so both providers share one set of write paths.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta, timezone
from typing import Any, Dict, List, Optional

from services.health_ingest.fields import as_float, first_present, parse_timestamp
from services.health_ingest.payload_format import MetricEnvelope
from services.health_ingest.pipeline import HealthIngestPipeline, IngestResult

logger = logging.getLogger(__name__)

SOURCE_JUNCTION = "junction"

SECONDS_PER_HOUR = 3600.0


@dataclass(frozen=True)
class ProviderEventOutcome:
    status: str  # 'acknowledged', 'processed', 'ignored'
    event_type: str
    result: Optional[IngestResult] = None

    def as_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"status": self.status}
        if self.result is not None:
            body.update({
                "biomarkersCount": self.result.biomarkers_count,
                "sleepSessionsCount": self.result.sleep_sessions_count,
                "workoutSessionsCount": self.result.workout_sessions_count,
            })
        return body


def _records(data: Any) -> List[Dict[str, Any]]:
    """Events carry one flat record; tolerate a wrapped list as well."""
    if isinstance(data, list):
        return [r for r in data if isinstance(r, dict)]
    if isinstance(data, dict):
        inner = data.get("data")
        if isinstance(inner, list):
            return [r for r in inner if isinstance(r, dict)]
        return [data]
    return []


def _record_time(record: Dict[str, Any]) -> Any:
    return first_present(record, "timestamp", "date", "calendar_date", "time_start")


def _hours(record: Dict[str, Any], key: str) -> Optional[float]:
    seconds = as_float(record.get(key))
    return seconds / SECONDS_PER_HOUR if seconds is not None else None


def _local_iso(value: Any, offset_seconds: Any) -> Any:
    """Shift a UTC instant into the sleeper's own offset so night keys use local time."""
    parsed = parse_timestamp(value)
    offset = as_float(offset_seconds)
    if parsed is None or offset is None:
        return value
    return parsed.astimezone(timezone(timedelta(seconds=int(offset)))).isoformat()


def _workout_envelopes(records: List[Dict[str, Any]]) -> List[MetricEnvelope]:
    points = []
    for r in records:
        sport = r.get("sport") if isinstance(r.get("sport"), dict) else {}
        point = {
            "id": r.get("id"),
            "name": sport.get("name") or r.get("title") or r.get("sport"),
            "start": r.get("time_start"),
            "end": r.get("time_end"),
            "avgHeartRate": r.get("average_hr"),
            "maxHeartRate": r.get("max_hr"),
        }
        if r.get("distance") is not None:
            point["distance"] = {"qty": r.get("distance"), "units": "m"}
        if r.get("calories") is not None:
            point["activeEnergyBurned"] = {"qty": r.get("calories"), "units": "kcal"}
        points.append(point)
    return [MetricEnvelope(name="workout", data=points)]


def _sleep_envelopes(records: List[Dict[str, Any]]) -> List[MetricEnvelope]:
    points = []
    for r in records:
        offset = r.get("timezone_offset")
        points.append({
            "inBedStart": _local_iso(first_present(r, "bedtime_start", "start"), offset),
            "inBedEnd": _local_iso(first_present(r, "bedtime_stop", "end"), offset),
            "awake": _hours(r, "awake"),
            "core": _hours(r, "light"),
            "deep": _hours(r, "deep"),
            "rem": _hours(r, "rem"),
            "sleepScore": r.get("score"),
        })
    return [MetricEnvelope(name="sleep_analysis", data=points)]


def _scalar_envelope(name: str, records: List[Dict[str, Any]]) -> List[MetricEnvelope]:
    points = [
        {"date": _record_time(r), "qty": r.get("value"), "units": r.get("unit")}
        for r in records
    ]
    return [MetricEnvelope(name=name, data=points)]


def _body_envelopes(records: List[Dict[str, Any]]) -> List[MetricEnvelope]:
    weights, fats, lean = [], [], []
    for r in records:
        when = _record_time(r)
        if r.get("weight") is not None:
            weights.append({"date": when, "qty": r["weight"], "units": "kg"})
        elif r.get("value") is not None:
            weights.append({"date": when, "qty": r["value"], "units": r.get("unit") or "kg"})
        if r.get("fat") is not None:
            fats.append({"date": when, "qty": r["fat"], "units": "%"})
        if r.get("lean_body_mass") is not None:
            lean.append({"date": when, "qty": r["lean_body_mass"], "units": "kg"})
    envelopes = []
    if weights:
        envelopes.append(MetricEnvelope(name="weight", data=weights))
    if fats:
        envelopes.append(MetricEnvelope(name="body_fat_percentage", data=fats))
    if lean:
        envelopes.append(MetricEnvelope(name="lean_body_mass", data=lean))
    return envelopes


def _blood_pressure_envelopes(records: List[Dict[str, Any]]) -> List[MetricEnvelope]:
    points = [
        {"date": _record_time(r), "systolic": r.get("systolic"), "diastolic": r.get("diastolic")}
        for r in records
    ]
    return [MetricEnvelope(name="blood_pressure", data=points)]


RESOURCE_BUILDERS = {
    "workouts": _workout_envelopes,
    "sleep": _sleep_envelopes,
    "heartrate": lambda records: _scalar_envelope("heart_rate", records),
    "glucose": lambda records: _scalar_envelope("blood_glucose", records),
    "weight": _body_envelopes,
    "body": _body_envelopes,
    "blood_pressure": _blood_pressure_envelopes,
}


def envelopes_for_event(event_type: str, data: Any) -> Optional[List[MetricEnvelope]]:
    """Envelopes for a `daily.data.<resource>.*` event, or None if the resource is not handled."""
    parts = event_type.split(".")
    if len(parts) < 3 or parts[0] != "daily" or parts[1] != "data":
        return None
    builder = RESOURCE_BUILDERS.get(parts[2])
    if builder is None:
        return None
    return builder(_records(data))


def dispatch_event(pipeline: HealthIngestPipeline, athlete_id, event: Dict[str, Any]) -> ProviderEventOutcome:
    event_type = str(event.get("event_type") or "")

    if event_type.startswith("provider.connection.") or event_type.startswith("historical.data."):
        logger.info(f"Junction lifecycle event {event_type} for athlete {athlete_id}")
        return ProviderEventOutcome("acknowledged", event_type)

    envelopes = envelopes_for_event(event_type, event.get("data"))
    if envelopes is None:
        logger.info(f"Ignoring Junction event {event_type}")
        return ProviderEventOutcome("ignored", event_type)

    result = pipeline.ingest_envelopes(athlete_id, envelopes, SOURCE_JUNCTION)
    return ProviderEventOutcome("processed", event_type, result)
