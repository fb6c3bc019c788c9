"""
Shared payload builders and assertions for ingest tests.
"""
from datetime import datetime, timezone
from typing import List

from models import Biomarker, HealthEventRaw, SleepSession, WorkoutSession


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything is stored in UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def heart_rate_metric(points=None) -> dict:
    return {
        "name": "heart_rate",
        "units": "count/min",
        "data": points or [
            {"date": "2024-03-10 08:00:00 -0500", "Min": 55, "Avg": 62, "Max": 70},
            {"date": "2024-03-10 09:00:00 -0500", "Min": 60, "Avg": 75, "Max": 90},
        ],
    }


def weight_metric() -> dict:
    return {
        "name": "weight_body_mass",
        "units": "kg",
        "data": [{"date": "2024-03-10 07:00:00 -0500", "qty": 70}],
    }


def sample_metrics() -> List[dict]:
    return [heart_rate_metric(), weight_metric()]


def snapshot(db, athlete_id) -> dict:
    """Comparable view of everything stored for an athlete."""
    biomarkers = sorted(
        (b.kind, round(b.value, 4), b.unit, b.source, as_utc(b.recorded_at))
        for b in db.query(Biomarker).filter(Biomarker.athlete_id == athlete_id).all()
    )
    nights = sorted(
        (s.night_date, s.total_minutes, s.deep_minutes, s.rem_minutes, s.light_minutes, s.sleep_score, s.quality)
        for s in db.query(SleepSession).filter(SleepSession.athlete_id == athlete_id).all()
    )
    workouts = sorted(
        (w.workout_type, as_utc(w.start_time), w.duration_minutes, w.source_id)
        for w in db.query(WorkoutSession).filter(WorkoutSession.athlete_id == athlete_id).all()
    )
    raw_events = sorted(
        (r.event_type, r.idempotency_key)
        for r in db.query(HealthEventRaw).filter(HealthEventRaw.athlete_id == athlete_id).all()
    )
    return {"biomarkers": biomarkers, "sleep": nights, "workouts": workouts, "raw_events": raw_events}
