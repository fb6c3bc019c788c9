"""
End-to-end tests for the ingest pipeline against a real (SQLite) database,
plus concurrency behavior against a fake repository.
"""
import threading
import time
from datetime import date, datetime, timezone
from unittest.mock import MagicMock

import pytest

from core.events import EVENT_SLEEP_NIGHT_UPSERTED, subscribe, unsubscribe
from models import Biomarker, HealthEventRaw, SleepSession, WorkoutSession
from services.health_ingest import HealthIngestPipeline, PayloadFormatError
from services.health_ingest.derived import DerivedResult
from tests.ingest_helpers import as_utc, heart_rate_metric, sample_metrics, snapshot

FULL_EXPORT = {
    "data": {
        "metrics": [
            {
                "name": "heart_rate",
                "units": "count/min",
                "data": [
                    {"date": "2024-03-10 08:00:00 -0500", "Min": 55, "Avg": 62, "Max": 70},
                    {"date": "2024-03-10 09:00:00 -0500", "Min": 60, "Avg": 75, "Max": 90},
                ],
            },
            {
                "name": "blood_pressure",
                "data": [{"date": "2024-03-10 08:15:00 -0500", "systolic": 121, "diastolic": 78}],
            },
            {"name": "weight_body_mass", "units": "lbs", "data": [{"date": "2024-03-10 07:00:00 -0500", "qty": 180}]},
            {"name": "lean_body_mass", "units": "lbs", "data": [{"date": "2024-03-10 07:00:00 -0500", "qty": 144}]},
            {
                "name": "sleep_analysis",
                "data": [
                    {"inBedStart": "2024-03-09 23:30:00 -0500", "inBedEnd": "2024-03-10 03:00:00 -0500", "deep": 1.0, "core": 2.0},
                    {"inBedStart": "2024-03-10 03:00:00 -0500", "inBedEnd": "2024-03-10 06:45:00 -0500", "deep": 0.5, "rem": 1.5, "core": 2.0},
                ],
            },
            {
                "name": "workouts",
                "data": [{
                    "id": "hk-1",
                    "name": "Outdoor Run",
                    "start": "2024-03-10 10:00:00 -0500",
                    "end": "2024-03-10 10:45:00 -0500",
                    "distance": {"qty": 8, "units": "km"},
                }],
            },
            {"name": "FooBarMetric", "data": [{"date": "2024-03-10", "qty": 1}]},
        ]
    }
}


class TestIngestPayload:
    def test_full_export(self, pipeline, db_session, test_athlete):
        result = pipeline.ingest_payload(test_athlete.id, FULL_EXPORT)

        # 2 heart rate + 2 blood pressure + weight + lean mass
        assert result.biomarkers_count == 6
        assert result.sleep_sessions_count == 1
        assert result.workout_sessions_count == 1
        assert result.skipped_envelopes == 1
        assert result.derived.body_fat_written == 1

        night = db_session.query(SleepSession).one()
        assert night.night_date == date(2024, 3, 9)
        assert night.deep_minutes == 90
        assert night.total_minutes == 420

        workout = db_session.query(WorkoutSession).one()
        assert workout.distance_m == 8000
        assert workout.source_type == "health-auto-export"

        kinds = {b.kind for b in db_session.query(Biomarker).all()}
        assert kinds == {
            "heart-rate",
            "blood-pressure-systolic",
            "blood-pressure-diastolic",
            "weight",
            "lean-body-mass",
            "body-fat-percentage",
        }

    def test_response_shape(self, pipeline, test_athlete):
        result = pipeline.ingest_payload(test_athlete.id, FULL_EXPORT)
        assert result.as_response() == {
            "success": True,
            "biomarkersCount": 6,
            "sleepSessionsCount": 1,
            "workoutSessionsCount": 1,
        }

    def test_ingesting_twice_is_idempotent(self, pipeline, db_session, test_athlete):
        pipeline.ingest_payload(test_athlete.id, FULL_EXPORT)
        once = snapshot(db_session, test_athlete.id)

        pipeline.ingest_payload(test_athlete.id, FULL_EXPORT)
        db_session.expire_all()
        twice = snapshot(db_session, test_athlete.id)

        assert once == twice
        assert len(twice["biomarkers"]) == 7  # 6 samples + computed body fat
        assert len(twice["raw_events"]) == 9  # every received point, FooBarMetric included

    @pytest.mark.parametrize("wrap", [
        lambda m: {"data": {"metrics": m}},
        lambda m: {"metrics": m},
        lambda m: m,
        lambda m: {"data": m},
        lambda m: {"payload": {"metrics_list": m}},
    ], ids=["data.metrics", "metrics", "root-list", "data-list", "nested-scan"])
    def test_payload_shapes_write_identically(self, wrap, pipeline, db_session, test_athlete):
        result = pipeline.ingest_payload(test_athlete.id, wrap(sample_metrics()))

        assert result.biomarkers_count == 3
        stored = snapshot(db_session, test_athlete.id)["biomarkers"]
        assert [(kind, value) for kind, value, *_ in stored] == [
            ("heart-rate", 62.0),
            ("heart-rate", 75.0),
            ("weight", 154.32),
        ]

    def test_blood_pressure_fan_out_shares_instant(self, pipeline, db_session, test_athlete):
        pipeline.ingest_payload(test_athlete.id, {"metrics": [{
            "name": "Blood Pressure",
            "data": [{"date": "2024-03-10 08:15:00 +0000", "systolic": 118, "diastolic": 76}],
        }]})

        rows = db_session.query(Biomarker).order_by(Biomarker.kind).all()
        assert [(r.kind, r.value) for r in rows] == [
            ("blood-pressure-diastolic", 76),
            ("blood-pressure-systolic", 118),
        ]
        assert as_utc(rows[0].recorded_at) == as_utc(rows[1].recorded_at)

    def test_unknown_metric_does_not_affect_other_counts(self, pipeline, test_athlete):
        with_unknown = sample_metrics() + [{"name": "FooBarMetric", "data": [{"date": "2024-03-10", "qty": 3}]}]

        result = pipeline.ingest_payload(test_athlete.id, {"metrics": with_unknown})

        assert result.biomarkers_count == 3
        assert result.skipped_envelopes == 1

    def test_bad_point_does_not_sink_siblings(self, pipeline, test_athlete):
        result = pipeline.ingest_payload(test_athlete.id, {"metrics": [{
            "name": "heart_rate",
            "data": [
                {"date": "2024-03-10 08:00:00 +0000", "Avg": 60},
                {"Avg": 61},
                {"date": "not a date", "Avg": 62},
                {"date": "2024-03-10 09:00:00 +0000", "Avg": 63},
            ],
        }]})

        assert result.biomarkers_count == 2
        assert result.dropped_points == 2

    def test_blocklisted_kind_is_skipped(self, session_factory, test_athlete):
        pipeline = HealthIngestPipeline(session_factory, max_workers=1, allowlist=[], blocklist=["weight"])

        result = pipeline.ingest_payload(test_athlete.id, {"metrics": sample_metrics()})

        assert result.biomarkers_count == 2

    def test_no_metric_list_raises(self, pipeline, test_athlete):
        with pytest.raises(PayloadFormatError):
            pipeline.ingest_payload(test_athlete.id, {"hello": "world"})

    def test_empty_metric_list_raises(self, pipeline, test_athlete):
        with pytest.raises(PayloadFormatError):
            pipeline.ingest_payload(test_athlete.id, {"data": {"metrics": []}})

    def test_sleep_interval_segments_write_a_night(self, pipeline, db_session, test_athlete):
        result = pipeline.ingest_payload(test_athlete.id, {"metrics": [{
            "name": "sleep_analysis",
            "units": "hr",
            "data": [
                {"startDate": "2024-03-09 23:30:00 -0500", "endDate": "2024-03-10 03:00:00 -0500", "qty": 3.5},
                {"startDate": "2024-03-10 03:00:00 -0500", "endDate": "2024-03-10 06:30:00 -0500", "qty": 3.5},
            ],
        }]})

        assert result.sleep_sessions_count == 1
        assert result.biomarkers_count == 0
        night = db_session.query(SleepSession).one()
        assert night.night_date == date(2024, 3, 9)
        assert night.total_minutes == 420
        assert db_session.query(Biomarker).count() == 0

    def test_sleep_write_announces_night(self, pipeline, test_athlete):
        seen = []

        def handler(athlete_id, night_date):
            seen.append((athlete_id, night_date))

        subscribe(EVENT_SLEEP_NIGHT_UPSERTED, handler)
        try:
            pipeline.ingest_payload(test_athlete.id, {"metrics": [FULL_EXPORT["data"]["metrics"][4]]})
        finally:
            unsubscribe(EVENT_SLEEP_NIGHT_UPSERTED, handler)

        assert seen == [(str(test_athlete.id), date(2024, 3, 9))]


class TestRawEvents:
    def test_unrouted_types_are_kept_raw(self, session_factory, db_session, test_athlete):
        pipeline = HealthIngestPipeline(session_factory, max_workers=1, allowlist=[], blocklist=["weight"])
        metrics = sample_metrics() + [
            {"name": "Dietary Energy", "units": "kcal", "data": [{"date": "2024-03-10 12:00:00 +0000", "qty": 650}]},
        ]

        result = pipeline.ingest_payload(test_athlete.id, {"metrics": metrics})

        assert result.biomarkers_count == 2
        assert result.raw_events == 4
        rows = db_session.query(HealthEventRaw).all()
        assert sorted(r.event_type for r in rows) == ["dietary_energy", "heart_rate", "heart_rate", "weight_body_mass"]
        dietary = next(r for r in rows if r.event_type == "dietary_energy")
        assert dietary.payload == {"date": "2024-03-10 12:00:00 +0000", "qty": 650}
        assert dietary.source == "health-auto-export"
        assert as_utc(dietary.recorded_at) == datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)

    def test_redelivery_is_suppressed(self, pipeline, db_session, test_athlete):
        first = pipeline.ingest_payload(test_athlete.id, {"metrics": sample_metrics()})
        second = pipeline.ingest_payload(test_athlete.id, {"metrics": sample_metrics()})

        assert (first.raw_events, first.raw_duplicates) == (3, 0)
        assert (second.raw_events, second.raw_duplicates) == (0, 3)
        assert db_session.query(HealthEventRaw).count() == 3

    def test_changed_value_is_a_new_event(self, pipeline, db_session, test_athlete):
        pipeline.ingest_payload(test_athlete.id, {"metrics": [heart_rate_metric([{"date": "2024-03-10 08:00:00 +0000", "Avg": 60}])]})
        pipeline.ingest_payload(test_athlete.id, {"metrics": [heart_rate_metric([{"date": "2024-03-10 08:00:00 +0000", "Avg": 61}])]})

        assert db_session.query(HealthEventRaw).count() == 2
        assert db_session.query(Biomarker).one().value == 61


class _RecordingRepository:
    """Fake repository that tracks how many writes run at once."""

    lock = threading.Lock()
    active = 0
    peak = 0
    writes = []

    def __init__(self, db):
        self.db = db

    def upsert_biomarker(self, athlete_id, kind, value, unit, recorded_at, source):
        cls = type(self)
        with cls.lock:
            cls.active += 1
            cls.peak = max(cls.peak, cls.active)
        time.sleep(0.02)
        with cls.lock:
            cls.active -= 1
            cls.writes.append((kind, value))

    def insert_raw_event(self, athlete_id, event_type, recorded_at, payload, source, idempotency_key):
        return True


class TestConcurrency:
    def test_points_run_in_parallel_and_counts_fold(self):
        _RecordingRepository.active = 0
        _RecordingRepository.peak = 0
        _RecordingRepository.writes = []
        derived = MagicMock()
        derived.run.return_value = DerivedResult()
        pipeline = HealthIngestPipeline(
            session_factory=MagicMock,
            repository_factory=_RecordingRepository,
            max_workers=4,
            derived_updater=derived,
            allowlist=[],
            blocklist=[],
        )
        points = [{"date": f"2024-03-10 {h:02d}:00:00 +0000", "qty": 60 + h} for h in range(12)]

        result = pipeline.ingest_payload("athlete-1", {"metrics": [{"name": "heart_rate", "data": points}]})

        assert result.biomarkers_count == 12
        assert result.raw_events == 12
        assert len(_RecordingRepository.writes) == 12
        assert 1 < _RecordingRepository.peak <= 4
        derived.run.assert_called_once()
        _, kinds, dates = derived.run.call_args[0]
        assert kinds == frozenset({"heart-rate"})
        assert dates == frozenset({date(2024, 3, 10)})
