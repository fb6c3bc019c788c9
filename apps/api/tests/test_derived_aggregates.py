"""
Tests for computed body fat and goal progress after ingest.
"""
from datetime import date, datetime, timezone
from unittest.mock import MagicMock

import pytest

from models import Biomarker, Goal
from services.health_ingest.derived import DerivedAggregateUpdater, body_fat_percentage, goal_metric_for
from services.health_ingest.errors import ConversionImplausible
from services.health_ingest.repository import IngestionRepository
from tests.ingest_helpers import as_utc


def _seed(db, athlete, kind, value, when, source="health-auto-export", unit="lbs"):
    IngestionRepository(db).upsert_biomarker(athlete.id, kind, value, unit, when, source)
    db.commit()


class TestBodyFatFormula:
    def test_formula(self):
        assert body_fat_percentage(180, 144) == 20.0

    def test_rounded_to_one_decimal(self):
        assert body_fat_percentage(181, 150) == 17.1

    @pytest.mark.parametrize("weight,lean", [(100, 30), (150, 160), (0, 10)])
    def test_implausible(self, weight, lean):
        with pytest.raises(ConversionImplausible):
            body_fat_percentage(weight, lean)


class TestBodyFatStep:
    def test_computes_and_does_not_duplicate(self, session_factory, db_session, test_athlete):
        when = datetime(2024, 3, 10, 13, 0, tzinfo=timezone.utc)
        _seed(db_session, test_athlete, "weight", 180, when)
        _seed(db_session, test_athlete, "lean-body-mass", 144, when)
        updater = DerivedAggregateUpdater(session_factory)

        first = updater.run(test_athlete.id, {"weight", "lean-body-mass"}, {date(2024, 3, 10)})
        second = updater.run(test_athlete.id, {"weight", "lean-body-mass"}, {date(2024, 3, 10)})

        assert first.body_fat_written == 1
        assert second.body_fat_written == 0
        rows = db_session.query(Biomarker).filter(Biomarker.kind == "body-fat-percentage").all()
        assert len(rows) == 1
        assert rows[0].value == 20.0
        assert rows[0].source == "calculated"
        assert rows[0].unit == "%"
        assert as_utc(rows[0].recorded_at) == datetime(2024, 3, 10, tzinfo=timezone.utc)

    def test_existing_measurement_is_respected(self, session_factory, db_session, test_athlete):
        when = datetime(2024, 3, 10, 13, 0, tzinfo=timezone.utc)
        _seed(db_session, test_athlete, "weight", 180, when)
        _seed(db_session, test_athlete, "lean-body-mass", 144, when)
        _seed(db_session, test_athlete, "body-fat-percentage", 21.4, when, unit="%")

        result = DerivedAggregateUpdater(session_factory).run(test_athlete.id, {"weight"}, {date(2024, 3, 10)})

        assert result.body_fat_written == 0

    def test_window_is_trailing_from_latest_touched_date(self, session_factory, db_session, test_athlete):
        old = datetime(2024, 2, 20, 13, 0, tzinfo=timezone.utc)
        _seed(db_session, test_athlete, "weight", 180, old)
        _seed(db_session, test_athlete, "lean-body-mass", 144, old)

        result = DerivedAggregateUpdater(session_factory, lookback_days=7).run(
            test_athlete.id, {"weight"}, {date(2024, 3, 10)}
        )

        assert result.body_fat_written == 0

    def test_implausible_value_is_dropped(self, session_factory, db_session, test_athlete):
        when = datetime(2024, 3, 10, 13, 0, tzinfo=timezone.utc)
        _seed(db_session, test_athlete, "weight", 100, when)
        _seed(db_session, test_athlete, "lean-body-mass", 20, when)

        result = DerivedAggregateUpdater(session_factory).run(test_athlete.id, {"weight"}, {date(2024, 3, 10)})

        assert result.body_fat_written == 0
        assert db_session.query(Biomarker).filter(Biomarker.kind == "body-fat-percentage").count() == 0


class TestGoalStep:
    def test_blood_pressure_components_share_a_goal(self):
        assert goal_metric_for("blood-pressure-systolic") == "blood-pressure"
        assert goal_metric_for("blood-pressure-diastolic") == "blood-pressure"
        assert goal_metric_for("weight") == "weight"

    def test_pushes_latest_value(self, session_factory, db_session, test_athlete):
        goal = Goal(athlete_id=test_athlete.id, metric_type="blood-pressure", target_value=120, direction="decrease")
        db_session.add(goal)
        db_session.commit()
        when = datetime(2024, 3, 10, 8, 0, tzinfo=timezone.utc)
        _seed(db_session, test_athlete, "blood-pressure-systolic", 128, when, unit="mmHg")
        _seed(db_session, test_athlete, "blood-pressure-diastolic", 82, when, unit="mmHg")

        result = DerivedAggregateUpdater(session_factory).run(
            test_athlete.id, {"blood-pressure-systolic", "blood-pressure-diastolic"}, {date(2024, 3, 10)}
        )

        assert result.goals_updated == 1
        db_session.expire_all()
        refreshed = db_session.get(Goal, goal.id)
        assert refreshed.current_value == 128
        assert refreshed.status == "active"

    def test_body_fat_goal_updated_when_computed(self, session_factory, db_session, test_athlete):
        goal = Goal(athlete_id=test_athlete.id, metric_type="body-fat-percentage", target_value=18, direction="decrease")
        db_session.add(goal)
        db_session.commit()
        when = datetime(2024, 3, 10, 13, 0, tzinfo=timezone.utc)
        _seed(db_session, test_athlete, "weight", 180, when)
        _seed(db_session, test_athlete, "lean-body-mass", 144, when)

        DerivedAggregateUpdater(session_factory).run(test_athlete.id, {"weight", "lean-body-mass"}, {date(2024, 3, 10)})

        db_session.expire_all()
        assert db_session.get(Goal, goal.id).current_value == 20.0


class TestBestEffort:
    def test_step_failure_is_logged_not_raised(self, session_factory, test_athlete, caplog):
        repo = MagicMock()
        repo.list_biomarkers_between.side_effect = RuntimeError("boom")
        repo.get_active_goals.return_value = []
        updater = DerivedAggregateUpdater(session_factory, repository_factory=lambda db: repo)

        result = updater.run(test_athlete.id, {"weight"}, {date(2024, 3, 10)})

        assert result.body_fat_written == 0
        assert "body_fat failed: boom" in caplog.text
