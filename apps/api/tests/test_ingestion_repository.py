"""
Tests for the ingestion repository's idempotent writes and goal updates.
"""
from datetime import date, datetime, timedelta, timezone

from models import Athlete, Biomarker, Goal, HealthEventRaw, SleepSession
from services.health_ingest.repository import IngestionRepository

T = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)


def _night(score=80, total=420):
    return {
        "night_date": date(2024, 3, 10),
        "bedtime": datetime(2024, 3, 10, 23, 0, tzinfo=timezone.utc),
        "waketime": datetime(2024, 3, 11, 7, 0, tzinfo=timezone.utc),
        "total_minutes": total,
        "awake_minutes": 20,
        "light_minutes": 240,
        "deep_minutes": 90,
        "rem_minutes": 90,
        "sleep_score": score,
        "quality": "Good",
        "source": "health-auto-export",
    }


class TestBiomarkerUpsert:
    def test_same_identity_overwrites(self, db_session, test_athlete):
        repo = IngestionRepository(db_session)
        repo.upsert_biomarker(test_athlete.id, "weight", 154.0, "lbs", T, "health-auto-export")
        repo.upsert_biomarker(test_athlete.id, "weight", 155.5, "lbs", T, "health-auto-export")
        db_session.commit()

        rows = db_session.query(Biomarker).all()
        assert len(rows) == 1
        assert rows[0].value == 155.5

    def test_different_source_is_a_different_sample(self, db_session, test_athlete):
        repo = IngestionRepository(db_session)
        repo.upsert_biomarker(test_athlete.id, "weight", 154.0, "lbs", T, "health-auto-export")
        repo.upsert_biomarker(test_athlete.id, "weight", 154.0, "lbs", T, "junction")
        db_session.commit()

        assert db_session.query(Biomarker).count() == 2

    def test_latest_and_presence_queries(self, db_session, test_athlete):
        repo = IngestionRepository(db_session)
        repo.upsert_biomarker(test_athlete.id, "hrv", 40, "ms", T - timedelta(days=1), "health-auto-export")
        repo.upsert_biomarker(test_athlete.id, "hrv", 52, "ms", T, "health-auto-export")
        db_session.commit()

        assert repo.get_latest_biomarker(test_athlete.id, "hrv").value == 52
        assert repo.get_latest_biomarker(test_athlete.id, "weight") is None
        assert repo.has_biomarker_on(test_athlete.id, "hrv", date(2024, 3, 9))
        assert not repo.has_biomarker_on(test_athlete.id, "hrv", date(2024, 3, 8))

        window = repo.list_biomarkers_between(
            test_athlete.id, ["hrv"], T - timedelta(days=2), T + timedelta(seconds=1)
        )
        assert [b.value for b in window] == [40, 52]


class TestRawEventInsert:
    def test_duplicate_key_is_suppressed(self, db_session, test_athlete):
        repo = IngestionRepository(db_session)
        args = (test_athlete.id, "heart_rate", T, {"Avg": 62}, "health-auto-export", "k" * 64)

        assert repo.insert_raw_event(*args) is True
        assert repo.insert_raw_event(*args) is False
        db_session.commit()

        row = db_session.query(HealthEventRaw).one()
        assert row.payload == {"Avg": 62}

    def test_key_is_scoped_to_athlete(self, db_session, test_athlete):
        other = Athlete(email="other@example.com", display_name="Other", webhook_key="hae-other")
        db_session.add(other)
        db_session.commit()
        repo = IngestionRepository(db_session)
        for athlete in (test_athlete, other):
            assert repo.insert_raw_event(athlete.id, "steps", None, {"qty": 1}, "junction", "same-key")
        db_session.commit()

        assert db_session.query(HealthEventRaw).count() == 2


class TestSleepUpsert:
    def test_one_row_per_night(self, db_session, test_athlete):
        repo = IngestionRepository(db_session)
        repo.upsert_sleep_session(test_athlete.id, _night(score=70))
        repo.upsert_sleep_session(test_athlete.id, _night(score=88, total=450))
        db_session.commit()

        rows = db_session.query(SleepSession).all()
        assert len(rows) == 1
        assert rows[0].sleep_score == 88
        assert rows[0].total_minutes == 450


class TestGoalProgress:
    def _goal(self, db, athlete, **kwargs):
        goal = Goal(athlete_id=athlete.id, **kwargs)
        db.add(goal)
        db.commit()
        return goal

    def test_increase_goal_achieved(self, db_session, test_athlete):
        goal = self._goal(db_session, test_athlete, metric_type="steps", target_value=10000)
        repo = IngestionRepository(db_session)

        repo.update_goal_progress(goal, 10500)
        db_session.commit()

        assert goal.current_value == 10500
        assert goal.status == "achieved"
        assert goal.achieved_at is not None

    def test_decrease_goal_not_yet_reached(self, db_session, test_athlete):
        goal = self._goal(db_session, test_athlete, metric_type="weight", target_value=150, direction="decrease")
        repo = IngestionRepository(db_session)

        repo.update_goal_progress(goal, 154.3)

        assert goal.status == "active"
        assert goal.current_value == 154.3

    def test_active_goals_only(self, db_session, test_athlete):
        self._goal(db_session, test_athlete, metric_type="hrv", target_value=60)
        self._goal(db_session, test_athlete, metric_type="hrv", target_value=50, status="achieved")
        repo = IngestionRepository(db_session)

        goals = repo.get_active_goals(test_athlete.id, "hrv")
        assert [g.target_value for g in goals] == [60]
