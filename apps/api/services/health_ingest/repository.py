"""
Ingestion repository.

All writes the ingest pipeline performs go through here, so normalizers never
touch ORM queries directly. Writes are idempotent at the database level:
biomarkers and sleep nights upsert on their natural keys, workouts insert with
ON CONFLICT DO NOTHING on (athlete, source_type, source_id).

The repository does not commit; the caller owns the session and its
transaction boundary (one unit of work per session).
"""
import logging
import uuid
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import and_, or_, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from models import Biomarker, Goal, HealthEventRaw, SleepSession, TrainingSchedule, WorkoutSession

logger = logging.getLogger(__name__)

WEEKDAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


def day_bounds(day: date):
    """[midnight, next midnight) in UTC for a calendar date."""
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


class IngestionRepository:
    def __init__(self, db: Session):
        self.db = db

    def _insert(self, table):
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(table)
        if dialect == "sqlite":
            return sqlite.insert(table)
        raise NotImplementedError(f"Upserts are not supported on dialect '{dialect}'")

    # --- Raw events ---

    def insert_raw_event(
        self,
        athlete_id: uuid.UUID,
        event_type: str,
        recorded_at: Optional[datetime],
        payload: Dict[str, Any],
        source: str,
        idempotency_key: str,
    ) -> bool:
        """Append a raw event. Returns False when the idempotency key is already stored."""
        table = HealthEventRaw.__table__
        stmt = (
            self._insert(table)
            .values(
                id=uuid.uuid4(),
                athlete_id=athlete_id,
                event_type=event_type,
                recorded_at=recorded_at,
                payload=payload,
                source=source,
                idempotency_key=idempotency_key,
            )
            .on_conflict_do_nothing(index_elements=[table.c.athlete_id, table.c.idempotency_key])
            .returning(table.c.id)
        )
        return self.db.execute(stmt).first() is not None

    # --- Biomarkers ---

    def upsert_biomarker(
        self,
        athlete_id: uuid.UUID,
        kind: str,
        value: float,
        unit: str,
        recorded_at: datetime,
        source: str,
    ) -> None:
        """Insert a sample, or overwrite value/unit of the sample with the same identity."""
        table = Biomarker.__table__
        stmt = self._insert(table).values(
            id=uuid.uuid4(),
            athlete_id=athlete_id,
            kind=kind,
            value=float(value),
            unit=unit,
            source=source,
            recorded_at=recorded_at,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.athlete_id, table.c.kind, table.c.recorded_at, table.c.source],
            set_={"value": stmt.excluded.value, "unit": stmt.excluded.unit},
        )
        self.db.execute(stmt)

    def list_biomarkers_between(
        self,
        athlete_id: uuid.UUID,
        kinds: Iterable[str],
        start: datetime,
        end: datetime,
    ) -> List[Biomarker]:
        """Samples of the given kinds with start <= recorded_at < end, oldest first."""
        return (
            self.db.query(Biomarker)
            .filter(
                Biomarker.athlete_id == athlete_id,
                Biomarker.kind.in_(list(kinds)),
                Biomarker.recorded_at >= start,
                Biomarker.recorded_at < end,
            )
            .order_by(Biomarker.recorded_at.asc())
            .all()
        )

    def get_latest_biomarker(self, athlete_id: uuid.UUID, kind: str) -> Optional[Biomarker]:
        return (
            self.db.query(Biomarker)
            .filter(Biomarker.athlete_id == athlete_id, Biomarker.kind == kind)
            .order_by(Biomarker.recorded_at.desc())
            .first()
        )

    def has_biomarker_on(self, athlete_id: uuid.UUID, kind: str, day: date) -> bool:
        start, end = day_bounds(day)
        return (
            self.db.query(Biomarker.id)
            .filter(
                Biomarker.athlete_id == athlete_id,
                Biomarker.kind == kind,
                Biomarker.recorded_at >= start,
                Biomarker.recorded_at < end,
            )
            .first()
            is not None
        )

    # --- Sleep ---

    def upsert_sleep_session(self, athlete_id: uuid.UUID, night: Dict[str, Any]) -> None:
        """
        One row per (athlete, night_date). A later delivery for the same night
        replaces the stored aggregate with the newly merged one.
        """
        table = SleepSession.__table__
        values = dict(night)
        values["athlete_id"] = athlete_id
        values.setdefault("id", uuid.uuid4())
        values["updated_at"] = datetime.now(timezone.utc)
        stmt = self._insert(table).values(**values)
        overwrite = {
            col: getattr(stmt.excluded, col)
            for col in values
            if col not in ("id", "athlete_id", "night_date")
        }
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.athlete_id, table.c.night_date],
            set_=overwrite,
        )
        self.db.execute(stmt)

    # --- Workouts ---

    def create_workout_session(self, athlete_id: uuid.UUID, fields: Dict[str, Any]) -> Optional[uuid.UUID]:
        """
        Insert a workout session.

        Returns the new id, or None when a session with the same
        (source_type, source_id) already exists for this athlete.
        """
        table = WorkoutSession.__table__
        values = dict(fields)
        values["athlete_id"] = athlete_id
        values.setdefault("id", uuid.uuid4())
        stmt = (
            self._insert(table)
            .values(**values)
            .on_conflict_do_nothing(
                index_elements=[table.c.athlete_id, table.c.source_type, table.c.source_id]
            )
            .returning(table.c.id)
        )
        row = self.db.execute(stmt).first()
        return row[0] if row else None

    def find_matching_schedule(
        self,
        athlete_id: uuid.UUID,
        workout_type: str,
        on_date: date,
    ) -> Optional[TrainingSchedule]:
        """
        Incomplete schedule entry for the same day and workout type.

        Entries pinned to a calendar date win over recurring weekday entries.
        """
        weekday = WEEKDAY_NAMES[on_date.weekday()]
        candidates = (
            self.db.query(TrainingSchedule)
            .filter(
                TrainingSchedule.athlete_id == athlete_id,
                TrainingSchedule.completed.is_(False),
                TrainingSchedule.workout_type == workout_type.lower(),
                or_(
                    TrainingSchedule.scheduled_date == on_date,
                    and_(TrainingSchedule.scheduled_date.is_(None), TrainingSchedule.day == weekday),
                ),
            )
            .all()
        )
        if not candidates:
            return None
        candidates.sort(key=lambda s: s.scheduled_date is None)
        return candidates[0]

    def match_workout_to_schedule(
        self,
        workout_id: uuid.UUID,
        schedule_id: uuid.UUID,
        completed_at: Optional[datetime] = None,
    ) -> bool:
        """
        Mark the schedule entry completed and link the workout to it.

        The completed flag is claimed with a conditional UPDATE, so two
        workouts racing for the same entry link at most one.
        """
        completed_at = completed_at or datetime.now(timezone.utc)
        claimed = self.db.execute(
            update(TrainingSchedule)
            .where(TrainingSchedule.id == schedule_id, TrainingSchedule.completed.is_(False))
            .values(completed=True, completed_at=completed_at)
        )
        if claimed.rowcount != 1:
            return False
        self.db.execute(
            update(WorkoutSession)
            .where(WorkoutSession.id == workout_id)
            .values(training_schedule_id=schedule_id)
        )
        return True

    # --- Goals ---

    def get_active_goals(self, athlete_id: uuid.UUID, metric_type: str) -> List[Goal]:
        return (
            self.db.query(Goal)
            .filter(Goal.athlete_id == athlete_id, Goal.metric_type == metric_type, Goal.status == "active")
            .all()
        )

    def update_goal_progress(self, goal: Goal, current_value: float) -> Goal:
        """Push a new current value; flips the goal to achieved when the target is reached."""
        goal.current_value = float(current_value)
        if goal.direction == "decrease":
            reached = goal.current_value <= goal.target_value
        else:
            reached = goal.current_value >= goal.target_value
        if reached and goal.status == "active":
            goal.status = "achieved"
            goal.achieved_at = datetime.now(timezone.utc)
            logger.info(f"Goal {goal.id} ({goal.metric_type}) achieved")
        self.db.flush()
        return goal
