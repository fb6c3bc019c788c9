from sqlalchemy import Column, Boolean, CheckConstraint, Float, Integer, Date, DateTime, ForeignKey, JSON, Text, Uuid, Index, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from core.database import Base
import uuid


class Athlete(Base):
    __tablename__ = "athlete"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    email = Column(Text, unique=True, nullable=True)
    display_name = Column(Text, nullable=True)

    # --- WEBHOOK IDENTITY ---
    # Shared secret configured in the Health Auto Export app (sent as X-API-Key).
    webhook_key = Column(Text, unique=True, nullable=True)
    # Junction user id; events also carry client_user_id == athlete.id.
    junction_user_id = Column(Text, unique=True, nullable=True, index=True)

    biomarkers = relationship("Biomarker", back_populates="athlete", lazy="dynamic")
    sleep_sessions = relationship("SleepSession", back_populates="athlete", lazy="dynamic")
    workout_sessions = relationship("WorkoutSession", back_populates="athlete", lazy="dynamic")


class Biomarker(Base):
    """
    One scalar health sample in canonical units.

    Identity is (athlete, kind, recorded_at, source): re-delivery of the same
    sample overwrites value/unit instead of adding a row.
    """
    __tablename__ = "biomarker"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    athlete_id = Column(Uuid, ForeignKey("athlete.id"), nullable=False)
    kind = Column(Text, nullable=False)  # canonical kind, e.g. 'heart-rate', 'weight'
    value = Column(Float, nullable=False)
    unit = Column(Text, nullable=False)  # canonical unit for the kind
    source = Column(Text, nullable=False)  # 'health-auto-export', 'junction', 'calculated'
    recorded_at = Column(DateTime(timezone=True), nullable=False)  # UTC
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint('athlete_id', 'kind', 'recorded_at', 'source', name='uq_biomarker_identity'),
        Index("ix_biomarker_athlete_kind_recorded", "athlete_id", "kind", "recorded_at"),
    )

    athlete = relationship("Athlete", back_populates="biomarkers")


class SleepSession(Base):
    """
    One logical night of sleep.

    Providers emit one row per sleep *stage*; the ingest pipeline merges those
    segments and keeps exactly one row per (athlete, night_date).
    """
    __tablename__ = "sleep_session"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    athlete_id = Column(Uuid, ForeignKey("athlete.id"), nullable=False)
    night_date = Column(Date, nullable=False)  # calendar date of the evening the night started
    bedtime = Column(DateTime(timezone=True), nullable=False)
    waketime = Column(DateTime(timezone=True), nullable=False)
    total_minutes = Column(Integer, nullable=False, default=0)
    awake_minutes = Column(Integer, nullable=False, default=0)
    light_minutes = Column(Integer, nullable=False, default=0)
    deep_minutes = Column(Integer, nullable=False, default=0)
    rem_minutes = Column(Integer, nullable=False, default=0)
    sleep_score = Column(Integer, nullable=False)  # 0-100
    quality = Column(Text, nullable=False)  # 'Poor', 'Fair', 'Good', 'Excellent'
    source = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint('athlete_id', 'night_date', name='uq_sleep_session_athlete_night'),
        CheckConstraint("sleep_score BETWEEN 0 AND 100", name='ck_sleep_session_score_range'),
    )

    athlete = relationship("Athlete", back_populates="sleep_sessions")


class TrainingSchedule(Base):
    """
    A planned session on the athlete's training calendar.

    Owned by the planning surface; ingestion only links a recorded workout to it
    and marks it completed.
    """
    __tablename__ = "training_schedule"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    athlete_id = Column(Uuid, ForeignKey("athlete.id"), nullable=False, index=True)
    day = Column(Text, nullable=False)  # 'Monday' ... 'Sunday'
    scheduled_date = Column(Date, nullable=True)  # None for recurring weekly entries
    workout_type = Column(Text, nullable=False)  # canonical workout type, lowercase
    title = Column(Text, nullable=True)
    completed = Column(Boolean, default=False, nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)


class WorkoutSession(Base):
    __tablename__ = "workout_session"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    athlete_id = Column(Uuid, ForeignKey("athlete.id"), nullable=False, index=True)
    workout_type = Column(Text, nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    distance_m = Column(Float, nullable=True)
    calories = Column(Float, nullable=True)  # kcal
    avg_heart_rate = Column(Integer, nullable=True)
    max_heart_rate = Column(Integer, nullable=True)
    source_type = Column(Text, nullable=False)
    source_id = Column(Text, nullable=False)  # provider id, or derived from type + start
    training_schedule_id = Column(Uuid, ForeignKey("training_schedule.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # --- THE ARMOR: Unique Constraint prevents duplicates at the DB level ---
    __table_args__ = (
        UniqueConstraint('athlete_id', 'source_type', 'source_id', name='uq_workout_session_source'),
    )

    athlete = relationship("Athlete", back_populates="workout_sessions")


class Goal(Base):
    """
    Athlete goal tracked against a biomarker kind.

    Ingestion only pushes current_value; goal CRUD lives elsewhere.
    """
    __tablename__ = "goal"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    athlete_id = Column(Uuid, ForeignKey("athlete.id"), nullable=False, index=True)
    metric_type = Column(Text, nullable=False)  # canonical kind, or 'blood-pressure'
    target_value = Column(Float, nullable=False)
    current_value = Column(Float, nullable=True)
    direction = Column(Text, nullable=False, default="increase")  # 'increase' | 'decrease'
    status = Column(Text, nullable=False, default="active")  # 'active', 'achieved', 'archived'
    achieved_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class HealthEventRaw(Base):
    """
    Append-only warehouse of every received data point, routed or not.

    Rows are never updated. The idempotency key is a hash of the athlete,
    event type, instant and payload, so a re-delivered point is not stored twice.
    """
    __tablename__ = "health_event_raw"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    athlete_id = Column(Uuid, ForeignKey("athlete.id"), nullable=False)
    event_type = Column(Text, nullable=False)  # normalized provider name, e.g. 'heart_rate', 'dietary_energy'
    recorded_at = Column(DateTime(timezone=True), nullable=True)  # UTC, when the point carries one
    payload = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False)
    source = Column(Text, nullable=False)
    idempotency_key = Column(Text, nullable=False)
    received_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint('athlete_id', 'idempotency_key', name='uq_health_event_raw_idempotency'),
        Index("ix_health_event_raw_athlete_type", "athlete_id", "event_type"),
    )
