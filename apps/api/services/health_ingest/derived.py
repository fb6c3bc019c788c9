"""
Derived Aggregate Updater

Runs once per request, after every primary write has joined:

1. Computed body-fat percentage for recent days that have both a weight and a
   lean-body-mass sample but no body-fat sample of their own.
2. Goal progress for every metric touched by the request.

Both steps are best effort. A failure is logged as DerivedAggregateFailure
and never reaches the webhook caller, whose primary data is already stored.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, Optional, Set

from sqlalchemy.orm import Session

from services.health_ingest.errors import ConversionImplausible, DerivedAggregateFailure
from services.health_ingest.metric_types import BiomarkerKind
from services.health_ingest.repository import IngestionRepository, day_bounds

logger = logging.getLogger(__name__)

SOURCE_CALCULATED = "calculated"

BODY_FAT_MIN = 0.0
BODY_FAT_MAX = 60.0

# Goals track blood pressure as one metric, represented by the systolic value.
GOAL_METRIC_BY_KIND = {
    BiomarkerKind.BLOOD_PRESSURE_SYSTOLIC.value: "blood-pressure",
    BiomarkerKind.BLOOD_PRESSURE_DIASTOLIC.value: "blood-pressure",
}
GOAL_VALUE_KIND = {
    "blood-pressure": BiomarkerKind.BLOOD_PRESSURE_SYSTOLIC.value,
}


def goal_metric_for(kind: str) -> str:
    return GOAL_METRIC_BY_KIND.get(kind, kind)


def body_fat_percentage(weight: float, lean_mass: float) -> float:
    """
    (weight - lean) / weight * 100, rounded to one decimal.

    Raises:
        ConversionImplausible: weight is not positive or the result is
            outside the physiological range.
    """
    if weight <= 0:
        raise ConversionImplausible(BiomarkerKind.BODY_FAT_PERCENTAGE.value, weight)
    value = round((weight - lean_mass) / weight * 100, 1)
    if value < BODY_FAT_MIN or value > BODY_FAT_MAX:
        raise ConversionImplausible(BiomarkerKind.BODY_FAT_PERCENTAGE.value, value)
    return value


@dataclass(frozen=True)
class DerivedResult:
    body_fat_written: int = 0
    goals_updated: int = 0


class DerivedAggregateUpdater:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        repository_factory: Callable[[Session], IngestionRepository] = IngestionRepository,
        lookback_days: int = 7,
    ):
        self.session_factory = session_factory
        self.repository_factory = repository_factory
        self.lookback_days = lookback_days

    def run(
        self,
        athlete_id,
        touched_kinds: Iterable[str],
        touched_dates: Iterable[date],
        today: Optional[date] = None,
    ) -> DerivedResult:
        touched_kinds = set(touched_kinds)
        anchor = max(touched_dates, default=None) or today or datetime.now(timezone.utc).date()

        written = self._step("body_fat", lambda repo: self.update_body_fat(repo, athlete_id, anchor)) or 0
        if written:
            touched_kinds.add(BiomarkerKind.BODY_FAT_PERCENTAGE.value)

        updated = self._step("goals", lambda repo: self.update_goals(repo, athlete_id, touched_kinds)) or 0
        return DerivedResult(body_fat_written=written, goals_updated=updated)

    def _step(self, name: str, fn):
        db = self.session_factory()
        try:
            result = fn(self.repository_factory(db))
            db.commit()
            return result
        except Exception as e:
            db.rollback()
            failure = DerivedAggregateFailure(name, e)
            logger.error(f"Derived aggregate update failed: {failure}", exc_info=True)
            return None
        finally:
            db.close()

    def update_body_fat(self, repo: IngestionRepository, athlete_id, anchor: date) -> int:
        """Fill in computed body fat over the trailing window ending at `anchor`."""
        first_day = anchor - timedelta(days=self.lookback_days - 1)
        start, _ = day_bounds(first_day)
        _, end = day_bounds(anchor)
        samples = repo.list_biomarkers_between(
            athlete_id,
            [BiomarkerKind.WEIGHT.value, BiomarkerKind.LEAN_BODY_MASS.value],
            start,
            end,
        )

        # Latest sample of each kind per day (samples arrive oldest first).
        weights: Dict[date, float] = {}
        lean: Dict[date, float] = {}
        for sample in samples:
            day = sample.recorded_at.date()
            if sample.kind == BiomarkerKind.WEIGHT.value:
                weights[day] = sample.value
            else:
                lean[day] = sample.value

        written = 0
        for day in sorted(set(weights) & set(lean)):
            if repo.has_biomarker_on(athlete_id, BiomarkerKind.BODY_FAT_PERCENTAGE.value, day):
                continue
            try:
                value = body_fat_percentage(weights[day], lean[day])
            except ConversionImplausible as e:
                logger.debug(f"Dropping computed body fat for {day}: {e}")
                continue
            recorded_at, _ = day_bounds(day)
            repo.upsert_biomarker(
                athlete_id,
                BiomarkerKind.BODY_FAT_PERCENTAGE.value,
                value,
                "%",
                recorded_at,
                SOURCE_CALCULATED,
            )
            written += 1
        if written:
            logger.info(f"Computed body fat for {written} day(s) for athlete {athlete_id}")
        return written

    def update_goals(self, repo: IngestionRepository, athlete_id, touched_kinds: Set[str]) -> int:
        """Push the latest sample of each touched metric into its active goals."""
        updated = 0
        for metric in sorted({goal_metric_for(k) for k in touched_kinds}):
            goals = repo.get_active_goals(athlete_id, metric)
            if not goals:
                continue
            latest = repo.get_latest_biomarker(athlete_id, GOAL_VALUE_KIND.get(metric, metric))
            if latest is None:
                continue
            for goal in goals:
                repo.update_goal_progress(goal, latest.value)
                updated += 1
        return updated
