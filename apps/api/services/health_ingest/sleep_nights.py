"""
Sleep Night Aggregator

Providers deliver sleep as several raw segments per night (one per stage, or
one per in-bed interval). This module groups segments into logical nights,
merges them, scores the night when the provider did not, and persists exactly
one row per (athlete, night).

Night key: a segment that starts at or after 15:00 local time belongs to that
calendar date; one that starts earlier (after midnight, or a daytime nap
before 15:00) belongs to the previous evening's date.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from core.events import EVENT_SLEEP_NIGHT_UPSERTED, emit
from services.health_ingest.errors import FieldMissing
from services.health_ingest.fields import as_float, first_present, parse_timestamp, to_utc
from services.health_ingest.repository import IngestionRepository

logger = logging.getLogger(__name__)

SLEEP_START_KEYS = ("inBedStart", "sleepStart", "in_bed_start", "sleep_start", "startDate", "start_date")
SLEEP_END_KEYS = ("inBedEnd", "sleepEnd", "in_bed_end", "sleep_end", "endDate", "end_date")

NIGHT_BOUNDARY_HOUR = 15

QUALITY_LABELS = ("Poor", "Fair", "Good", "Excellent")


@dataclass
class SleepNight:
    """Merged aggregate of every segment sharing a night key."""
    night_date: date
    bedtime: datetime
    waketime: datetime
    awake_minutes: int = 0
    light_minutes: int = 0
    deep_minutes: int = 0
    rem_minutes: int = 0
    explicit_score: Optional[int] = None
    explicit_quality: Optional[str] = None
    stages_reported: bool = False

    @property
    def total_minutes(self) -> int:
        if self.stages_reported:
            return self.light_minutes + self.deep_minutes + self.rem_minutes
        span = int(round((self.waketime - self.bedtime).total_seconds() / 60))
        return max(0, span - self.awake_minutes)

    @property
    def sleep_score(self) -> int:
        if self.explicit_score is not None:
            return max(0, min(100, self.explicit_score))
        return score_night(self.total_minutes, self.deep_minutes, self.rem_minutes)

    @property
    def quality(self) -> str:
        if self.explicit_quality in QUALITY_LABELS:
            return self.explicit_quality
        return quality_label(self.sleep_score)

    def to_row(self, source: str) -> Dict[str, Any]:
        return {
            "night_date": self.night_date,
            "bedtime": to_utc(self.bedtime),
            "waketime": to_utc(self.waketime),
            "total_minutes": self.total_minutes,
            "awake_minutes": self.awake_minutes,
            "light_minutes": self.light_minutes,
            "deep_minutes": self.deep_minutes,
            "rem_minutes": self.rem_minutes,
            "sleep_score": self.sleep_score,
            "quality": self.quality,
            "source": source,
        }


def night_key(in_bed_start: datetime) -> date:
    """Calendar date of the evening a sleep segment belongs to (local wall clock)."""
    if in_bed_start.hour >= NIGHT_BOUNDARY_HOUR:
        return in_bed_start.date()
    return (in_bed_start - timedelta(hours=12)).date()


def score_night(total_minutes: int, deep_minutes: int, rem_minutes: int) -> int:
    """
    Heuristic 0-100 score used when the provider sends none.

    Base 70, adjusted for total duration and deep/REM share of sleep.
    """
    score = 70
    hours = total_minutes / 60.0
    if 7 <= hours <= 9:
        score += 10
    elif 6 <= hours < 7:
        score += 5
    elif hours < 6:
        score -= 10

    deep_fraction = deep_minutes / total_minutes if total_minutes > 0 else 0.0
    if 0.15 <= deep_fraction <= 0.25:
        score += 10
    elif deep_fraction < 0.10:
        score -= 5

    rem_fraction = rem_minutes / total_minutes if total_minutes > 0 else 0.0
    if 0.18 <= rem_fraction <= 0.28:
        score += 10
    elif rem_fraction < 0.15:
        score -= 5

    return max(0, min(100, score))


def quality_label(score: int) -> str:
    if score >= 85:
        return "Excellent"
    if score >= 75:
        return "Good"
    if score >= 60:
        return "Fair"
    return "Poor"


def _stage_minutes(point: Dict[str, Any], *keys: str) -> Tuple[int, bool]:
    hours = as_float(first_present(point, *keys))
    if hours is None:
        return 0, False
    return int(round(hours * 60)), True


def merge_points(points: Iterable[Dict[str, Any]]) -> Tuple[List[SleepNight], int]:
    """
    Group raw sleep points by night key and merge each group.

    Returns (nights ordered by date, number of points dropped for missing
    start/end).
    """
    nights: Dict[date, SleepNight] = {}
    dropped = 0

    for point in points:
        try:
            start, end = _segment_bounds(point)
        except FieldMissing as e:
            dropped += 1
            logger.debug(f"Dropping sleep point: {e} (keys={e.point_keys})")
            continue

        key = night_key(start)
        night = nights.get(key)
        if night is None:
            night = SleepNight(night_date=key, bedtime=start, waketime=end)
            nights[key] = night
        else:
            night.bedtime = min(night.bedtime, start)
            night.waketime = max(night.waketime, end)

        awake, has_awake = _stage_minutes(point, "awake")
        light, has_light = _stage_minutes(point, "core", "light")
        deep, has_deep = _stage_minutes(point, "deep")
        rem, has_rem = _stage_minutes(point, "rem")
        night.awake_minutes += awake
        night.light_minutes += light
        night.deep_minutes += deep
        night.rem_minutes += rem
        night.stages_reported = night.stages_reported or has_light or has_deep or has_rem

        score = as_float(first_present(point, "sleepScore", "sleep_score", "score"))
        if score is not None:
            score = int(round(score))
            night.explicit_score = score if night.explicit_score is None else max(night.explicit_score, score)
        quality = first_present(point, "quality")
        if isinstance(quality, str) and quality.capitalize() in QUALITY_LABELS:
            night.explicit_quality = quality.capitalize()

    return [nights[k] for k in sorted(nights)], dropped


def _segment_bounds(point: Dict[str, Any]) -> Tuple[datetime, datetime]:
    start = None
    for key in SLEEP_START_KEYS:
        start = parse_timestamp(point.get(key))
        if start is not None:
            break
    if start is None:
        raise FieldMissing("inBedStart", point)

    end = None
    for key in SLEEP_END_KEYS:
        end = parse_timestamp(point.get(key))
        if end is not None:
            break
    if end is None:
        raise FieldMissing("inBedEnd", point)
    return start, end


class SleepNightAggregator:
    """
    Persists merged nights and announces each write.

    `notify` is called after the night is durable; by default it emits
    `sleep.night_upserted`, which the readiness cache listens to.
    """

    def __init__(self, notify: Optional[Callable[..., None]] = None):
        self._notify = notify or emit

    def aggregate(self, points: Iterable[Dict[str, Any]]) -> Tuple[List[SleepNight], int]:
        return merge_points(points)

    def store(self, repo: IngestionRepository, athlete_id, night: SleepNight, source: str) -> None:
        repo.upsert_sleep_session(athlete_id, night.to_row(source))
        logger.debug(
            f"Upserted sleep night {night.night_date} for athlete {athlete_id}: "
            f"{night.total_minutes} min, score {night.sleep_score}"
        )

    def announce(self, athlete_id, night_date: date) -> None:
        self._notify(EVENT_SLEEP_NIGHT_UPSERTED, athlete_id=str(athlete_id), night_date=night_date)
