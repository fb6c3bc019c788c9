"""
Readiness Cache Invalidation

Readiness scores are cached in Redis per athlete and date. A sleep night is
the main input to readiness, so every sleep upsert clears the cached score
for the night's date and for the morning the athlete woke up.
"""

import logging
from datetime import date, timedelta
from typing import Union

from core.cache import cache_key, delete_cache
from core.config import settings
from core.events import EVENT_SLEEP_NIGHT_UPSERTED, subscribe

logger = logging.getLogger(__name__)


def readiness_cache_key(athlete_id, day: date) -> str:
    return cache_key(settings.READINESS_CACHE_PREFIX, str(athlete_id), day.isoformat())


def invalidate_readiness_cache(athlete_id: str, night_date: Union[date, str], **_) -> int:
    """Event handler for `sleep.night_upserted`. Returns the number of keys cleared."""
    if isinstance(night_date, str):
        night_date = date.fromisoformat(night_date)

    cleared = 0
    for day in (night_date, night_date + timedelta(days=1)):
        if delete_cache(readiness_cache_key(athlete_id, day)):
            cleared += 1
    logger.debug(f"Cleared readiness cache for athlete {athlete_id} around {night_date}")
    return cleared


def register_cache_listeners() -> None:
    subscribe(EVENT_SLEEP_NIGHT_UPSERTED, invalidate_readiness_cache)
