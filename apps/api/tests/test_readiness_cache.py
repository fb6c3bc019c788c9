"""
Tests for readiness cache invalidation on sleep writes.
"""
from datetime import date

import pytest
from redis.exceptions import ConnectionError

import core.cache
from core.events import EVENT_SLEEP_NIGHT_UPSERTED, emit, unsubscribe
from services.readiness_cache import (
    invalidate_readiness_cache,
    readiness_cache_key,
    register_cache_listeners,
)

ATHLETE_ID = "0b0c6f9e-6a3f-4d0e-9a51-0f5d8e0f2a11"


class FakeRedis:
    def __init__(self):
        self.store = {}

    def get(self, key):
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self.store[key] = value

    def delete(self, key):
        return 1 if self.store.pop(key, None) is not None else 0


class BrokenRedis(FakeRedis):
    def delete(self, key):
        raise ConnectionError("connection refused")


@pytest.fixture
def fake_redis(monkeypatch):
    client = FakeRedis()
    monkeypatch.setattr(core.cache, "get_redis_client", lambda: client)
    return client


def _warm(client, *days):
    for day in days:
        client.store[readiness_cache_key(ATHLETE_ID, day)] = "{}"


def test_key_format():
    assert readiness_cache_key(ATHLETE_ID, date(2024, 3, 10)) == f"readiness:{ATHLETE_ID}:2024-03-10"


def test_clears_night_and_following_morning(fake_redis):
    _warm(fake_redis, date(2024, 3, 9), date(2024, 3, 10), date(2024, 3, 11), date(2024, 3, 12))

    cleared = invalidate_readiness_cache(ATHLETE_ID, date(2024, 3, 10))

    assert cleared == 2
    assert sorted(fake_redis.store) == [
        readiness_cache_key(ATHLETE_ID, date(2024, 3, 9)),
        readiness_cache_key(ATHLETE_ID, date(2024, 3, 12)),
    ]


def test_accepts_iso_date_string(fake_redis):
    _warm(fake_redis, date(2024, 3, 10))

    invalidate_readiness_cache(ATHLETE_ID, "2024-03-10")

    assert fake_redis.store == {}


def test_no_redis_is_a_noop():
    assert invalidate_readiness_cache(ATHLETE_ID, date(2024, 3, 10)) == 0


def test_redis_errors_degrade_gracefully(monkeypatch):
    monkeypatch.setattr(core.cache, "get_redis_client", lambda: BrokenRedis())

    assert invalidate_readiness_cache(ATHLETE_ID, date(2024, 3, 10)) == 0


def test_sleep_event_triggers_invalidation(fake_redis):
    _warm(fake_redis, date(2024, 3, 10))
    register_cache_listeners()
    register_cache_listeners()
    try:
        emit(EVENT_SLEEP_NIGHT_UPSERTED, athlete_id=ATHLETE_ID, night_date=date(2024, 3, 10))
    finally:
        unsubscribe(EVENT_SLEEP_NIGHT_UPSERTED, invalidate_readiness_cache)

    assert fake_redis.store == {}
