"""Tests for session_limits: key-value stores and the daily session cap."""

import json
from datetime import date, timedelta

import pytest

from session_limits import (
    LAST_SESSION_DATE_KEY,
    SESSION_COUNT_KEY,
    JsonFileStore,
    MemoryStore,
    SessionLimitReached,
    SessionRateLimiter,
)


class FakeCalendar:
    def __init__(self, day: date):
        self.day = day

    def __call__(self) -> date:
        return self.day


@pytest.fixture
def calendar():
    return FakeCalendar(date(2024, 3, 1))


@pytest.fixture
def limiter(calendar):
    return SessionRateLimiter(MemoryStore(), daily_limit=5, today=calendar)


class TestMemoryStore:
    def test_get_set_delete(self):
        store = MemoryStore()
        assert store.get("k") is None
        assert store.get("k", 3) == 3
        store.set("k", 1)
        assert store.get("k") == 1
        store.delete("k")
        store.delete("k")
        assert store.get("k") is None


class TestJsonFileStore:
    def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "nested" / "state.json"
        JsonFileStore(path).set("count", 4)
        assert JsonFileStore(path).get("count") == 4
        assert json.loads(path.read_text()) == {"count": 4}

    def test_delete(self, tmp_path):
        path = tmp_path / "state.json"
        store = JsonFileStore(path)
        store.set("a", 1)
        store.delete("a")
        assert JsonFileStore(path).get("a") is None

    def test_corrupt_file_starts_empty(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json")
        assert JsonFileStore(path).get("anything") is None


class TestStoreContract:
    @pytest.fixture(params=["memory", "json"])
    def store(self, request, tmp_path):
        if request.param == "memory":
            return MemoryStore()
        return JsonFileStore(tmp_path / "state.json")

    def test_get_set_delete(self, store):
        assert store.get(SESSION_COUNT_KEY, 0) == 0
        store.set(SESSION_COUNT_KEY, 2)
        assert store.get(SESSION_COUNT_KEY) == 2
        store.delete(SESSION_COUNT_KEY)
        assert store.get(SESSION_COUNT_KEY) is None

    def test_limiter_accepts_any_matching_store(self, calendar):
        class DictStore:
            def __init__(self):
                self.data = {}

            def get(self, key, default=None):
                return self.data.get(key, default)

            def set(self, key, value):
                self.data[key] = value

            def delete(self, key):
                self.data.pop(key, None)

        store = DictStore()
        limiter = SessionRateLimiter(store, daily_limit=2, today=calendar)
        assert limiter.can_start_session()
        limiter.record_session()
        assert store.data == {LAST_SESSION_DATE_KEY: "2024-03-01", SESSION_COUNT_KEY: 1}
        assert limiter.remaining_sessions() == 1


class TestSessionRateLimiter:
    def _use_session(self, limiter) -> bool:
        allowed = limiter.can_start_session()
        if allowed:
            limiter.record_session()
        return allowed

    def test_five_sessions_then_refused(self, limiter):
        results = [self._use_session(limiter) for _ in range(6)]
        assert results == [True] * 5 + [False]
        assert limiter.remaining_sessions() == 0

    def test_rollover_resets_count(self, limiter, calendar):
        for _ in range(5):
            self._use_session(limiter)
        assert limiter.can_start_session() is False

        calendar.day += timedelta(days=1)
        assert limiter.can_start_session() is True
        assert limiter.store.get(SESSION_COUNT_KEY) == 0
        assert limiter.store.get(LAST_SESSION_DATE_KEY) == "2024-03-02"

    def test_count_monotonic_within_day(self, limiter):
        counts = []
        for _ in range(4):
            self._use_session(limiter)
            counts.append(limiter.record().count_today)
        assert counts == [1, 2, 3, 4]

    def test_remaining_uses_same_limit(self, limiter):
        assert limiter.remaining_sessions() == 5
        self._use_session(limiter)
        self._use_session(limiter)
        assert limiter.remaining_sessions() == 3

    def test_remaining_on_stale_date(self, calendar):
        store = MemoryStore({LAST_SESSION_DATE_KEY: "2024-02-28", SESSION_COUNT_KEY: 5})
        limiter = SessionRateLimiter(store, daily_limit=5, today=calendar)
        assert limiter.remaining_sessions() == 5

    def test_limit_message(self):
        assert str(SessionLimitReached(5)) == (
            "You have reached your daily limit of 5 recording sessions."
        )
