"""Tests for the in-memory session store."""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from engine.sessions import SessionStore, session_key


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return SessionStore(timeout_minutes=30, clock=clock)


class TestSessionStore:
    def test_key_format(self):
        assert session_key("u1", "pushups") == "u1-pushups"

    def test_create_and_get(self, store):
        created = store.create("pushups", "start", "u1", "telegram")
        fetched = store.get("u1-pushups")
        assert fetched.flow_name == "pushups"
        assert fetched.current_step_id == "start"
        assert fetched.variables == {}
        assert created.key == fetched.key

    def test_create_replaces_existing(self, store):
        store.create("pushups", "start", "u1", "telegram")
        store.update("u1-pushups", variables={"reps": 10})
        store.create("pushups", "start", "u1", "telegram")
        assert store.get("u1-pushups").variables == {}
        assert store.count == 1

    def test_returns_copies(self, store):
        session = store.create("pushups", "start", "u1", "telegram")
        session.variables["leak"] = 1
        assert "leak" not in store.get("u1-pushups").variables

    def test_update_merges_variables(self, store):
        store.create("pushups", "start", "u1", "telegram")
        store.update("u1-pushups", variables={"a": 1})
        updated = store.update("u1-pushups", variables={"b": 2}, current_step_id="reps")
        assert updated.variables == {"a": 1, "b": 2}
        assert updated.current_step_id == "reps"

    def test_update_missing_returns_none(self, store):
        assert store.update("nobody-nothing", variables={"a": 1}) is None

    def test_expiry(self, store, clock):
        store.create("pushups", "start", "u1", "telegram")
        clock.advance(minutes=31)
        assert store.get("u1-pushups") is None
        assert store.count == 0

    def test_activity_refreshes_ttl(self, store, clock):
        store.create("pushups", "start", "u1", "telegram")
        clock.advance(minutes=20)
        assert store.get("u1-pushups") is not None
        clock.advance(minutes=20)
        assert store.get("u1-pushups") is not None

    def test_update_refreshes_timestamp(self, store, clock):
        store.create("pushups", "start", "u1", "telegram")
        clock.advance(minutes=10)
        updated = store.update("u1-pushups", variables={"a": 1})
        assert updated.last_activity_at == clock.now

    def test_delete(self, store):
        store.create("pushups", "start", "u1", "telegram")
        assert store.delete("u1-pushups")
        assert not store.delete("u1-pushups")

    def test_sweep_expired(self, store, clock):
        store.create("pushups", "start", "u1", "telegram")
        clock.advance(minutes=20)
        store.create("survey", "name", "u2", "telegram")
        clock.advance(minutes=15)
        assert store.sweep_expired() == 1
        assert [s.key for s in store.list_active()] == ["u2-survey"]

    @pytest.mark.asyncio
    async def test_sweeper_start_stop(self, store):
        await store.start()
        assert store.running
        await store.start()
        await store.stop()
        assert not store.running

    @pytest.mark.asyncio
    async def test_sweeper_runs_without_sessions(self, clock):
        store = SessionStore(timeout_minutes=30, cleanup_interval_minutes=1, clock=clock)
        store._interval = timedelta(seconds=0.01)
        await store.start()
        store.create("pushups", "start", "u1", "telegram")
        clock.advance(minutes=31)
        await asyncio.sleep(0.05)
        assert store.count == 0
        await store.stop()
