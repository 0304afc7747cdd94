"""Startup seed store: recording, renaming, freshness and GC."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from dronehub.engine.freshness import deadline, is_fresh
from dronehub.engine.models import CreatedDrone, DroneRecord, SeedIntent
from dronehub.engine.seeds import StartupSeedStore

T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def _store_with(*ids: str, at: datetime = T0) -> StartupSeedStore:
    store = StartupSeedStore(grace_seconds=30.0)
    store.record(
        [CreatedDrone(id=i, name=f"name-{i}") for i in ids],
        SeedIntent(prompt="hello", agent="codex", model="gpt-5"),
        at,
    )
    return store


def test_is_fresh_boundaries():
    assert is_fresh(T0, T0, 30.0)
    assert is_fresh(T0, T0 + timedelta(seconds=29.999), 30.0)
    assert not is_fresh(T0, T0 + timedelta(seconds=30), 30.0)
    assert not is_fresh(None, T0, 30.0)
    assert deadline(T0, 5) == T0 + timedelta(seconds=5)


def test_record_overwrites_and_keeps_intent():
    store = _store_with("d1")
    seed = store.get("d1")
    assert seed.drone_name == "name-d1"
    assert seed.prompt == "hello"
    assert seed.agent == "codex"
    assert seed.chat_name == "default"
    assert seed.created_at == T0

    later = T0 + timedelta(seconds=10)
    store.record([CreatedDrone(id="d1", name="again")], SeedIntent(), later)
    assert len(store) == 1
    assert store.get("d1").drone_name == "again"
    assert store.get("d1").created_at == later


def test_rename_only_touches_existing_seed():
    store = _store_with("d1")
    assert store.rename("d1", "renamed") is True
    assert store.get("d1").drone_name == "renamed"
    assert store.get("d1").prompt == "hello"
    assert store.rename("d1", "renamed") is False
    assert store.rename("missing", "x") is False
    assert "missing" not in store


def test_gc_removes_seed_once_drone_settles():
    store = _store_with("d1")
    ready = {"d1": DroneRecord(id="d1", name="name-d1", phase="ready", busy=False)}
    assert store.collect_garbage(ready, T0) == ["d1"]
    assert "d1" not in store


def test_gc_keeps_seed_while_provisioning_or_busy():
    store = _store_with("d1", "d2")
    snapshot = {
        "d1": DroneRecord(id="d1", name="a", phase="seeding"),
        "d2": DroneRecord(id="d2", name="b", phase="ready", busy=True),
    }
    # Long past the grace window: listed drones are judged by phase only.
    assert store.collect_garbage(snapshot, T0 + timedelta(minutes=10)) == []
    assert len(store) == 2


def test_gc_removes_errored_drone_seed():
    store = _store_with("d1")
    snapshot = {"d1": DroneRecord(id="d1", name="a", phase="error")}
    assert store.collect_garbage(snapshot, T0) == ["d1"]


def test_gc_expires_unlisted_seed_exactly_at_grace_window():
    store = _store_with("y")
    for seconds in (0, 10, 29.5):
        assert store.collect_garbage({}, T0 + timedelta(seconds=seconds)) == []
        assert "y" in store
    assert store.collect_garbage({}, T0 + timedelta(seconds=30)) == ["y"]
    assert "y" not in store


def test_gc_is_idempotent():
    store = _store_with("d1", "d2")
    snapshot = {"d1": DroneRecord(id="d1", name="a")}
    now = T0 + timedelta(seconds=31)
    assert store.collect_garbage(snapshot, now) == ["d1", "d2"]
    assert store.collect_garbage(snapshot, now) == []


def test_placeholders_for_fresh_unlisted_seeds_only():
    store = _store_with("listed", "waiting")
    placeholders = store.placeholders({"listed"}, T0 + timedelta(seconds=5))
    assert [p.id for p in placeholders] == ["waiting"]
    assert placeholders[0].name == "name-waiting"
    assert placeholders[0].phase == "starting"
    assert placeholders[0].chats == ("default",)

    assert store.placeholders(set(), T0 + timedelta(seconds=30)) == []
