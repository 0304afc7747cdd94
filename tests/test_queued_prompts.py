"""Queued prompt store: keys, enqueue, patch, remove, retry."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from dronehub.engine.models import QueuedPromptState, QueueKey
from dronehub.engine.queued_prompts import QueuedPromptStore


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


def test_queue_key_normalizes():
    key = QueueKey.of(" d1 ", "")
    assert key == QueueKey("d1", "default")
    assert str(key) == "d1::default"


def test_enqueue_appends_in_order_and_ignores_empty():
    store = QueuedPromptStore()
    first = store.enqueue("d1", "default", " one ")
    second = store.enqueue("d1", None, "two")
    assert first.prompt == "one"
    assert first.prompt_id.startswith("queued-")
    assert first.state is QueuedPromptState.QUEUED
    assert [p.prompt for p in store.items(QueueKey("d1"))] == ["one", "two"]
    assert second.prompt_id != first.prompt_id

    assert store.enqueue("d1", "default", "   ") is None
    assert store.enqueue("", "default", "text") is None
    assert len(store) == 2


def test_queues_are_independent_per_chat():
    store = QueuedPromptStore()
    store.enqueue("d1", "a", "x")
    store.enqueue("d1", "b", "y")
    store.enqueue("d2", "a", "z")
    assert set(store.keys()) == {QueueKey("d1", "a"), QueueKey("d1", "b"), QueueKey("d2", "a")}
    assert store.head(QueueKey("d1", "b")).prompt == "y"


def test_patch_updates_fields_and_stamps_time():
    clock = _Clock()
    store = QueuedPromptStore(clock=clock)
    item = store.enqueue("d1", "default", "hi")
    key = QueueKey("d1")
    clock.now += timedelta(seconds=3)

    patched = store.patch(key, item.prompt_id, state=QueuedPromptState.FAILED, error="boom")
    assert patched is item
    assert item.state is QueuedPromptState.FAILED
    assert item.error == "boom"
    assert item.updated_at == clock.now
    assert store.patch(key, "missing", error="x") is None

    with pytest.raises(TypeError):
        store.patch(key, item.prompt_id, prompt_id="other")


def test_remove_drops_empty_queue():
    store = QueuedPromptStore()
    item = store.enqueue("d1", "default", "hi")
    key = QueueKey("d1")
    assert store.remove(key, "missing") is False
    assert store.remove(key, item.prompt_id) is True
    assert store.keys() == []
    assert store.remove(key, item.prompt_id) is False


def test_retry_only_resets_failed_items():
    store = QueuedPromptStore()
    item = store.enqueue("d1", "default", "hi")
    key = QueueKey("d1")
    assert store.retry(key, item.prompt_id) is False

    store.patch(key, item.prompt_id, state=QueuedPromptState.FAILED, error="nope")
    assert store.retry(key, item.prompt_id) is True
    assert item.state is QueuedPromptState.QUEUED
    assert item.error is None


def test_clear_for_drone_drops_all_its_chats():
    store = QueuedPromptStore()
    store.enqueue("d1", "a", "x")
    store.enqueue("d1", "b", "y")
    store.enqueue("d2", "a", "z")
    assert store.clear_for_drone("d1") == 2
    assert store.keys() == [QueueKey("d2", "a")]
    assert store.clear_for_drone("d1") == 0


def test_items_returns_a_copy():
    store = QueuedPromptStore()
    store.enqueue("d1", "default", "hi")
    items = store.items(QueueKey("d1"))
    items.clear()
    assert len(store.items(QueueKey("d1"))) == 1
