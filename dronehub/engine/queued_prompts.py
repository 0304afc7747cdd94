"""Local prompt queue for drones that cannot accept prompts yet.

Prompts are ordered per (drone id, chat name). The store is the single
live source of truth: the flusher re-reads it on every iteration and
never works from a copy.
"""
from __future__ import annotations

import logging
from dataclasses import fields
from datetime import datetime, timezone

from .models import Clock, QueuedPrompt, QueuedPromptState, QueueKey

logger = logging.getLogger(__name__)

_PATCHABLE = {f.name for f in fields(QueuedPrompt)} - {"prompt_id", "created_at"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QueuedPromptStore:
    """Ordered per-key lists of not-yet-delivered prompts."""

    def __init__(self, clock: Clock = _utcnow) -> None:
        self._clock = clock
        self._queues: dict[QueueKey, list[QueuedPrompt]] = {}

    def __len__(self) -> int:
        return sum(len(items) for items in self._queues.values())

    def keys(self) -> list[QueueKey]:
        return list(self._queues)

    def items(self, key: QueueKey) -> list[QueuedPrompt]:
        """A copy of the queue for *key*, oldest first."""
        return list(self._queues.get(key, ()))

    def head(self, key: QueueKey) -> QueuedPrompt | None:
        queue = self._queues.get(key)
        return queue[0] if queue else None

    def get(self, key: QueueKey, prompt_id: str) -> QueuedPrompt | None:
        for item in self._queues.get(key, ()):
            if item.prompt_id == prompt_id:
                return item
        return None

    def enqueue(
        self,
        drone_id: str,
        chat_name: str | None,
        text: str,
    ) -> QueuedPrompt | None:
        """Append a queued prompt. Returns None for empty text or drone id."""
        key = QueueKey.of(drone_id, chat_name)
        prompt = str(text or "").strip()
        if not key.drone_id or not prompt:
            return None
        item = QueuedPrompt(prompt=prompt, created_at=self._clock())
        self._queues.setdefault(key, []).append(item)
        logger.debug(
            "Queued prompt %s for %s (depth=%d)",
            item.prompt_id, key, len(self._queues[key]),
        )
        return item

    def patch(self, key: QueueKey, prompt_id: str, **changes) -> QueuedPrompt | None:
        """Update fields of one item in place and stamp ``updated_at``."""
        unknown = set(changes) - _PATCHABLE
        if unknown:
            raise TypeError(f"Cannot patch QueuedPrompt fields: {', '.join(sorted(unknown))}")
        item = self.get(key, prompt_id)
        if item is None:
            return None
        for name, value in changes.items():
            setattr(item, name, value)
        item.updated_at = self._clock()
        return item

    def remove(self, key: QueueKey, prompt_id: str) -> bool:
        queue = self._queues.get(key)
        if not queue:
            return False
        remaining = [p for p in queue if p.prompt_id != prompt_id]
        if len(remaining) == len(queue):
            return False
        if remaining:
            self._queues[key] = remaining
        else:
            del self._queues[key]
        return True

    def retry(self, key: QueueKey, prompt_id: str) -> bool:
        """Put a failed prompt back into the ``queued`` state."""
        item = self.get(key, prompt_id)
        if item is None or item.state is not QueuedPromptState.FAILED:
            return False
        self.patch(key, prompt_id, state=QueuedPromptState.QUEUED, error=None)
        return True

    def clear_for_drone(self, drone_id: str) -> int:
        """Drop every queue addressed to *drone_id*. Returns items dropped."""
        dropped = 0
        for key in [k for k in self._queues if k.drone_id == drone_id]:
            dropped += len(self._queues.pop(key))
        if dropped:
            logger.info("Dropped %d queued prompt(s) for %s", dropped, drone_id)
        return dropped
