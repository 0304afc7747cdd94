"""Optimistic deletion overlay: ids hidden while a delete is in flight."""
from __future__ import annotations

import logging
from collections.abc import Iterable

from .models import DroneRecord

logger = logging.getLogger(__name__)


class DeletionOverlay:
    """Visibility filter over the authoritative drone list.

    Never deletes anything itself. Entries clear when the registry
    stops listing the id, or when the delete command fails.
    """

    def __init__(self) -> None:
        self._hidden: set[str] = set()

    def __contains__(self, drone_id: object) -> bool:
        return drone_id in self._hidden

    @property
    def hidden_ids(self) -> frozenset[str]:
        return frozenset(self._hidden)

    def mark_deleting(self, drone_id: str) -> bool:
        """Hide *drone_id*. Returns False if it was already hidden."""
        if drone_id in self._hidden:
            return False
        self._hidden.add(drone_id)
        return True

    def rollback(self, drone_id: str) -> bool:
        if drone_id not in self._hidden:
            return False
        self._hidden.discard(drone_id)
        logger.debug("Rolled back optimistic delete of %s", drone_id)
        return True

    def collect_garbage(self, live_ids: Iterable[str]) -> list[str]:
        """Forget ids the registry no longer lists. Returns the confirmed ids."""
        if not self._hidden:
            return []
        live = set(live_ids)
        confirmed = sorted(self._hidden - live)
        self._hidden.intersection_update(live)
        return confirmed

    def filter(self, records: Iterable[DroneRecord]) -> list[DroneRecord]:
        if not self._hidden:
            return list(records)
        return [r for r in records if r.id not in self._hidden]
