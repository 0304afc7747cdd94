"""Selection preference: keeps the UI anchored on a just-created drone.

The registry may take several polls to list a new drone. Until it does,
the preference stops default selection from jumping elsewhere. Once the
drone is visible it is selected exactly once and the preference is
dropped, so later ticks never fight manual navigation.
"""
from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from .freshness import deadline
from .models import SelectionPreference

logger = logging.getLogger(__name__)


class SelectionAction(str, Enum):
    SELECT = "select"
    WAIT = "wait"
    DEFAULT = "default"


@dataclass
class SelectionDecision:
    action: SelectionAction
    drone_id: str | None = None
    cleared: bool = False


class SelectionPreferenceHolder:
    """At most one live preference with an absolute hold deadline."""

    def __init__(self) -> None:
        self._preference: SelectionPreference | None = None

    @property
    def preference(self) -> SelectionPreference | None:
        return self._preference

    def prefer(self, drone_id: str, hold_seconds: float, now: datetime) -> None:
        self._preference = SelectionPreference(
            drone_id=drone_id, hold_until=deadline(now, hold_seconds),
        )
        logger.debug("Preferring %s until %s", drone_id, self._preference.hold_until)

    def clear(self) -> None:
        self._preference = None

    def resolve(
        self,
        visible_ids: Sequence[str],
        seed_fresh: bool,
        now: datetime,
    ) -> SelectionDecision:
        """Decide what the preference asks for on this tick.

        *seed_fresh* tells whether the preferred drone still has a
        fresh startup seed.
        """
        pref = self._preference
        if pref is None:
            return SelectionDecision(SelectionAction.DEFAULT)
        if pref.drone_id in visible_ids:
            self._preference = None
            return SelectionDecision(SelectionAction.SELECT, pref.drone_id, cleared=True)
        if now < pref.hold_until or seed_fresh:
            return SelectionDecision(SelectionAction.WAIT, pref.drone_id)
        logger.debug("Selection preference for %s expired", pref.drone_id)
        self._preference = None
        return SelectionDecision(SelectionAction.DEFAULT, cleared=True)


def default_selection(visible_ids: Sequence[str], current: str | None) -> str | None:
    """Keep a still-visible selection, otherwise fall back to the first drone."""
    if current is not None and current in visible_ids:
        return current
    return visible_ids[0] if visible_ids else None
