"""Startup seed store.

Remembers what the user asked for when a drone was created so the UI
can show it before the registry lists it. Seeds are weak records: they
never own a drone and are garbage collected against each snapshot.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import replace
from datetime import datetime

from .freshness import is_fresh
from .models import CreatedDrone, DroneRecord, SeedIntent, StartupSeed

logger = logging.getLogger(__name__)


class StartupSeedStore:
    """Per-drone creation intent, keyed by drone id."""

    def __init__(self, grace_seconds: float) -> None:
        self._grace_seconds = grace_seconds
        self._seeds: dict[str, StartupSeed] = {}

    def __contains__(self, drone_id: object) -> bool:
        return drone_id in self._seeds

    def __len__(self) -> int:
        return len(self._seeds)

    def get(self, drone_id: str) -> StartupSeed | None:
        return self._seeds.get(drone_id)

    def snapshot(self) -> dict[str, StartupSeed]:
        return dict(self._seeds)

    def record(
        self,
        drones: Iterable[CreatedDrone],
        intent: SeedIntent,
        now: datetime,
    ) -> None:
        """Store or overwrite one seed per accepted drone."""
        for drone in drones:
            drone_id = drone.id.strip()
            if not drone_id:
                continue
            self._seeds[drone_id] = StartupSeed(
                drone_name=drone.name.strip() or drone_id,
                chat_name=intent.chat_name,
                agent=intent.agent,
                model=intent.model,
                prompt=intent.prompt,
                group=intent.group,
                repo_path=intent.repo_path,
                created_at=now,
            )
            logger.debug("Recorded startup seed for %s (%s)", drone_id, drone.name)

    def rename(self, drone_id: str, new_name: str) -> bool:
        """Refresh the remembered display name. No-op without a seed."""
        seed = self._seeds.get(drone_id)
        if seed is None or seed.drone_name == new_name:
            return False
        self._seeds[drone_id] = replace(seed, drone_name=new_name)
        return True

    def is_fresh(self, drone_id: str, now: datetime) -> bool:
        seed = self._seeds.get(drone_id)
        return seed is not None and is_fresh(seed.created_at, now, self._grace_seconds)

    def collect_garbage(
        self,
        snapshot: Mapping[str, DroneRecord],
        now: datetime,
    ) -> list[str]:
        """Drop seeds the snapshot made redundant. Returns removed ids.

        A listed drone keeps its seed while it is provisioning or busy.
        An unlisted drone keeps its seed until the grace window ends.
        """
        removed: list[str] = []
        for drone_id, seed in list(self._seeds.items()):
            record = snapshot.get(drone_id)
            if record is None:
                if is_fresh(seed.created_at, now, self._grace_seconds):
                    continue
            elif record.provisioning or record.busy:
                continue
            del self._seeds[drone_id]
            removed.append(drone_id)
        if removed:
            logger.debug("Collected startup seeds: %s", ", ".join(removed))
        return removed

    def placeholders(
        self,
        present_ids: Iterable[str],
        now: datetime,
    ) -> list[DroneRecord]:
        """Provisional records for fresh seeds the registry has not listed."""
        present = set(present_ids)
        out: list[DroneRecord] = []
        for drone_id, seed in self._seeds.items():
            if drone_id in present:
                continue
            if not is_fresh(seed.created_at, now, self._grace_seconds):
                continue
            out.append(DroneRecord(
                id=drone_id,
                name=seed.drone_name,
                phase="starting",
                chats=(seed.chat_name,),
                group=seed.group,
                repo_path=seed.repo_path or "",
                created_at=seed.created_at.isoformat(),
            ))
        return out
