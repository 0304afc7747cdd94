"""Reconciliation engine.

Owns the four optimistic stores (startup seeds, deletion overlay,
queued prompts, selection preference) and reconciles them against each
registry snapshot. User actions go through the command gateway first and
only touch the stores once the hub accepted them.

The engine is single-threaded: everything runs on one asyncio loop and
the only suspension points are gateway calls. After ``close()`` any
gateway response that arrives late is dropped instead of applied.
"""
from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone

from .config import ReconcilerConfig
from .deletions import DeletionOverlay
from .errors import CommandFailure, DeliveryError, GatewayError, ValidationError
from .flusher import QueueFlusher
from .gateway import CommandGateway, RegistryGateway
from .models import (
    BatchCreateOutcome,
    Clock,
    CreatedDrone,
    CreateSpec,
    DroneRecord,
    PromptReceipt,
    QueuedPrompt,
    QueueKey,
    RenameResult,
    SeedIntent,
    SentPrompt,
    TickReport,
    can_accept_prompts,
)
from .queued_prompts import QueuedPromptStore
from .seeds import StartupSeedStore
from .selection import SelectionAction, SelectionPreferenceHolder, default_selection

logger = logging.getLogger(__name__)

MAX_DRONE_NAME_LENGTH = 48
MAX_RENAME_LENGTH = 80
_DRONE_NAME_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_valid_drone_name(name: str) -> bool:
    """Dash-case: lower-case letters/digits with single inner hyphens."""
    text = str(name or "")
    if not text or text != text.strip() or len(text) > MAX_DRONE_NAME_LENGTH:
        return False
    return bool(_DRONE_NAME_RE.match(text))


def _preview(names: Sequence[str], limit: int = 4) -> str:
    shown = ", ".join(names[:limit])
    extra = len(names) - limit
    return f"{shown} (+{extra} more)" if extra > 0 else shown


def _intent_for(spec: CreateSpec) -> SeedIntent:
    # A clone that copies chats inherits the source's agent setup.
    inherits = bool(spec.clone_from and spec.clone_chats)
    return SeedIntent(
        chat_name=spec.seed_chat,
        agent=None if inherits else spec.seed_agent,
        model=None if inherits else spec.seed_model,
        prompt=(spec.seed_prompt or "").strip(),
        group=(spec.group or "").strip() or None,
        repo_path=(spec.repo_path or "").strip() or None,
    )


class Reconciler:
    """Client-side reconciliation layer over a polled drone registry."""

    def __init__(
        self,
        registry: RegistryGateway,
        commands: CommandGateway,
        config: ReconcilerConfig | None = None,
        clock: Clock = _utcnow,
    ) -> None:
        self.config = config or ReconcilerConfig()
        self._registry = registry
        self._commands = commands
        self._clock = clock

        self.seeds = StartupSeedStore(self.config.seed_grace_seconds)
        self.deletions = DeletionOverlay()
        self.queue = QueuedPromptStore(clock=clock)
        self.selection = SelectionPreferenceHolder()
        self.flusher = QueueFlusher(
            self.queue, commands, on_delivered=self._mirror_delivered,
        )

        self._snapshot: dict[str, DroneRecord] = {}
        self._deleting: set[str] = set()
        self._renaming: set[str] = set()
        self._alive = True

        self.selected_drone: str | None = None
        self.selected_chat: str = self.config.default_chat
        self.active_repo_path: str = ""
        self.recently_sent: list[SentPrompt] = []
        self.pending_create_names: list[str] = []
        self.last_poll_error: str | None = None

    # ── Lifecycle ──

    @property
    def alive(self) -> bool:
        return self._alive

    def close(self) -> None:
        """Detach from the view. Late gateway responses are discarded."""
        if not self._alive:
            return
        self._alive = False
        self.flusher.close()
        logger.debug("Reconciler closed")

    async def drain(self) -> None:
        await self.flusher.drain()

    # ── Derived views ──

    @property
    def snapshot(self) -> list[DroneRecord]:
        return list(self._snapshot.values())

    def get_drone(self, drone_id: str) -> DroneRecord | None:
        return self._snapshot.get(drone_id)

    def _in_active_repo(self, record: DroneRecord) -> bool:
        repo = self.active_repo_path.strip()
        return not repo or record.repo_path.strip() == repo

    def visible_drones(self) -> list[DroneRecord]:
        """Registry drones minus optimistic deletions, scoped to the active repo."""
        return [
            r for r in self.deletions.filter(self._snapshot.values())
            if self._in_active_repo(r)
        ]

    def display_drones(self) -> list[DroneRecord]:
        """Visible drones plus placeholders for fresh, not-yet-listed seeds."""
        placeholders = [
            r for r in self.seeds.placeholders(self._snapshot, self._clock())
            if r.id not in self.deletions and self._in_active_repo(r)
        ]
        return placeholders + self.visible_drones()

    def queued_prompts(self, drone_id: str, chat_name: str | None = None) -> list[QueuedPrompt]:
        return self.queue.items(self.queue_key(drone_id, chat_name))

    @property
    def active_key(self) -> QueueKey | None:
        if not self.selected_drone:
            return None
        return QueueKey.of(self.selected_drone, self.selected_chat)

    def queue_key(self, drone_id: str, chat_name: str | None) -> QueueKey:
        return QueueKey.of(drone_id, chat_name or self.config.default_chat)

    # ── Selection ──

    def select(self, drone_id: str | None, chat_name: str | None = None) -> None:
        """Manual selection from the presentation layer."""
        self._select(drone_id)
        if chat_name:
            self.selected_chat = chat_name.strip() or self.config.default_chat

    def _select(self, drone_id: str | None) -> None:
        if drone_id == self.selected_drone:
            return
        self.selected_drone = drone_id
        self.selected_chat = self.config.default_chat
        # The recently-sent list is scoped to the active chat.
        self.recently_sent = []

    def _settle_chat(self) -> None:
        record = self._snapshot.get(self.selected_drone or "")
        if record is None or not record.chats or self.selected_chat in record.chats:
            return
        default = self.config.default_chat
        self.selected_chat = default if default in record.chats else record.chats[0]

    # ── Reconciliation tick ──

    def apply_snapshot(self, records: Iterable[DroneRecord]) -> TickReport:
        """Reconcile every store against a new registry snapshot.

        Idempotent: applying the same snapshot twice changes nothing
        the second time. Starting flush loops needs a running loop.
        """
        report = TickReport()
        if not self._alive:
            return report
        now = self._clock()
        self._snapshot = {r.id: r for r in records if r.id}

        report.removed_seeds = self.seeds.collect_garbage(self._snapshot, now)
        report.confirmed_deletions = self.deletions.collect_garbage(self._snapshot)

        visible = [r.id for r in self.visible_drones()]
        pref = self.selection.preference
        seed_fresh = pref is not None and self.seeds.is_fresh(pref.drone_id, now)
        decision = self.selection.resolve(visible, seed_fresh, now)
        report.preference_cleared = decision.cleared
        if decision.action is SelectionAction.SELECT:
            self._select(decision.drone_id)
            report.selected = decision.drone_id
        elif decision.action is SelectionAction.DEFAULT:
            chosen = default_selection(visible, self.selected_drone)
            if chosen != self.selected_drone:
                self._select(chosen)
                report.selected = chosen
        self._settle_chat()

        report.flushes_started = self.flusher.trigger(self._snapshot)

        if report.changed:
            logger.debug(
                "Tick: seeds-=%s deleted=%s selected=%s flush=%s",
                report.removed_seeds, report.confirmed_deletions,
                report.selected, [str(k) for k in report.flushes_started],
            )
        return report

    async def poll_once(self) -> TickReport | None:
        """Fetch one registry snapshot and reconcile against it.

        A failed poll keeps the previous snapshot: staleness between
        polls is expected, not an error.
        """
        try:
            records = await self._registry.snapshot()
        except GatewayError as exc:
            self.last_poll_error = exc.message
            logger.warning("Registry poll failed: %s", exc.message)
            return None
        if not self._alive:
            return None
        self.last_poll_error = None
        return self.apply_snapshot(records)

    async def run(self, stop: asyncio.Event | None = None) -> None:
        """Poll the registry until *stop* is set or the engine is closed."""
        stop = stop or asyncio.Event()
        interval = max(self.config.poll_interval_seconds, 0.0)
        logger.info("Polling registry every %.1fs", interval)
        while self._alive and not stop.is_set():
            await self.poll_once()
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue

    # ── Create ──

    def _validate_create_names(self, specs: Sequence[CreateSpec]) -> None:
        if not specs:
            raise ValidationError("At least one name is required.")
        names = [s.name.strip() for s in specs]
        if not all(names):
            raise ValidationError("missing name")
        invalid = list(dict.fromkeys(
            s.name.strip() for s in specs if not is_valid_drone_name(s.name)
        ))
        if invalid:
            raise ValidationError(
                f"Invalid name(s): {_preview(invalid)}. Use dash-case "
                f"(letters/numbers and single hyphens), no spaces, "
                f"max {MAX_DRONE_NAME_LENGTH} chars."
            )
        seen: set[str] = set()
        duplicates: list[str] = []
        for name in names:
            if name in seen and name not in duplicates:
                duplicates.append(name)
            seen.add(name)
        if duplicates:
            raise ValidationError(f"Duplicate name(s) in list: {_preview(duplicates)}.")
        taken = [name for name in names if self._name_taken(name)]
        if taken:
            raise ValidationError(f"Name(s) already in use: {_preview(taken)}.")

    def _validate_single_name(self, spec: CreateSpec) -> None:
        # Empty is allowed: the hub picks a name.
        name = spec.name.strip()
        if not name:
            return
        if len(name) > MAX_RENAME_LENGTH or "\n" in name or "\r" in name:
            raise ValidationError(
                f"Invalid name. Must be 1-{MAX_RENAME_LENGTH} chars "
                f"and cannot contain newlines."
            )
        if self._name_taken(name):
            raise ValidationError(f'A drone named "{name}" already exists.')

    def _name_taken(self, name: str, exclude_id: str | None = None) -> bool:
        return any(
            r.name == name and r.id != exclude_id
            for r in self.deletions.filter(self._snapshot.values())
        )

    async def create_drone(self, spec: CreateSpec) -> CreatedDrone:
        """Create one drone, seed it and anchor the selection on it."""
        self._validate_single_name(spec)
        created = await self._commands.create(spec)
        if not self._alive:
            return created
        now = self._clock()
        self.seeds.record([created], _intent_for(spec), now)
        self.selection.prefer(created.id, self.config.selection_hold_seconds, now)
        logger.info("Create accepted: %s (%s)", created.name, created.id)
        return created

    async def create_drones(self, specs: Sequence[CreateSpec]) -> BatchCreateOutcome:
        """Batch create. Accepted drones get seeds; the rest stay pending."""
        self._validate_create_names(specs)
        result = await self._commands.batch_create(specs)
        outcome = BatchCreateOutcome(rejected=list(result.rejected))
        if not self._alive:
            return outcome

        by_name = {s.name.strip(): s for s in specs}
        now = self._clock()
        for created in result.accepted:
            spec = by_name.get(created.name)
            if not created.id or spec is None:
                continue
            self.seeds.record([created], _intent_for(spec), now)
            outcome.accepted.append(created)

        if outcome.accepted:
            first = outcome.accepted[0].id
            self.selection.prefer(first, self.config.selection_hold_seconds, now)

        accepted_names = {c.name for c in outcome.accepted}
        outcome.pending_names = [
            s.name.strip() for s in specs if s.name.strip() not in accepted_names
        ]
        self.pending_create_names = list(outcome.pending_names)
        logger.info(
            "Batch create: %d accepted, %d rejected",
            len(outcome.accepted), len(outcome.rejected),
        )
        return outcome

    # ── Prompts ──

    async def send_prompt(
        self,
        drone_id: str,
        chat_name: str | None,
        text: str,
    ) -> QueuedPrompt | PromptReceipt:
        """Send a prompt now, or queue it until the drone can take it.

        Prompts are queued while the drone is provisioning or not yet
        listed, and also whenever the chat already has queued prompts,
        so a new prompt never overtakes an older one.
        """
        drone_id = str(drone_id or "").strip()
        prompt = str(text or "").strip()
        if not drone_id:
            raise ValidationError("missing drone id")
        if not prompt:
            raise ValidationError("missing prompt")
        if drone_id in self.deletions:
            raise ValidationError(f'drone "{drone_id}" is being deleted')
        record = self._snapshot.get(drone_id)
        if record is None and drone_id not in self.seeds:
            raise ValidationError(f'unknown drone "{drone_id}"')

        key = self.queue_key(drone_id, chat_name)
        ready = record is not None and not record.provisioning
        if not ready or self.queue.head(key) is not None:
            item = self.queue.enqueue(key.drone_id, key.chat_name, prompt)
            if item is None:
                raise ValidationError("missing prompt")
            if record is not None and can_accept_prompts(record.phase):
                self.flusher.start(key)
            return item

        try:
            receipt = await self._commands.send_prompt(key.drone_id, key.chat_name, prompt)
        except GatewayError as exc:
            raise DeliveryError(key.drone_id, key.chat_name, exc.message) from exc
        if self._alive and key == self.active_key:
            self._add_recently_sent(receipt.prompt_id, prompt)
        return receipt

    def remove_queued_prompt(self, drone_id: str, chat_name: str | None, prompt_id: str) -> bool:
        """Drop one queued prompt. Unblocks the queue if it was a failed head."""
        key = self.queue_key(drone_id, chat_name)
        removed = self.queue.remove(key, prompt_id)
        if removed:
            self._restart_if_ready(key)
        return removed

    def retry_queued_prompt(self, drone_id: str, chat_name: str | None, prompt_id: str) -> bool:
        key = self.queue_key(drone_id, chat_name)
        retried = self.queue.retry(key, prompt_id)
        if retried:
            self._restart_if_ready(key)
        return retried

    def _restart_if_ready(self, key: QueueKey) -> None:
        record = self._snapshot.get(key.drone_id)
        if record is not None and can_accept_prompts(record.phase):
            self.flusher.start(key)

    def _mirror_delivered(self, key: QueueKey, item: QueuedPrompt, receipt: PromptReceipt) -> None:
        if self._alive and key == self.active_key:
            self._add_recently_sent(receipt.prompt_id or item.prompt_id, item.prompt)

    def _add_recently_sent(self, prompt_id: str, prompt: str) -> None:
        if not prompt_id or any(p.prompt_id == prompt_id for p in self.recently_sent):
            return
        self.recently_sent.append(SentPrompt(prompt_id=prompt_id, prompt=prompt, at=self._clock()))

    # ── Rename / delete ──

    def _busy(self, drone_id: str) -> bool:
        return (
            drone_id in self._deleting
            or drone_id in self._renaming
            or drone_id in self.deletions
        )

    async def rename_drone(self, drone_id: str, new_name: str) -> RenameResult:
        """Rename a drone. Visible state only changes after the hub agrees."""
        drone_id = str(drone_id or "").strip()
        new_name = str(new_name or "").strip()
        current = self._snapshot.get(drone_id)
        current_name = (current.name if current else "") or drone_id
        if not drone_id or not new_name or new_name == current_name:
            raise ValidationError("no-op rename")
        if current is None or current.provisioning:
            raise ValidationError(f'drone "{drone_id}" is still starting')
        if self._busy(drone_id):
            raise ValidationError("rename busy")
        if len(new_name) > MAX_RENAME_LENGTH or "\n" in new_name or "\r" in new_name:
            raise ValidationError(
                f"Invalid drone name. Must be 1-{MAX_RENAME_LENGTH} chars "
                f"and cannot contain newlines."
            )
        if self._name_taken(new_name, exclude_id=drone_id):
            raise ValidationError(f'A drone named "{new_name}" already exists.')

        self._renaming.add(drone_id)
        try:
            result = await self._commands.rename(drone_id, new_name)
        except GatewayError as exc:
            logger.warning("Rename of %s to %s failed: %s", drone_id, new_name, exc.message)
            raise CommandFailure("rename", drone_id, exc.message) from exc
        finally:
            self._renaming.discard(drone_id)

        if self._alive:
            self.seeds.rename(drone_id, new_name)
            if self.selected_drone == drone_id:
                self.selection.prefer(
                    drone_id, self.config.selection_hold_seconds, self._clock(),
                )
        return result

    async def delete_drone(self, drone_id: str) -> bool:
        """Hide the drone, then delete it. Returns False if already in flight.

        A failed delete makes the drone visible again immediately.
        """
        drone_id = str(drone_id or "").strip()
        if not drone_id:
            raise ValidationError("missing drone id")
        if self._busy(drone_id):
            return False

        self.deletions.mark_deleting(drone_id)
        self._deleting.add(drone_id)
        try:
            await self._commands.delete(drone_id)
        except GatewayError as exc:
            logger.error("Delete of %s failed: %s", drone_id, exc.message)
            if self._alive:
                self.deletions.rollback(drone_id)
            raise CommandFailure("delete", drone_id, exc.message) from exc
        finally:
            self._deleting.discard(drone_id)

        if self._alive:
            self.queue.clear_for_drone(drone_id)
        logger.info("Delete accepted for %s", drone_id)
        return True
