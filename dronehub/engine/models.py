"""Core data models for the reconciliation engine.

All dataclasses, enums, and type aliases. Single source of truth
to avoid circular imports.
"""
from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

DEFAULT_CHAT = "default"

# Phases during which the hub is still provisioning a drone.
PROVISIONING_PHASES = frozenset({"creating", "starting", "seeding"})
ERROR_PHASE = "error"
READY_PHASE = "ready"

# Returns the current time. Injected so tests can move time by hand.
Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _make_prompt_id() -> str:
    return f"queued-{uuid.uuid4()}"


def is_provisioning(phase: str | None) -> bool:
    return (phase or "") in PROVISIONING_PHASES


def can_accept_prompts(phase: str | None) -> bool:
    """True once a drone is neither provisioning nor errored."""
    return not is_provisioning(phase) and phase != ERROR_PHASE


class QueuedPromptState(str, Enum):
    """Lifecycle of a locally queued prompt.

    Delivered prompts leave the queue, so there is no terminal
    success state.
    """
    QUEUED = "queued"
    SENDING = "sending"
    FAILED = "failed"


@dataclass(frozen=True)
class DroneRecord:
    """One drone as reported by the registry. Read-only to the engine."""
    id: str
    name: str
    phase: str = READY_PHASE
    busy: bool = False
    chats: tuple[str, ...] = ()
    group: str | None = None
    repo_path: str = ""
    message: str | None = None
    created_at: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DroneRecord:
        """Parse a drone summary from the hub's ``GET /api/drones`` payload.

        The hub reports ``hubPhase: null`` for drones that finished
        provisioning; those are treated as ``ready``.
        """
        drone_id = str(data.get("id") or data.get("name") or "").strip()
        name = str(data.get("name") or drone_id).strip()
        phase = str(data.get("hubPhase") or data.get("phase") or "").strip()
        chats = data.get("chats") or []
        group = str(data.get("group") or "").strip() or None
        return cls(
            id=drone_id,
            name=name,
            phase=phase or READY_PHASE,
            busy=bool(data.get("busy", False)),
            chats=tuple(str(c) for c in chats if str(c).strip()),
            group=group,
            repo_path=str(data.get("repoPath") or "").strip(),
            message=data.get("hubMessage") or None,
            created_at=data.get("createdAt") or None,
        )

    @property
    def provisioning(self) -> bool:
        return is_provisioning(self.phase)


@dataclass(frozen=True)
class QueueKey:
    """Composite (drone id, chat name) under which prompts are ordered."""
    drone_id: str
    chat_name: str = DEFAULT_CHAT

    @classmethod
    def of(cls, drone_id: str, chat_name: str | None = None) -> QueueKey:
        return cls(
            drone_id=str(drone_id or "").strip(),
            chat_name=str(chat_name or "").strip() or DEFAULT_CHAT,
        )

    def __str__(self) -> str:
        return f"{self.drone_id}::{self.chat_name}"


@dataclass
class QueuedPrompt:
    """A prompt waiting locally until its drone can accept it."""
    prompt: str
    prompt_id: str = field(default_factory=_make_prompt_id)
    state: QueuedPromptState = QueuedPromptState.QUEUED
    error: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime | None = None


@dataclass
class SeedIntent:
    """What the user asked for when creating one or more drones."""
    chat_name: str = DEFAULT_CHAT
    agent: str | None = None
    model: str | None = None
    prompt: str = ""
    group: str | None = None
    repo_path: str | None = None


@dataclass
class StartupSeed:
    """Remembered creation intent for a drone the registry may not list yet."""
    drone_name: str
    chat_name: str = DEFAULT_CHAT
    agent: str | None = None
    model: str | None = None
    prompt: str = ""
    group: str | None = None
    repo_path: str | None = None
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class SelectionPreference:
    drone_id: str
    hold_until: datetime


@dataclass
class SentPrompt:
    """Entry in the transient "recently sent" list for the active chat."""
    prompt_id: str
    prompt: str
    at: datetime = field(default_factory=_utcnow)


@dataclass
class CreateSpec:
    """Parameters for creating one drone."""
    name: str
    group: str | None = None
    repo_path: str | None = None
    seed_chat: str = DEFAULT_CHAT
    seed_agent: str | None = None
    seed_model: str | None = None
    seed_prompt: str | None = None
    clone_from: str | None = None
    clone_chats: bool = False

    def to_payload(self) -> dict[str, Any]:
        """Request body in the hub's camelCase shape. Empty fields are omitted."""
        payload: dict[str, Any] = {"seedChat": self.seed_chat}
        if self.name.strip():
            payload["name"] = self.name.strip()
        if self.group and self.group.strip():
            payload["group"] = self.group.strip()
        if self.repo_path and self.repo_path.strip():
            payload["repoPath"] = self.repo_path.strip()
        if self.clone_from:
            payload["cloneFrom"] = self.clone_from
            payload["cloneChats"] = bool(self.clone_chats)
        if self.seed_agent:
            payload["seedAgent"] = self.seed_agent
        if self.seed_model:
            payload["seedModel"] = self.seed_model
        if self.seed_prompt and self.seed_prompt.strip():
            payload["seedPrompt"] = self.seed_prompt.strip()
        return payload


@dataclass
class CreatedDrone:
    id: str
    name: str
    phase: str = "starting"


@dataclass
class RejectedCreate:
    name: str
    error: str


@dataclass
class BatchCreateResult:
    """Raw gateway answer to a batch create."""
    accepted: list[CreatedDrone] = field(default_factory=list)
    rejected: list[RejectedCreate] = field(default_factory=list)
    total: int = 0


@dataclass
class BatchCreateOutcome:
    """Batch create as seen by the caller after the stores were updated.

    ``pending_names`` are the requested names that were not accepted,
    in request order, kept so the user can fix and resubmit them.
    """
    accepted: list[CreatedDrone] = field(default_factory=list)
    rejected: list[RejectedCreate] = field(default_factory=list)
    pending_names: list[str] = field(default_factory=list)


@dataclass
class RenameResult:
    id: str
    old_name: str
    new_name: str


@dataclass
class PromptReceipt:
    prompt_id: str


@dataclass
class TickReport:
    """What a single reconciliation tick changed."""
    removed_seeds: list[str] = field(default_factory=list)
    confirmed_deletions: list[str] = field(default_factory=list)
    selected: str | None = None
    preference_cleared: bool = False
    flushes_started: list[QueueKey] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(
            self.removed_seeds
            or self.confirmed_deletions
            or self.preference_cleared
            or self.flushes_started
        )
