"""Interfaces the engine consumes from the hub.

Implementations raise ``GatewayError`` for any failure: transport
errors, timeouts and rejected requests alike.
"""
from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from .models import (
    BatchCreateResult,
    CreatedDrone,
    CreateSpec,
    DroneRecord,
    PromptReceipt,
    RenameResult,
)


class RegistryGateway(Protocol):
    async def snapshot(self) -> list[DroneRecord]: ...


class CommandGateway(Protocol):
    async def create(self, spec: CreateSpec) -> CreatedDrone: ...

    async def batch_create(self, specs: Sequence[CreateSpec]) -> BatchCreateResult: ...

    async def send_prompt(
        self, drone_id: str, chat_name: str, text: str,
    ) -> PromptReceipt: ...

    async def rename(self, drone_id: str, new_name: str) -> RenameResult: ...

    async def delete(self, drone_id: str) -> None: ...
