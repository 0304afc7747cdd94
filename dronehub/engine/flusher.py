"""Queue flusher: delivers queued prompts once their drone is ready.

One flush loop per queue key at most (single-flight). Each loop walks
its queue strictly in insertion order and stops at the first item that
is not ``queued``, so a failed prompt blocks everything behind it until
a human removes or retries it. Failures are never retried
automatically: a retried prompt could run twice on the drone.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping

from .errors import GatewayError
from .gateway import CommandGateway
from .models import (
    DroneRecord,
    PromptReceipt,
    QueuedPrompt,
    QueuedPromptState,
    QueueKey,
    can_accept_prompts,
)
from .queued_prompts import QueuedPromptStore

logger = logging.getLogger(__name__)

# Called after a queued prompt was accepted by the hub and removed from
# the queue. Signature: (key, delivered_item, receipt) -> None
DeliveredCallback = Callable[[QueueKey, QueuedPrompt, PromptReceipt], None]


class QueueFlusher:
    """Starts and tracks per-key flush loops over a QueuedPromptStore."""

    def __init__(
        self,
        store: QueuedPromptStore,
        gateway: CommandGateway,
        on_delivered: DeliveredCallback | None = None,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._on_delivered = on_delivered
        self._flushing: set[QueueKey] = set()
        self._tasks: set[asyncio.Task[None]] = set()
        self._alive = True

    def is_flushing(self, key: QueueKey) -> bool:
        return key in self._flushing

    def trigger(self, snapshot: Mapping[str, DroneRecord]) -> list[QueueKey]:
        """Start a loop for every queue whose drone can now take prompts."""
        started: list[QueueKey] = []
        for key in self._store.keys():
            record = snapshot.get(key.drone_id)
            if record is None or not can_accept_prompts(record.phase):
                continue
            if self.start(key):
                started.append(key)
        return started

    def start(self, key: QueueKey) -> bool:
        """Start a flush loop for *key* unless one is already running.

        Must be called from inside a running event loop; outside one it
        raises RuntimeError and leaves *key* unclaimed.
        """
        if not self._alive or key in self._flushing:
            return False
        head = self._store.head(key)
        if head is None or head.state is not QueuedPromptState.QUEUED:
            return False
        loop = asyncio.get_running_loop()
        # Claim the key before the task exists so a second call in the
        # same tick cannot start a duplicate loop.
        self._flushing.add(key)
        task = loop.create_task(
            self._run(key), name=f"flush:{key}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug("Started flush loop for %s", key)
        return True

    async def drain(self) -> None:
        """Wait until every running flush loop has exited."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def close(self) -> None:
        """Stop applying gateway responses. Running loops exit quietly."""
        self._alive = False

    async def _run(self, key: QueueKey) -> None:
        try:
            await self._flush(key)
        finally:
            self._flushing.discard(key)
            logger.debug("Flush loop for %s exited", key)

    async def _flush(self, key: QueueKey) -> None:
        while self._alive:
            head = self._store.head(key)
            if head is None:
                return
            if head.state is not QueuedPromptState.QUEUED:
                return

            self._store.patch(
                key, head.prompt_id, state=QueuedPromptState.SENDING, error=None,
            )
            try:
                receipt = await self._gateway.send_prompt(
                    key.drone_id, key.chat_name, head.prompt,
                )
            except GatewayError as exc:
                self._fail(key, head, exc.message)
                return
            except Exception as exc:
                logger.exception("Unexpected error delivering %s to %s", head.prompt_id, key)
                self._fail(key, head, str(exc) or type(exc).__name__)
                return

            if not self._alive:
                return
            self._store.remove(key, head.prompt_id)
            logger.info("Delivered queued prompt %s to %s as %s", head.prompt_id, key, receipt.prompt_id)
            if self._on_delivered is not None:
                self._on_delivered(key, head, receipt)

    def _fail(self, key: QueueKey, item: QueuedPrompt, reason: str) -> None:
        if not self._alive:
            return
        logger.warning("Queued prompt %s for %s failed: %s", item.prompt_id, key, reason)
        self._store.patch(
            key, item.prompt_id, state=QueuedPromptState.FAILED, error=reason,
        )
