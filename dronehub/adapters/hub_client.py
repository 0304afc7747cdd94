"""HTTP client for the drone hub API.

Implements both ``RegistryGateway`` and ``CommandGateway`` on one
aiohttp session. Every failure (connection error, timeout, non-2xx
status) surfaces as ``GatewayError`` carrying the hub's own error text
when it sent one.
"""
from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Sequence
from typing import Any
from urllib.parse import quote

import aiohttp

from dronehub.engine.errors import GatewayError
from dronehub.engine.models import (
    BatchCreateResult,
    CreatedDrone,
    CreateSpec,
    DroneRecord,
    PromptReceipt,
    RejectedCreate,
    RenameResult,
)

logger = logging.getLogger(__name__)


def _seg(value: str) -> str:
    return quote(str(value), safe="")


def _error_message(status: int, reason: str | None, data: Any) -> str:
    """Best human-readable message for a failed response."""
    prefix = f"{status} {reason or ''}".strip()
    if isinstance(data, dict):
        if data.get("error"):
            return str(data["error"])
        errors = data.get("errors")
        if isinstance(errors, list) and errors:
            joined = ", ".join(
                f"{e.get('name') or 'unknown'}: {e.get('error') or 'failed'}"
                for e in errors
                if isinstance(e, dict)
            )
            return f"{prefix}: {joined}"
    return prefix


class HubClient:
    """Registry + command gateway backed by the hub's REST API.

    Use as an async context manager, or pass an existing session.
    """

    def __init__(
        self,
        base_url: str,
        session: aiohttp.ClientSession | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    async def __aenter__(self) -> HubClient:
        self._ensure_session()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _request(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
    ) -> Any:
        session = self._ensure_session()
        url = f"{self._base_url}{path}"
        try:
            async with session.request(
                method, url, json=payload, timeout=self._timeout,
            ) as resp:
                text = await resp.text()
                status, reason = resp.status, resp.reason
        except asyncio.TimeoutError as exc:
            raise GatewayError(f"{method} {path} timed out") from exc
        except aiohttp.ClientError as exc:
            raise GatewayError(f"{method} {path} failed: {exc}") from exc

        data: Any = None
        if text:
            try:
                data = json.loads(text)
            except ValueError:
                logger.debug("Non-JSON body from %s %s (status %s)", method, path, status)
        if status >= 400:
            message = _error_message(status, reason, data)
            logger.debug("%s %s -> %s: %s", method, path, status, message)
            raise GatewayError(message, status)
        return data

    # ── RegistryGateway ──

    async def snapshot(self) -> list[DroneRecord]:
        data = await self._request("GET", "/api/drones")
        items = (data or {}).get("drones") or []
        return [DroneRecord.from_dict(d) for d in items if isinstance(d, dict)]

    # ── CommandGateway ──

    async def create(self, spec: CreateSpec) -> CreatedDrone:
        data = await self._request("POST", "/api/drones", spec.to_payload()) or {}
        drone_id = str(data.get("id") or "").strip()
        if not drone_id:
            raise GatewayError("create drone did not return an id")
        return CreatedDrone(
            id=drone_id,
            name=str(data.get("name") or spec.name).strip() or drone_id,
            phase=str(data.get("phase") or "starting"),
        )

    async def batch_create(self, specs: Sequence[CreateSpec]) -> BatchCreateResult:
        body = {"drones": [s.to_payload() for s in specs]}
        data = await self._request("POST", "/api/drones/batch", body) or {}
        accepted: list[CreatedDrone] = []
        for item in data.get("accepted") or []:
            name = str((item or {}).get("name") or "").strip()
            drone_id = str((item or {}).get("id") or name).strip()
            if not drone_id or not name:
                continue
            accepted.append(CreatedDrone(
                id=drone_id, name=name, phase=str(item.get("phase") or "starting"),
            ))
        rejected = [
            RejectedCreate(
                name=str((item or {}).get("name") or "").strip(),
                error=str((item or {}).get("error") or "Failed to queue drone."),
            )
            for item in data.get("rejected") or []
        ]
        return BatchCreateResult(
            accepted=accepted,
            rejected=rejected,
            total=int(data.get("total") or len(specs)),
        )

    async def send_prompt(self, drone_id: str, chat_name: str, text: str) -> PromptReceipt:
        data = await self._request(
            "POST",
            f"/api/drones/{_seg(drone_id)}/chats/{_seg(chat_name)}/prompt",
            {"prompt": text},
        ) or {}
        return PromptReceipt(prompt_id=str(data.get("promptId") or "").strip())

    async def rename(self, drone_id: str, new_name: str) -> RenameResult:
        data = await self._request(
            "POST", f"/api/drones/{_seg(drone_id)}/rename", {"newName": new_name},
        ) or {}
        return RenameResult(
            id=str(data.get("id") or drone_id),
            old_name=str(data.get("oldName") or ""),
            new_name=str(data.get("newName") or new_name),
        )

    async def delete(self, drone_id: str) -> None:
        await self._request("DELETE", f"/api/drones/{_seg(drone_id)}")
