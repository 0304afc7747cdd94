"""Exception hierarchy for the reconciliation engine.

Validation and command errors are local to the operation that raised
them. Nothing here is fatal to the polling loop.
"""
from __future__ import annotations


class DroneHubError(Exception):
    """Base exception for all dronehub errors."""


class ValidationError(DroneHubError):
    """Request rejected before any store was touched."""
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class GatewayError(DroneHubError):
    """A gateway call failed (transport error or non-2xx response)."""
    def __init__(self, message: str, status: int | None = None):
        self.message = message
        self.status = status
        super().__init__(message)


class DeliveryError(DroneHubError):
    """A prompt could not be delivered to its drone."""
    def __init__(self, drone_id: str, chat_name: str, reason: str):
        self.drone_id = drone_id
        self.chat_name = chat_name
        self.reason = reason
        super().__init__(
            f"Cannot deliver prompt to {drone_id}::{chat_name}: {reason}"
        )


class CommandFailure(DroneHubError):
    """A delete or rename command was rejected by the hub."""
    def __init__(self, command: str, drone_id: str, reason: str):
        self.command = command
        self.drone_id = drone_id
        self.reason = reason
        super().__init__(f"{command} {drone_id} failed: {reason}")
