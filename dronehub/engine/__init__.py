"""Reconciliation engine: optimistic state over a polled drone registry."""
from .models import (
    BatchCreateOutcome,
    BatchCreateResult,
    CreatedDrone,
    CreateSpec,
    DroneRecord,
    PromptReceipt,
    QueuedPrompt,
    QueuedPromptState,
    QueueKey,
    RejectedCreate,
    RenameResult,
    SeedIntent,
    SelectionPreference,
    SentPrompt,
    StartupSeed,
    TickReport,
)
from .config import ReconcilerConfig
from .errors import (
    CommandFailure,
    DeliveryError,
    DroneHubError,
    GatewayError,
    ValidationError,
)
from .gateway import CommandGateway, RegistryGateway
from .reconciler import Reconciler

__all__ = [
    # Engine
    "Reconciler",
    "ReconcilerConfig",
    # Gateways
    "CommandGateway",
    "RegistryGateway",
    # Models
    "BatchCreateOutcome",
    "BatchCreateResult",
    "CreatedDrone",
    "CreateSpec",
    "DroneRecord",
    "PromptReceipt",
    "QueuedPrompt",
    "QueuedPromptState",
    "QueueKey",
    "RejectedCreate",
    "RenameResult",
    "SeedIntent",
    "SelectionPreference",
    "SentPrompt",
    "StartupSeed",
    "TickReport",
    # Errors
    "CommandFailure",
    "DeliveryError",
    "DroneHubError",
    "GatewayError",
    "ValidationError",
]
