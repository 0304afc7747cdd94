"""Adapters package - Bridge between the engine and the drone hub.

Contains the HTTP client that implements the registry and command
gateways over the hub's REST API.
"""
from __future__ import annotations

__all__ = [
    "HubClient",
]

from dronehub.adapters.hub_client import HubClient
