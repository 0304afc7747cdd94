"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via DRONEHUB_* env vars.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from .models import DEFAULT_CHAT

logger = logging.getLogger(__name__)


@dataclass
class ReconcilerConfig:
    """Reconciliation engine configuration."""

    # Hub API base URL (serves /api/drones)
    hub_url: str = "http://127.0.0.1:5174"
    # Seconds between registry snapshots.
    poll_interval_seconds: float = 2.0
    # How long a seed for a drone the registry has not listed yet is
    # still considered fresh.
    seed_grace_seconds: float = 30.0
    # How long a selection preference waits for its drone to show up,
    # independent of the seed.
    selection_hold_seconds: float = 30.0
    # Per-request timeout for hub calls.
    request_timeout_seconds: float = 30.0
    default_chat: str = DEFAULT_CHAT

    # Logging
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> ReconcilerConfig:
        """Load configuration from DRONEHUB_* environment variables."""
        hub_vars = {
            k: v for k, v in os.environ.items() if k.startswith("DRONEHUB_")
        }
        if hub_vars:
            logger.info(
                "ReconcilerConfig.from_env: DRONEHUB_* env overrides: %s",
                ", ".join(f"{k}={v}" for k, v in sorted(hub_vars.items())),
            )
        else:
            logger.debug("ReconcilerConfig.from_env: no DRONEHUB_* env vars set, using defaults")

        config = cls(
            hub_url=os.getenv("DRONEHUB_URL", cls.hub_url),
            poll_interval_seconds=float(os.getenv(
                "DRONEHUB_POLL_INTERVAL", str(cls.poll_interval_seconds)
            )),
            seed_grace_seconds=float(os.getenv(
                "DRONEHUB_SEED_GRACE", str(cls.seed_grace_seconds)
            )),
            selection_hold_seconds=float(os.getenv(
                "DRONEHUB_SELECTION_HOLD", str(cls.selection_hold_seconds)
            )),
            request_timeout_seconds=float(os.getenv(
                "DRONEHUB_REQUEST_TIMEOUT", str(cls.request_timeout_seconds)
            )),
            default_chat=os.getenv("DRONEHUB_DEFAULT_CHAT", cls.default_chat)
            or DEFAULT_CHAT,
            log_level=os.getenv("DRONEHUB_LOG_LEVEL", cls.log_level),
        )
        logger.info(
            "ReconcilerConfig.from_env: hub=%s poll=%ss grace=%ss hold=%ss",
            config.hub_url, config.poll_interval_seconds,
            config.seed_grace_seconds, config.selection_hold_seconds,
        )
        return config
