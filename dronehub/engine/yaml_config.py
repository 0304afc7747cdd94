"""YAML configuration loader.

Layers a YAML file over the env-derived configuration. Backward
compatible: when no YAML is provided, DRONEHUB_* env vars work
exactly as before.

Example YAML:
    hub:
      url: http://127.0.0.1:5174
      request_timeout_seconds: 15

    reconciler:
      poll_interval_seconds: 2
      seed_grace_seconds: 30
      selection_hold_seconds: 30
      default_chat: default
      log_level: DEBUG
"""
from __future__ import annotations

import logging
from dataclasses import replace
from pathlib import Path

import yaml

from .config import ReconcilerConfig

logger = logging.getLogger(__name__)

_HUB_KEYS = {"url", "request_timeout_seconds"}
_RECONCILER_KEYS = {
    "poll_interval_seconds",
    "seed_grace_seconds",
    "selection_hold_seconds",
    "default_chat",
    "log_level",
}


def _warn_unknown(section: str, raw: dict, known: set[str]) -> None:
    unknown = sorted(set(raw) - known)
    if unknown:
        logger.warning(
            "load_yaml_config: ignoring unknown keys in %s: %s",
            section, ", ".join(unknown),
        )


def load_yaml_config(
    path: str | Path,
    base: ReconcilerConfig | None = None,
) -> ReconcilerConfig:
    """Load a YAML config file on top of *base* (default: env config).

    Raises FileNotFoundError if *path* does not exist and
    ``yaml.YAMLError`` if it cannot be parsed.
    """
    path = Path(path)
    logger.info(
        "load_yaml_config: attempting to load config from %s (exists=%s)",
        path, path.exists()
    )
    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error(
            "load_yaml_config: config file not found at %s (absolute path: %s)",
            path, path.absolute()
        )
        raise
    except yaml.YAMLError as exc:
        logger.error(
            "load_yaml_config: YAML parse error in %s: %s",
            path, exc
        )
        raise

    if not isinstance(raw, dict):
        raise ValueError(f"{path}: expected a mapping at top level")

    config = base if base is not None else ReconcilerConfig.from_env()

    hub_raw = raw.get("hub") or {}
    _warn_unknown("hub", hub_raw, _HUB_KEYS)
    rec_raw = raw.get("reconciler") or {}
    _warn_unknown("reconciler", rec_raw, _RECONCILER_KEYS)

    config = replace(
        config,
        hub_url=str(hub_raw.get("url", config.hub_url)),
        request_timeout_seconds=float(hub_raw.get(
            "request_timeout_seconds", config.request_timeout_seconds
        )),
        poll_interval_seconds=float(rec_raw.get(
            "poll_interval_seconds", config.poll_interval_seconds
        )),
        seed_grace_seconds=float(rec_raw.get(
            "seed_grace_seconds", config.seed_grace_seconds
        )),
        selection_hold_seconds=float(rec_raw.get(
            "selection_hold_seconds", config.selection_hold_seconds
        )),
        default_chat=str(rec_raw.get("default_chat") or config.default_chat),
        log_level=str(rec_raw.get("log_level", config.log_level)).upper(),
    )
    logger.info(
        "Parsed YAML config %s: hub=%s poll=%ss grace=%ss hold=%ss",
        path.name, config.hub_url, config.poll_interval_seconds,
        config.seed_grace_seconds, config.selection_hold_seconds,
    )
    return config
