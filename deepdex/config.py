"""Persistent DeepDex settings and state directory helpers."""

from __future__ import annotations

import json
import logging
import os
from copy import deepcopy
from pathlib import Path
from typing import Any

logger = logging.getLogger("deepdex.config")

HOME_ENV = "DEEPDEX_HOME"
DEFAULT_HOME = Path.home() / ".deepdex"
DEFAULT_ACCOUNT = "main"

DEFAULT_PM_SETTINGS: dict[str, float | int] = {
    "start_grace_seconds": 1.5,
    "stop_grace_seconds": 1.0,
    "restart_delay_seconds": 0.5,
    "default_log_lines": 50,
    "follow_poll_seconds": 0.5,
}


def deepdex_home() -> Path:
    """Return the state root, honoring DEEPDEX_HOME when set."""
    override = str(os.getenv(HOME_ENV, "")).strip()
    if override:
        return Path(override).expanduser()
    return DEFAULT_HOME


def settings_path() -> Path:
    return deepdex_home() / "config.json"


def processes_path() -> Path:
    return deepdex_home() / "processes.json"


def wallet_path() -> Path:
    return deepdex_home() / "wallet.json"


def logs_dir() -> Path:
    return deepdex_home() / "logs"


def pm_log_dir() -> Path:
    return logs_dir() / "pm"


def ensure_directories() -> None:
    """Create the state and log directories if missing."""
    deepdex_home().mkdir(parents=True, exist_ok=True)
    logs_dir().mkdir(parents=True, exist_ok=True)
    pm_log_dir().mkdir(parents=True, exist_ok=True)


def default_settings() -> dict[str, Any]:
    return {
        "default_account": DEFAULT_ACCOUNT,
        "pm": deepcopy(DEFAULT_PM_SETTINGS),
    }


def validate_settings(settings: dict[str, Any]) -> dict[str, Any]:
    """Merge user settings over defaults, dropping invalid values."""
    if not isinstance(settings, dict):
        raise ValueError("settings must be object")
    merged = default_settings()
    account = str(settings.get("default_account", "")).strip()
    if account:
        merged["default_account"] = account
    pm_raw = settings.get("pm", {})
    if pm_raw is None:
        pm_raw = {}
    if not isinstance(pm_raw, dict):
        raise ValueError("pm settings must be object")
    for key, default in DEFAULT_PM_SETTINGS.items():
        if key not in pm_raw:
            continue
        value = pm_raw[key]
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            logger.warning("Ignoring non-numeric pm setting %s=%r", key, value)
            continue
        if value < 0 or (key == "default_log_lines" and value < 1):
            logger.warning("Ignoring out-of-range pm setting %s=%r", key, value)
            continue
        merged["pm"][key] = type(default)(value)
    return merged


def load_settings(path: Path | None = None) -> dict[str, Any]:
    """Load settings from disk or return defaults."""
    path = path or settings_path()
    if not path.exists():
        return default_settings()
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return default_settings()
    try:
        return validate_settings(raw)
    except ValueError:
        return default_settings()
