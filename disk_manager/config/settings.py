"""Settings storage for application configuration."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


SETTINGS_PATH = Path(
    os.environ.get(
        "DISK_MANAGER_SETTINGS_PATH",
        Path.home() / ".config" / "disk-manager" / "settings.json",
    )
)

# Default values - use these constants instead of hardcoding values elsewhere
DEFAULT_FSTAB_PATH = "/etc/fstab"
DEFAULT_MOUNT_ROOT = "/mnt"
DEFAULT_PARTITION_LABEL = "gpt"
DEFAULT_SETTLE_DELAY = 2.0
DEFAULT_PARTITION_POLL_INTERVAL = 1.0
DEFAULT_PREEMPT_DELAY = 2.0

# Node poll attempts after a table rescan; not user-tunable.
PARTITION_POLL_ATTEMPTS = 10

DEFAULT_SETTINGS: dict[str, Any] = {
    "fstab_path": DEFAULT_FSTAB_PATH,
    "mount_root": DEFAULT_MOUNT_ROOT,
    "partition_label": DEFAULT_PARTITION_LABEL,
    "settle_delay_seconds": DEFAULT_SETTLE_DELAY,
    "partition_poll_interval_seconds": DEFAULT_PARTITION_POLL_INTERVAL,
    "preempt_delay_seconds": DEFAULT_PREEMPT_DELAY,
}


@dataclass
class SettingsStore:
    values: dict[str, Any] = field(default_factory=dict)


settings_store = SettingsStore()


def load_settings() -> None:
    settings_store.values = dict(DEFAULT_SETTINGS)
    if not SETTINGS_PATH.exists():
        return
    try:
        data = json.loads(SETTINGS_PATH.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return
    if isinstance(data, dict):
        settings_store.values.update(data)


def save_settings() -> None:
    SETTINGS_PATH.parent.mkdir(parents=True, exist_ok=True)
    SETTINGS_PATH.write_text(
        json.dumps(settings_store.values, indent=2, sort_keys=True),
        encoding="utf-8",
    )


def get_setting(key: str, default: Any | None = None) -> Any:
    return settings_store.values.get(key, default)


def set_setting(key: str, value: Any) -> None:
    settings_store.values[key] = value
    save_settings()


def get_float(key: str, default: float = 0.0) -> float:
    value = get_setting(key, default)
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


load_settings()
