"""Settings storage for toolkit configuration."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


SETTINGS_PATH = Path(
    os.environ.get(
        "USB_TOOLKIT_SETTINGS_PATH",
        "/etc/usb-toolkit/settings.json",
    )
)

# Default values - use these constants instead of hardcoding values elsewhere
DEFAULT_LOCK_PATH = "/var/lock/usb-toolkit.lock"
DEFAULT_LOG_DIR = "/var/log/usb-toolkit"
DEFAULT_BLOCK_SIZE = "4M"
DEFAULT_SPEED_TEST_BLOCKS = 64
DEFAULT_CRITICAL_MOUNT_POINTS = ["/", "/boot", "/boot/efi", "/home", "/var"]

DEFAULT_SETTINGS: dict[str, Any] = {
    "lock_path": DEFAULT_LOCK_PATH,
    "log_dir": DEFAULT_LOG_DIR,
    "block_size": DEFAULT_BLOCK_SIZE,
    "speed_test_blocks": DEFAULT_SPEED_TEST_BLOCKS,
    "critical_mount_points": list(DEFAULT_CRITICAL_MOUNT_POINTS),
    "sysfs_root": "/sys",
    "mountinfo_path": "/proc/self/mountinfo",
    "modprobe_dir": "/etc/modprobe.d",
    "udisks2_override_dir": "/etc/systemd/system/udisks2.service.d",
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


def get_int(key: str, default: int = 0) -> int:
    try:
        return int(get_setting(key, default))
    except (TypeError, ValueError):
        return default


def get_path(key: str) -> Path:
    return Path(get_setting(key, DEFAULT_SETTINGS.get(key, "")))


load_settings()
